import datetime
import random
from typing import Any

_MODELS = (
    "gpt-4.1-2025-04-14",
    "gpt-4o-mini",
    "gpt-4-turbo",
    "gpt-4o-2024-08-06",
    "o1-mini",
    "gpt-3.5-turbo",
)
_ENTITIES = (
    "Ada Lovelace",
    "Grace Hopper",
    "Alan Turing",
    "Katherine Johnson",
    "Edsger Dijkstra",
    "Barbara Liskov",
    "Donald Knuth",
    "Margaret Hamilton",
)
_SEARCH_TYPES = (
    "biography",
    "career",
    "publications",
    "news",
    "public_statements",
)
_ENTITY_TYPES = ("researcher", "engineer", "public_official")
_POSITIONS = ("Professor", "Director", "Advisor", None)


def generate_demo_items(
    count: "int" = 240,
    seed: "int" = 7,
    start: "datetime.datetime | None" = None,
) -> "list[dict[str, Any]]":
    """
    builds deterministic raw store items for demo mode. Roughly one in
    four items uses the older prompt/completion usage shape, and one in
    twenty repeats an earlier item so the dedup path is exercised.
    """
    rng = random.Random(seed)
    start = start or datetime.datetime(2025, 11, 1, tzinfo=datetime.timezone.utc)
    items: "list[dict[str, Any]]" = []

    for i in range(count):
        if items and i % 20 == 19:
            items.append(dict(items[rng.randrange(len(items))]))
            continue

        entity = rng.choice(_ENTITIES)
        search_type = rng.choice(_SEARCH_TYPES)
        timestamp = start + datetime.timedelta(minutes=i * 37 + rng.randrange(30))
        input_tokens = rng.randrange(500, 40_000)
        output_tokens = rng.randrange(50, 2_000)

        if i % 4 == 3:
            usage: "dict[str, Any]" = {
                "prompt_tokens": input_tokens,
                "completion_tokens": output_tokens,
            }
        else:
            usage = {
                "input_tokens": input_tokens,
                "input_tokens_details": {"cached_tokens": rng.randrange(0, 200)},
                "output_tokens": output_tokens,
                "output_tokens_details": {"reasoning_tokens": 0},
                "total_tokens": input_tokens + output_tokens,
            }

        items.append(
            {
                "id": f"demo-{i:05d}",
                "modelo_ai": rng.choice(_MODELS),
                "nombre": entity.lower(),
                "nombre_candidato": entity,
                "tipo_busqueda": search_type,
                "timestamp": timestamp.isoformat().replace("+00:00", "Z"),
                "usage": usage,
                "tipoPolitico": rng.choice(_ENTITY_TYPES),
                "ultimoCargo": rng.choice(_POSITIONS),
                "promt_utilizado": f"{entity} {search_type.replace('_', ' ')}",
                "input_promt": f"Summarize the {search_type} of {entity}.",
            }
        )

    return items
