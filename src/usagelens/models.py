import json
import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Mapping

# store attribute name -> canonical field name. Canonical names are
# accepted as well so serialized records normalize to themselves.
_MODEL_KEYS = ("model", "modelo_ai")
_ENTITY_KEYS = ("entity_name", "nombre_candidato", "nombre")
_SEARCH_TYPE_KEYS = ("search_type", "tipo_busqueda")
_ENTITY_TYPE_KEYS = ("entity_type", "tipoPolitico", "tipo_politico")
_LAST_POSITION_KEYS = ("last_position", "ultimoCargo", "ultimo_cargo")
_QUERY_KEYS = ("query", "promt_utilizado")
_INPUT_PROMPT_KEYS = ("input_prompt", "input_promt")
_RESPONSE_KEYS = ("response", "respuesta_busqueda")


@dataclass(frozen=True, slots=True)
class TokenUsage:
    """
    TokenUsage is the canonical token breakdown of one API call,
    independent of which historical shape the store holds.
    """

    input_tokens: "int" = 0
    output_tokens: "int" = 0
    total_tokens: "int" = 0
    cached_tokens: "int" = 0
    reasoning_tokens: "int" = 0

    def to_dict(self) -> "dict[str, int]":
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
            "cached_tokens": self.cached_tokens,
            "reasoning_tokens": self.reasoning_tokens,
        }


@dataclass(frozen=True, slots=True)
class UsageRecord:
    """
    UsageRecord represents a single observed API call read
    from the usage store. Immutable once read.
    """

    # explicit primary key, None when the item carries none
    id: "str | None"
    model: "str"
    entity_name: "str"
    search_type: "str"
    # ISO-8601 string as stored
    timestamp: "str"
    usage: "TokenUsage" = field(default_factory=TokenUsage)
    # detail attributes shown in the record view and exports; empty
    # when the item lacks them. Structured prompts and responses are
    # kept as JSON text.
    entity_type: "str" = ""
    last_position: "str" = ""
    query: "str" = ""
    input_prompt: "str" = ""
    response: "str" = ""

    def to_dict(self) -> "dict[str, Any]":
        return {
            "id": self.id,
            "model": self.model,
            "entity_name": self.entity_name,
            "search_type": self.search_type,
            "timestamp": self.timestamp,
            "usage": self.usage.to_dict(),
            "entity_type": self.entity_type,
            "last_position": self.last_position,
            "query": self.query,
            "input_prompt": self.input_prompt,
            "response": self.response,
        }


@dataclass(frozen=True, slots=True)
class ScanSegment:
    """
    ScanSegment is one slice of the table assigned to one
    concurrent worker.
    """

    index: "int"
    total: "int"
    continuation_token: "Any" = None
    # only items with timestamp strictly greater than this
    since: "str | None" = None


@dataclass(frozen=True, slots=True)
class ScanPage:
    """
    ScanPage is what one store scan call returns: raw items and
    the token to continue from, or None when the segment is done.
    """

    items: "list[Mapping[str, Any]]"
    next_token: "Any" = None


def _count(value: "Any") -> "int":
    """
    coerces a stored token count to a non-negative int. Anything
    missing or malformed counts as zero.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, Decimal):
        if not value.is_finite():
            return 0
        value = int(value)
    elif isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return 0
        value = int(value)
    elif isinstance(value, str):
        try:
            value = int(float(value))
        except ValueError:
            return 0
    elif not isinstance(value, int):
        return 0
    return max(value, 0)


def _first(item: "Mapping[str, Any]", keys: "tuple[str, ...]") -> "Any":
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: "Any") -> "str":
    """
    renders a detail attribute as text. Maps and lists, which the store
    holds for some prompts and responses, become JSON.
    """
    if value is None:
        return ""
    if isinstance(value, (Mapping, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def _detail(usage: "Mapping[str, Any]", keys: "tuple[str, ...]", name: "str") -> "int":
    for key in keys:
        details = usage.get(key)
        if isinstance(details, Mapping) and details.get(name) is not None:
            return _count(details.get(name))
    return 0


def normalize_usage(usage: "Any") -> "TokenUsage":
    """
    converts either usage shape into TokenUsage:
     - new: input_tokens / output_tokens (+ *_tokens_details)
     - old: prompt_tokens / completion_tokens (+ *_tokens_details)
    total falls back to input + output when the item has none.
    """
    if not isinstance(usage, Mapping):
        return TokenUsage()

    raw_input = usage.get("input_tokens")
    if raw_input is None:
        raw_input = usage.get("prompt_tokens")
    raw_output = usage.get("output_tokens")
    if raw_output is None:
        raw_output = usage.get("completion_tokens")

    input_tokens = _count(raw_input)
    output_tokens = _count(raw_output)
    if usage.get("total_tokens") is None:
        total_tokens = input_tokens + output_tokens
    else:
        total_tokens = _count(usage.get("total_tokens"))

    return TokenUsage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        # canonical records carry the flattened counts directly
        cached_tokens=_count(usage.get("cached_tokens"))
        or _detail(
            usage, ("input_tokens_details", "prompt_tokens_details"), "cached_tokens"
        ),
        reasoning_tokens=_count(usage.get("reasoning_tokens"))
        or _detail(
            usage,
            ("output_tokens_details", "completion_tokens_details"),
            "reasoning_tokens",
        ),
    )


def normalize_item(item: "Mapping[str, Any]") -> "UsageRecord":
    """
    builds a UsageRecord from a raw store item. Runs once at ingestion
    so nothing downstream sees the store's shape variations.
    """
    raw_id = item.get("id")
    return UsageRecord(
        id=str(raw_id) if raw_id not in (None, "") else None,
        model=str(_first(item, _MODEL_KEYS) or ""),
        entity_name=str(_first(item, _ENTITY_KEYS) or ""),
        search_type=str(_first(item, _SEARCH_TYPE_KEYS) or ""),
        timestamp=str(item.get("timestamp") or ""),
        usage=normalize_usage(item.get("usage")),
        entity_type=_text(_first(item, _ENTITY_TYPE_KEYS)),
        last_position=_text(_first(item, _LAST_POSITION_KEYS)),
        query=_text(_first(item, _QUERY_KEYS)),
        input_prompt=_text(_first(item, _INPUT_PROMPT_KEYS)),
        response=_text(_first(item, _RESPONSE_KEYS)),
    )
