import datetime
import math
from dataclasses import dataclass
from typing import Any, Mapping

import structlog

logger = structlog.get_logger()

# prices change without notice; review the table against the
# provider's published pricing when this date is more than a month old
PRICING_LAST_UPDATED = datetime.date(2025, 11, 26)
PRICING_SOURCE = "https://openai.com/api/pricing/"

DEFAULT_MODEL = "gpt-4"
# warn-once key used for records that carry no model at all
_MISSING_MODEL_KEY = "<missing-model>"

_TOKENS_PER_UNIT = 1_000_000
_COST_PRECISION = 6


@dataclass(frozen=True, slots=True)
class Rate:
    """
    Rate holds USD prices per million tokens.
    """

    input_rate: "float"
    output_rate: "float"


@dataclass(frozen=True, slots=True)
class CostBreakdown:
    input_cost: "float"
    output_cost: "float"
    total_cost: "float"


# (input, output) USD per million tokens
MODEL_PRICING: "dict[str, Rate]" = {
    # GPT-4o family
    "gpt-4o": Rate(2.50, 10.0),
    "gpt-4o-mini": Rate(0.15, 0.60),
    "gpt-4o-2024-11-20": Rate(2.50, 10.0),
    "gpt-4o-2024-08-06": Rate(2.50, 10.0),
    "gpt-4o-2024-05-13": Rate(5.0, 15.0),
    "gpt-4o-mini-2024-07-18": Rate(0.15, 0.60),
    "chatgpt-4o-latest": Rate(5.0, 15.0),
    # GPT-4 Turbo
    "gpt-4-turbo": Rate(10.0, 30.0),
    "gpt-4-turbo-preview": Rate(10.0, 30.0),
    "gpt-4-turbo-2024-04-09": Rate(10.0, 30.0),
    "gpt-4-1106-preview": Rate(10.0, 30.0),
    "gpt-4-0125-preview": Rate(10.0, 30.0),
    # GPT-4.1 family
    "gpt-4.1": Rate(3.0, 12.0),
    "gpt-4.1-2025-04-14": Rate(3.0, 12.0),
    "gpt-4.1-mini": Rate(0.40, 1.60),
    "gpt-4.1-nano": Rate(0.10, 0.40),
    # GPT-5 family
    "gpt-5.1-2025-11-13": Rate(2.5, 10.0),
    # GPT-4 legacy
    "gpt-4": Rate(30.0, 60.0),
    "gpt-4-32k": Rate(60.0, 120.0),
    "gpt-4-0613": Rate(30.0, 60.0),
    "gpt-4-32k-0613": Rate(60.0, 120.0),
    # GPT-3.5
    "gpt-3.5-turbo": Rate(0.50, 1.50),
    "gpt-3.5-turbo-0125": Rate(0.50, 1.50),
    "gpt-3.5-turbo-1106": Rate(1.0, 2.0),
    "gpt-3.5-turbo-16k": Rate(3.0, 4.0),
    "gpt-3.5-turbo-instruct": Rate(1.50, 2.0),
    # o-series reasoning models
    "o1-preview": Rate(15.0, 60.0),
    "o1-preview-2024-09-12": Rate(15.0, 60.0),
    "o1-mini": Rate(3.0, 12.0),
    "o1-mini-2024-09-12": Rate(3.0, 12.0),
}


class PricingResolver:
    """
    PricingResolver maps a model name to its per-million-token rates.

    Resolution order is exact match, then the longest table key the
    model name starts with (case-insensitive), then the default model.
    Fallbacks are logged once per model for the lifetime of the
    resolver, so one resolver should be built per process and shared.
    """

    def __init__(
        self,
        table: "Mapping[str, Rate] | None" = None,
        default_model: "str" = DEFAULT_MODEL,
    ) -> "None":
        self._table: "dict[str, Rate]" = dict(MODEL_PRICING if table is None else table)
        if default_model not in self._table:
            raise ValueError(f"default model {default_model!r} missing from table")
        self._default_model = default_model
        # longest keys first so the first prefix hit is the most specific
        self._prefixes: "list[tuple[str, str]]" = sorted(
            ((key.lower(), key) for key in self._table),
            key=lambda pair: len(pair[0]),
            reverse=True,
        )
        self._warned: "set[str]" = set()

    @property
    def default_rate(self) -> "Rate":
        return self._table[self._default_model]

    def resolve(self, model: "str | None") -> "Rate":
        if not model:
            self._warn_once(_MISSING_MODEL_KEY)
            return self.default_rate

        rate = self._table.get(model)
        if rate is not None:
            return rate

        lowered = model.lower()
        for prefix, key in self._prefixes:
            if lowered.startswith(prefix):
                return self._table[key]

        self._warn_once(model)
        return self.default_rate

    def _warn_once(self, model_key: "str") -> "None":
        if model_key in self._warned:
            return
        self._warned.add(model_key)
        logger.warning(
            "pricing_fallback",
            model=model_key,
            default_model=self._default_model,
        )


def _safe_count(value: "Any") -> "float":
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0.0
    return number


class CostCalculator:
    """
    CostCalculator turns token counts into USD costs. It never raises:
    malformed counts are treated as zero.
    """

    def __init__(self, resolver: "PricingResolver") -> "None":
        self._resolver = resolver

    @property
    def resolver(self) -> "PricingResolver":
        return self._resolver

    def calculate(
        self,
        model: "str | None",
        input_tokens: "Any",
        output_tokens: "Any",
    ) -> "CostBreakdown":
        rate = self._resolver.resolve(model)
        input_cost = _safe_count(input_tokens) / _TOKENS_PER_UNIT * rate.input_rate
        output_cost = _safe_count(output_tokens) / _TOKENS_PER_UNIT * rate.output_rate
        return CostBreakdown(
            input_cost=round(input_cost, _COST_PRECISION),
            output_cost=round(output_cost, _COST_PRECISION),
            total_cost=round(input_cost + output_cost, _COST_PRECISION),
        )


def days_since_pricing_update(today: "datetime.date | None" = None) -> "int":
    today = today or datetime.date.today()
    return (today - PRICING_LAST_UPDATED).days


def pricing_is_outdated(
    today: "datetime.date | None" = None,
    max_age_days: "int" = 30,
) -> "bool":
    return days_since_pricing_update(today) > max_age_days


def check_pricing_freshness(today: "datetime.date | None" = None) -> "bool":
    """
    logs whether the static pricing table is due for review.
    Returns True when it is outdated.
    """
    days = days_since_pricing_update(today)
    if pricing_is_outdated(today):
        logger.warning(
            "pricing_table_outdated",
            last_updated=PRICING_LAST_UPDATED.isoformat(),
            days_since_update=days,
            source=PRICING_SOURCE,
        )
        return True

    logger.info("pricing_table_fresh", days_since_update=days)
    return False
