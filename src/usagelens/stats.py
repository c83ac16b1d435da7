import datetime
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

import structlog

from usagelens.models import UsageRecord
from usagelens.pricing import CostCalculator

logger = structlog.get_logger()

_COST_PRECISION = 6
_UNKNOWN = "unknown"


@dataclass
class DashboardStats:
    """
    DashboardStats is an aggregate snapshot over a set of records.

    Costs are kept unrounded so that merging snapshots in any order
    gives the same result as aggregating everything at once; rounding
    happens only in to_dict().
    """

    total_cost: "float" = 0.0
    total_requests: "int" = 0
    total_input_tokens: "int" = 0
    total_output_tokens: "int" = 0
    total_tokens: "int" = 0
    cost_by_model: "dict[str, float]" = field(default_factory=dict)
    cost_by_entity: "dict[str, float]" = field(default_factory=dict)
    cost_by_search_type: "dict[str, float]" = field(default_factory=dict)
    # day key is YYYY-MM-DD
    cost_by_day: "dict[str, float]" = field(default_factory=dict)
    requests_by_model: "dict[str, int]" = field(default_factory=dict)
    requests_by_entity: "dict[str, int]" = field(default_factory=dict)
    requests_by_search_type: "dict[str, int]" = field(default_factory=dict)
    requests_by_day: "dict[str, int]" = field(default_factory=dict)

    @property
    def daily_costs(self) -> "list[tuple[str, float]]":
        return sorted(self.cost_by_day.items())

    def to_dict(self) -> "dict[str, Any]":
        return {
            "totalCost": _round(self.total_cost),
            "totalRequests": self.total_requests,
            "totalInputTokens": self.total_input_tokens,
            "totalOutputTokens": self.total_output_tokens,
            "totalTokens": self.total_tokens,
            "costByModel": _round_values(self.cost_by_model),
            "costByEntity": _round_values(self.cost_by_entity),
            "costBySearchType": _round_values(self.cost_by_search_type),
            "dailyCosts": [
                {"date": day, "cost": _round(cost)} for day, cost in self.daily_costs
            ],
            "requestsByModel": dict(self.requests_by_model),
            "requestsByEntity": dict(self.requests_by_entity),
            "requestsBySearchType": dict(self.requests_by_search_type),
            "requestsByDay": dict(sorted(self.requests_by_day.items())),
        }


def _round(value: "float") -> "float":
    return round(value, _COST_PRECISION)


def _round_values(mapping: "Mapping[str, float]") -> "dict[str, float]":
    return {key: _round(value) for key, value in mapping.items()}


def _add_mappings(a: "Mapping[str, Any]", b: "Mapping[str, Any]") -> "dict[str, Any]":
    merged = dict(a)
    for key, value in b.items():
        merged[key] = merged.get(key, 0) + value
    return merged


def day_key(timestamp: "str") -> "str | None":
    """
    returns the YYYY-MM-DD day of an ISO-8601 timestamp, or None if it
    cannot be parsed.
    """
    if not timestamp:
        return None
    try:
        return datetime.datetime.fromisoformat(timestamp).date().isoformat()
    except ValueError:
        return None


def merge_stats(a: "DashboardStats", b: "DashboardStats") -> "DashboardStats":
    """
    adds two snapshots. Associative and commutative, up to float
    rounding in the cost sums.
    """
    return DashboardStats(
        total_cost=a.total_cost + b.total_cost,
        total_requests=a.total_requests + b.total_requests,
        total_input_tokens=a.total_input_tokens + b.total_input_tokens,
        total_output_tokens=a.total_output_tokens + b.total_output_tokens,
        total_tokens=a.total_tokens + b.total_tokens,
        cost_by_model=_add_mappings(a.cost_by_model, b.cost_by_model),
        cost_by_entity=_add_mappings(a.cost_by_entity, b.cost_by_entity),
        cost_by_search_type=_add_mappings(a.cost_by_search_type, b.cost_by_search_type),
        cost_by_day=dict(sorted(_add_mappings(a.cost_by_day, b.cost_by_day).items())),
        requests_by_model=_add_mappings(a.requests_by_model, b.requests_by_model),
        requests_by_entity=_add_mappings(a.requests_by_entity, b.requests_by_entity),
        requests_by_search_type=_add_mappings(
            a.requests_by_search_type, b.requests_by_search_type
        ),
        requests_by_day=_add_mappings(a.requests_by_day, b.requests_by_day),
    )


class StatsAggregator:
    """
    StatsAggregator folds records into DashboardStats, either from
    scratch or on top of a previous snapshot.
    """

    def __init__(self, calculator: "CostCalculator") -> "None":
        self._calculator = calculator

    def compute_full(self, records: "Iterable[UsageRecord]") -> "DashboardStats":
        """
        single pass over records producing every total and breakdown.
        """
        cost_by_model: "defaultdict[str, float]" = defaultdict(float)
        cost_by_entity: "defaultdict[str, float]" = defaultdict(float)
        cost_by_search_type: "defaultdict[str, float]" = defaultdict(float)
        cost_by_day: "defaultdict[str, float]" = defaultdict(float)
        requests_by_model: "defaultdict[str, int]" = defaultdict(int)
        requests_by_entity: "defaultdict[str, int]" = defaultdict(int)
        requests_by_search_type: "defaultdict[str, int]" = defaultdict(int)
        requests_by_day: "defaultdict[str, int]" = defaultdict(int)
        stats = DashboardStats()

        for record in records:
            usage = record.usage
            cost = self._calculator.calculate(
                record.model, usage.input_tokens, usage.output_tokens
            ).total_cost

            stats.total_cost += cost
            stats.total_requests += 1
            stats.total_input_tokens += usage.input_tokens
            stats.total_output_tokens += usage.output_tokens
            stats.total_tokens += usage.total_tokens

            model = record.model or _UNKNOWN
            entity = record.entity_name or _UNKNOWN
            search_type = record.search_type or _UNKNOWN
            cost_by_model[model] += cost
            requests_by_model[model] += 1
            cost_by_entity[entity] += cost
            requests_by_entity[entity] += 1
            cost_by_search_type[search_type] += cost
            requests_by_search_type[search_type] += 1

            day = day_key(record.timestamp)
            if day is None:
                logger.warning(
                    "unparseable_timestamp",
                    record_id=record.id,
                    timestamp=record.timestamp,
                )
                continue
            cost_by_day[day] += cost
            requests_by_day[day] += 1

        stats.cost_by_model = dict(cost_by_model)
        stats.cost_by_entity = dict(cost_by_entity)
        stats.cost_by_search_type = dict(cost_by_search_type)
        stats.cost_by_day = dict(sorted(cost_by_day.items()))
        stats.requests_by_model = dict(requests_by_model)
        stats.requests_by_entity = dict(requests_by_entity)
        stats.requests_by_search_type = dict(requests_by_search_type)
        stats.requests_by_day = dict(requests_by_day)
        return stats

    def merge_increment(
        self,
        previous: "DashboardStats | None",
        new_records: "Iterable[UsageRecord]",
    ) -> "DashboardStats":
        """
        folds new_records into previous without revisiting the records
        previous was built from. new_records must be disjoint from them.
        """
        delta = self.compute_full(new_records)
        if previous is None:
            return delta
        return merge_stats(previous, delta)
