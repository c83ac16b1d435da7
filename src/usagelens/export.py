import csv
import datetime
import io
from typing import Any, Sequence

from usagelens.models import UsageRecord
from usagelens.pricing import CostCalculator
from usagelens.stats import DashboardStats, day_key

CSV_HEADERS = (
    "timestamp",
    "entity",
    "last_position",
    "model",
    "search_type",
    "input_tokens",
    "output_tokens",
    "total_tokens",
    "cost_usd",
)

# the text report details at most this many records
_REPORT_RECORD_LIMIT = 100


def format_cost(cost: "float") -> "str":
    return f"${cost:,.4f}"


def export_csv(records: "Sequence[UsageRecord]", calculator: "CostCalculator") -> "str":
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for record in records:
        cost = calculator.calculate(
            record.model, record.usage.input_tokens, record.usage.output_tokens
        )
        writer.writerow(
            (
                record.timestamp,
                record.entity_name,
                record.last_position,
                record.model,
                record.search_type,
                record.usage.input_tokens,
                record.usage.output_tokens,
                record.usage.total_tokens,
                f"{cost.total_cost:.6f}",
            )
        )
    return buffer.getvalue()


def _ranked(
    mapping: "dict[str, float]",
    limit: "int | None" = None,
) -> "list[tuple[str, float]]":
    ranked = sorted(mapping.items(), key=lambda pair: pair[1], reverse=True)
    return ranked[:limit] if limit is not None else ranked


def export_text_report(
    records: "Sequence[UsageRecord]",
    stats: "DashboardStats",
    calculator: "CostCalculator",
    generated_at: "datetime.datetime | None" = None,
) -> "str":
    """
    renders a plain-text cost report: totals, breakdowns by model,
    top entities and search types, then the first records in detail.
    """
    generated_at = generated_at or datetime.datetime.now(datetime.timezone.utc)
    average = stats.total_cost / stats.total_requests if stats.total_requests else 0.0
    efficiency = (
        stats.total_output_tokens / stats.total_input_tokens
        if stats.total_input_tokens
        else 0.0
    )

    lines = [
        "API USAGE COST REPORT",
        "=====================",
        f"Generated: {generated_at.isoformat()}",
        "",
        "SUMMARY",
        "-------",
        f"Total cost: {format_cost(stats.total_cost)}",
        f"Total requests: {stats.total_requests:,}",
        f"Total tokens: {stats.total_tokens:,}",
        f"  - input: {stats.total_input_tokens:,}",
        f"  - output: {stats.total_output_tokens:,}",
        f"Average cost per request: {format_cost(average)}",
        f"Output/input ratio: {efficiency:.2f}x",
        "",
        "COST BY MODEL",
        "-------------",
    ]
    lines += [
        f"{model}: {format_cost(cost)}" for model, cost in _ranked(stats.cost_by_model)
    ]
    lines += ["", "TOP 10 ENTITIES BY COST", "-----------------------"]
    lines += [
        f"{rank}. {entity}: {format_cost(cost)}"
        for rank, (entity, cost) in enumerate(
            _ranked(stats.cost_by_entity, 10), start=1
        )
    ]
    lines += ["", "COST BY SEARCH TYPE", "-------------------"]
    lines += [
        f"{search_type}: {format_cost(cost)}"
        for search_type, cost in _ranked(stats.cost_by_search_type)
    ]
    lines += ["", f"RECORDS ({len(records)})", "=" * 20]

    for index, record in enumerate(records[:_REPORT_RECORD_LIMIT], start=1):
        cost = calculator.calculate(
            record.model, record.usage.input_tokens, record.usage.output_tokens
        )
        lines += [
            f"{index}. {record.timestamp}",
            f"   Entity: {record.entity_name or 'N/A'}",
            f"   Model: {record.model or 'N/A'}",
            f"   Search type: {record.search_type or 'N/A'}",
            f"   Tokens: {record.usage.total_tokens} "
            f"({record.usage.input_tokens} input, {record.usage.output_tokens} output)",
            f"   Cost: {format_cost(cost.total_cost)}",
        ]

    if len(records) > _REPORT_RECORD_LIMIT:
        lines.append(f"... and {len(records) - _REPORT_RECORD_LIMIT} more records")

    return "\n".join(lines)


def export_summary(
    records: "Sequence[UsageRecord]",
    stats: "DashboardStats",
    generated_at: "datetime.datetime | None" = None,
) -> "dict[str, Any]":
    generated_at = generated_at or datetime.datetime.now(datetime.timezone.utc)
    timestamps = sorted(
        r.timestamp for r in records if day_key(r.timestamp) is not None
    )

    return {
        "generatedAt": generated_at.isoformat(),
        "totalRecords": len(records),
        "dateRange": {
            "start": timestamps[0] if timestamps else None,
            "end": timestamps[-1] if timestamps else None,
        },
        "stats": {
            "totalCost": round(stats.total_cost, 6),
            "totalRequests": stats.total_requests,
            "totalTokens": stats.total_tokens,
            "totalInputTokens": stats.total_input_tokens,
            "totalOutputTokens": stats.total_output_tokens,
            "averageCostPerRequest": (
                round(stats.total_cost / stats.total_requests, 6)
                if stats.total_requests
                else 0.0
            ),
            "efficiency": (
                stats.total_output_tokens / stats.total_input_tokens
                if stats.total_input_tokens
                else 0.0
            ),
        },
        "topModels": [
            {"model": model, "cost": round(cost, 6)}
            for model, cost in _ranked(stats.cost_by_model, 5)
        ],
        "topEntities": [
            {"entity": entity, "cost": round(cost, 6)}
            for entity, cost in _ranked(stats.cost_by_entity, 10)
        ],
        "searchTypes": [
            {"type": search_type, "cost": round(cost, 6)}
            for search_type, cost in _ranked(stats.cost_by_search_type)
        ],
    }
