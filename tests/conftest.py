import asyncio
from typing import Any, Callable

import pytest
from prometheus_client import CollectorRegistry

from usagelens.models import ScanPage, TokenUsage, UsageRecord
from usagelens.pricing import CostCalculator, PricingResolver
from usagelens.stats import StatsAggregator


@pytest.fixture()
def registry() -> "CollectorRegistry":
    """
    fresh Prometheus registry to avoid cross-test state.
    """
    return CollectorRegistry()


@pytest.fixture()
def calculator() -> "CostCalculator":
    return CostCalculator(PricingResolver())


@pytest.fixture()
def aggregator(calculator: "CostCalculator") -> "StatsAggregator":
    return StatsAggregator(calculator)


def make_item(
    id: "str | None" = "1",
    model: "str" = "gpt-4o",
    entity: "str" = "Ada Lovelace",
    search_type: "str" = "biography",
    timestamp: "str" = "2025-11-13T14:33:36.370698Z",
    input_tokens: "int" = 100,
    output_tokens: "int" = 50,
) -> "dict[str, Any]":
    """
    raw store item in the store's attribute naming.
    """
    item: "dict[str, Any]" = {
        "modelo_ai": model,
        "nombre_candidato": entity,
        "tipo_busqueda": search_type,
        "timestamp": timestamp,
        "usage": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        },
    }
    if id is not None:
        item["id"] = id
    return item


def make_record(
    id: "str | None" = "1",
    model: "str" = "gpt-4o",
    entity: "str" = "Ada Lovelace",
    search_type: "str" = "biography",
    timestamp: "str" = "2025-11-13T14:33:36.370698Z",
    input_tokens: "int" = 100,
    output_tokens: "int" = 50,
) -> "UsageRecord":
    return UsageRecord(
        id=id,
        model=model,
        entity_name=entity,
        search_type=search_type,
        timestamp=timestamp,
        usage=TokenUsage(
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=input_tokens + output_tokens,
        ),
    )


class FakeStore:
    """
    A store whose segments are given explicitly as lists of pages.
    Segments listed in `failing` raise on their first call, and
    `delays` lets a test control the completion order.
    """

    def __init__(
        self,
        pages: "dict[int, list[list[dict[str, Any]]]]",
        failing: "set[int] | None" = None,
        delays: "dict[int, float] | None" = None,
    ) -> "None":
        self._pages = pages
        self._failing = failing or set()
        self._delays = delays or {}
        self.calls: "list[tuple[int, int, Any, str | None]]" = []
        self.closed = False

    @property
    def name(self) -> "str":
        return "fake"

    async def scan_segment(
        self,
        segment_index: "int",
        total_segments: "int",
        continuation_token: "Any" = None,
        since: "str | None" = None,
    ) -> "ScanPage":
        self.calls.append((segment_index, total_segments, continuation_token, since))
        await asyncio.sleep(self._delays.get(segment_index, 0))
        if segment_index in self._failing:
            raise RuntimeError(f"segment {segment_index} unavailable")

        pages = self._pages.get(segment_index, [[]])
        page_number = continuation_token or 0
        next_token = page_number + 1 if page_number + 1 < len(pages) else None
        return ScanPage(items=pages[page_number], next_token=next_token)

    async def close(self) -> "None":
        self.closed = True


@pytest.fixture()
def fake_store_factory() -> "Callable[..., FakeStore]":
    return FakeStore


@pytest.fixture()
def item_factory() -> "Callable[..., dict[str, Any]]":
    return make_item


@pytest.fixture()
def record_factory() -> "Callable[..., UsageRecord]":
    return make_record
