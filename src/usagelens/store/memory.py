from typing import Any, Iterable, Mapping

from usagelens.models import ScanPage


class InMemoryUsageStore:
    """
    InMemoryUsageStore implements the UsageStore protocol over a list of
    raw items. Item i belongs to segment i % total_segments, and the
    continuation token is the offset of the next page within the
    segment. Backs demo mode.
    """

    def __init__(
        self,
        items: "Iterable[Mapping[str, Any]]",
        page_size: "int" = 100,
    ) -> "None":
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self._items: "list[Mapping[str, Any]]" = list(items)
        self._page_size = page_size

    @property
    def name(self) -> "str":
        return "memory"

    def __len__(self) -> "int":
        return len(self._items)

    async def scan_segment(
        self,
        segment_index: "int",
        total_segments: "int",
        continuation_token: "Any" = None,
        since: "str | None" = None,
    ) -> "ScanPage":
        segment = self._items[segment_index::total_segments]
        start = int(continuation_token or 0)
        end = start + self._page_size
        page = segment[start:end]
        if since:
            # ISO-8601 strings in one zone compare chronologically
            page = [item for item in page if str(item.get("timestamp", "")) > since]
        return ScanPage(
            items=page,
            next_token=end if end < len(segment) else None,
        )

    async def close(self) -> "None":
        pass
