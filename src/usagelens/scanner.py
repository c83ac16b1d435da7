import structlog

from usagelens.exceptions import SegmentScanError
from usagelens.models import ScanSegment, UsageRecord, normalize_item
from usagelens.store.base import UsageStore

logger = structlog.get_logger()


class SegmentScanner:
    """
    SegmentScanner reads one scan segment to exhaustion, following
    continuation tokens page by page, and normalizes every item it
    reads into a UsageRecord.
    """

    def __init__(self, store: "UsageStore") -> "None":
        self._store = store

    async def scan(self, segment: "ScanSegment") -> "list[UsageRecord]":
        """
        returns every record of the segment in page order. Any store
        failure is raised as SegmentScanError.
        """
        records: "list[UsageRecord]" = []
        token = segment.continuation_token
        pages = 0

        # pages are chained by token, so they are strictly sequential
        while True:
            try:
                page = await self._store.scan_segment(
                    segment.index,
                    segment.total,
                    continuation_token=token,
                    since=segment.since,
                )
            except Exception as exc:
                raise SegmentScanError(segment.index, pages, exc) from exc

            pages += 1
            records.extend(normalize_item(item) for item in page.items)

            # break if there are no more pages to fetch
            if page.next_token is None:
                break

            token = page.next_token

        logger.debug(
            "segment_scan_done",
            segment=segment.index,
            pages=pages,
            record_count=len(records),
        )
        return records
