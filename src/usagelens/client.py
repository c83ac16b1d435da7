import json
import time
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Mapping

import httpx
import structlog

from usagelens.dedup import RecordDeduplicator
from usagelens.exceptions import LoadInProgressError, StreamError
from usagelens.models import UsageRecord, normalize_item

logger = structlog.get_logger()

STREAM_PATH = "/api/usage-stream"
# a load older than this is considered stuck and may be replaced
DEFAULT_STUCK_TIMEOUT = 300.0


@dataclass
class StreamSnapshot:
    """
    StreamSnapshot is the client's accumulated view of one stream.
    """

    records: "list[UsageRecord]" = field(default_factory=list)
    stats: "dict[str, Any] | None" = None
    progress: "int" = 0
    is_complete: "bool" = False
    total_records: "int" = 0
    expected_total: "int" = 0
    demo: "bool" = False
    skipped_events: "int" = 0


class UsageStreamClient:
    """
    UsageStreamClient consumes the usage event stream the way the
    dashboard does: it accumulates the `newRecords` deltas, drops
    records it has already seen (delivery is at-least-once), skips
    events it cannot parse and stops at the first complete or error
    event.

    Only one load runs at a time. A second load is refused unless the
    running one has exceeded the stuck timeout, in which case the
    guard is reset so a retry is never blocked for good.
    """

    def __init__(
        self,
        base_url: "str",
        client: "httpx.AsyncClient | None" = None,
        stuck_timeout: "float" = DEFAULT_STUCK_TIMEOUT,
        clock: "Callable[[], float]" = time.monotonic,
    ) -> "None":
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(10.0, read=None),
        )
        self._owns_client = client is None
        self._stuck_timeout = stuck_timeout
        self._clock = clock
        self._load_started: "float | None" = None

    async def close(self) -> "None":
        """
        closes the underlying HTTP client if this instance created it.
        """
        if self._owns_client:
            await self._client.aclose()

    @property
    def loading(self) -> "bool":
        return self._load_started is not None

    async def load(
        self,
        since: "str | None" = None,
        on_update: "Callable[[StreamSnapshot], None] | None" = None,
    ) -> "StreamSnapshot":
        """
        reads one stream to completion and returns the final snapshot.
        Raises StreamError (carrying the partial snapshot) when the
        server reports an error.
        """
        started = self._acquire()
        try:
            return await self._load(since, on_update)
        finally:
            # a stuck load that finishes late must not release a newer one
            if self._load_started == started:
                self._load_started = None

    def _acquire(self) -> "float":
        now = self._clock()
        if self._load_started is not None:
            elapsed = now - self._load_started
            if elapsed < self._stuck_timeout:
                raise LoadInProgressError("a usage load is already in progress")
            logger.warning("stuck_load_reset", elapsed_seconds=round(elapsed, 1))
        self._load_started = now
        return now

    async def _load(
        self,
        since: "str | None",
        on_update: "Callable[[StreamSnapshot], None] | None",
    ) -> "StreamSnapshot":
        snapshot = StreamSnapshot()
        dedup = RecordDeduplicator()
        params = {"since": since} if since else None

        async with self._client.stream("GET", STREAM_PATH, params=params) as response:
            response.raise_for_status()

            async with aclosing(self._iter_event_data(response)) as events:
                async for raw in events:
                    payload = self._parse(raw)
                    if payload is None:
                        snapshot.skipped_events += 1
                        continue

                    if payload.get("success") is False:
                        message = str(payload.get("error") or "unknown error")
                        logger.error("stream_error_event", error=message)
                        raise StreamError(message, partial=snapshot)

                    try:
                        self._apply(snapshot, dedup, payload)
                    except (TypeError, ValueError):
                        logger.warning("malformed_event_skipped", exc_info=True)
                        snapshot.skipped_events += 1
                        continue

                    if on_update is not None:
                        on_update(snapshot)
                    if snapshot.is_complete:
                        break

        logger.info(
            "stream_load_done",
            record_count=len(snapshot.records),
            complete=snapshot.is_complete,
            skipped_events=snapshot.skipped_events,
            duplicates=dedup.duplicate_count,
        )
        return snapshot

    @staticmethod
    async def _iter_event_data(response: "httpx.Response") -> "AsyncIterator[str]":
        """
        yields the data of each event in the stream. The data lines of
        one event are joined with newlines and a blank line ends it;
        comments and other fields are ignored.
        """
        lines: "list[str]" = []
        async for line in response.aiter_lines():
            if not line:
                if lines:
                    yield "\n".join(lines)
                    lines = []
                continue
            if line.startswith("data:"):
                value = line[len("data:") :]
                lines.append(value[1:] if value.startswith(" ") else value)

        # a stream may end without the final blank line
        if lines:
            yield "\n".join(lines)

    @staticmethod
    def _parse(raw: "str") -> "dict[str, Any] | None":
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("malformed_event_skipped", preview=raw[:80])
            return None
        if not isinstance(payload, dict):
            logger.warning("malformed_event_skipped", preview=raw[:80])
            return None
        return payload

    @staticmethod
    def _apply(
        snapshot: "StreamSnapshot",
        dedup: "RecordDeduplicator",
        payload: "Mapping[str, Any]",
    ) -> "None":
        """
        folds one event into the snapshot. Every field is read and
        converted before anything is changed, so an event that raises
        leaves the snapshot and the dedup set untouched.
        """
        progress = int(payload.get("progress") or 0)
        data = payload.get("data")
        if not isinstance(data, Mapping):
            data = {}

        items = data.get("newRecords") or []
        if not isinstance(items, list):
            raise TypeError(f"newRecords must be a list, got {type(items).__name__}")
        records = [normalize_item(item) for item in items if isinstance(item, Mapping)]

        raw_total = data.get("totalRecords")
        total_records = int(raw_total) if raw_total else None
        expected_total = int(data.get("expectedTotal") or 0)
        stats = data.get("stats")

        snapshot.demo = bool(payload.get("demo", snapshot.demo))
        snapshot.is_complete = bool(payload.get("isComplete"))
        snapshot.progress = max(snapshot.progress, progress)
        snapshot.records.extend(record for record in records if dedup.admit(record))
        if isinstance(stats, Mapping):
            snapshot.stats = dict(stats)
        snapshot.total_records = (
            total_records if total_records is not None else len(snapshot.records)
        )
        snapshot.expected_total = expected_total
