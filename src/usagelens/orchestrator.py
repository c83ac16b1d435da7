import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog

from usagelens.dedup import RecordDeduplicator
from usagelens.exceptions import ConfigurationError
from usagelens.metrics import ScanMetrics
from usagelens.models import ScanSegment, UsageRecord
from usagelens.progress import ProgressEstimator
from usagelens.scanner import SegmentScanner
from usagelens.store.base import UsageStore

logger = structlog.get_logger()

DEFAULT_SEGMENTS = 20


@dataclass(frozen=True, slots=True)
class ScanProgress:
    """
    ScanProgress is the state handed to the progress callback. `records`
    is a snapshot of the cumulative, deduplicated merged list; later
    mutation of the run never shows through it.
    """

    records: "list[UsageRecord]"
    progress: "int"
    is_complete: "bool"
    estimated_total: "int"
    completed_segments: "int"
    total_segments: "int"
    failed_segments: "int" = 0


ProgressCallback = Callable[[ScanProgress], Awaitable[None]]


@dataclass
class RunState:
    """
    RunState is owned by exactly one orchestrator run.
    """

    total_segments: "int"
    records: "list[UsageRecord]" = field(default_factory=list)
    dedup: "RecordDeduplicator" = field(default_factory=RecordDeduplicator)
    completed_segments: "int" = 0
    failed_segments: "int" = 0
    estimator: "ProgressEstimator" = field(init=False)

    def __post_init__(self) -> "None":
        self.estimator = ProgressEstimator(self.total_segments)

    @property
    def is_complete(self) -> "bool":
        return self.completed_segments >= self.total_segments

    def snapshot(self) -> "ScanProgress":
        return ScanProgress(
            records=list(self.records),
            progress=self.estimator.progress,
            is_complete=self.is_complete,
            estimated_total=self.estimator.estimated_total,
            completed_segments=self.completed_segments,
            total_segments=self.total_segments,
            failed_segments=self.failed_segments,
        )


class ParallelScanOrchestrator:
    """
    ParallelScanOrchestrator fans a full-table scan out into concurrent
    segments and reports cumulative progress as segments land.

    Segments are processed in completion order, not index order. A
    segment that fails is logged and counted as a completion with no
    records, so one bad segment never aborts its siblings. Each run()
    call owns a fresh RunState; an orchestrator may serve several runs
    concurrently.
    """

    def __init__(
        self,
        store: "UsageStore",
        total_segments: "int" = DEFAULT_SEGMENTS,
        metrics: "ScanMetrics | None" = None,
    ) -> "None":
        self._store = store
        self._scanner = SegmentScanner(store)
        self._total_segments = total_segments
        self._metrics = metrics

    @property
    def total_segments(self) -> "int":
        return self._total_segments

    async def run(
        self,
        on_progress: "ProgressCallback",
        since: "str | None" = None,
    ) -> "list[UsageRecord]":
        """
        scans every segment and returns the merged record list.
        on_progress is awaited once right after dispatch (a heartbeat
        with no data) and once after every segment completion; the last
        call has is_complete=True and progress=100.
        """
        if self._total_segments < 1:
            raise ConfigurationError(
                f"total_segments must be at least 1, got {self._total_segments}"
            )

        run_start = time.monotonic()
        state = RunState(total_segments=self._total_segments)
        segments = [
            ScanSegment(index=i, total=self._total_segments, since=since)
            for i in range(self._total_segments)
        ]

        logger.info(
            "scan_run_start",
            store=self._store.name,
            total_segments=self._total_segments,
            since=since,
        )

        tasks = [asyncio.create_task(self._scan_segment(seg)) for seg in segments]

        try:
            # heartbeat so the client sees activity before any data arrives
            await self._notify(on_progress, state.snapshot())

            for next_done in asyncio.as_completed(tasks):
                records = await next_done
                if records is None:
                    state.failed_segments += 1
                    records = []

                # no suspension point between admit() and append()
                admitted = [r for r in records if state.dedup.admit(r)]
                state.records.extend(admitted)
                state.completed_segments += 1
                state.estimator.update(state.completed_segments, len(state.records))

                if self._metrics is not None:
                    self._metrics.add_admitted(len(admitted))
                    self._metrics.add_duplicates(len(records) - len(admitted))

                logger.debug(
                    "segment_merged",
                    completed=state.completed_segments,
                    total=state.total_segments,
                    admitted=len(admitted),
                    merged=len(state.records),
                    progress=state.estimator.progress,
                )
                await self._notify(on_progress, state.snapshot())
        finally:
            # a cancelled run must not leave segment scans behind
            for task in tasks:
                if not task.done():
                    task.cancel()

        duration = time.monotonic() - run_start
        if self._metrics is not None:
            self._metrics.observe_run_duration(duration)

        logger.info(
            "scan_run_done",
            record_count=len(state.records),
            duplicates=state.dedup.duplicate_count,
            failed_segments=state.failed_segments,
            duration_seconds=round(duration, 3),
        )
        return state.records

    async def _scan_segment(self, segment: "ScanSegment") -> "list[UsageRecord] | None":
        """
        returns the segment's records, or None if the segment failed.
        """
        try:
            return await self._scanner.scan(segment)
        except Exception:
            logger.exception(
                "segment_scan_failed",
                segment=segment.index,
                total_segments=segment.total,
            )
            if self._metrics is not None:
                self._metrics.inc_segment_error(self._store.name)
            return None

    async def _notify(
        self,
        on_progress: "ProgressCallback",
        progress: "ScanProgress",
    ) -> "None":
        try:
            await on_progress(progress)
        except Exception:
            logger.exception(
                "progress_callback_error",
                progress=progress.progress,
                is_complete=progress.is_complete,
            )
