import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Protocol

import structlog

from usagelens.metrics import ScanMetrics
from usagelens.orchestrator import ParallelScanOrchestrator, ScanProgress
from usagelens.stats import DashboardStats, StatsAggregator

logger = structlog.get_logger()

DEFAULT_RUN_TIMEOUT = 300.0

_CLOSED = object()


class EventSink(Protocol):
    """
    EventSink is the outbound side of one client connection. send() may
    raise once the peer is gone; close() must be safe to call more than
    once.
    """

    async def send(self, payload: "dict[str, Any]") -> "None": ...

    async def close(self) -> "None": ...


class QueueEventSink:
    """
    QueueEventSink buffers events in an asyncio queue for a transport
    coroutine to drain with `async for`. Iteration ends after close().
    """

    def __init__(self, maxsize: "int" = 0) -> "None":
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue(maxsize)
        self._closed = False

    @property
    def closed(self) -> "bool":
        return self._closed

    async def send(self, payload: "dict[str, Any]") -> "None":
        if self._closed:
            raise RuntimeError("event sink is closed")
        await self._queue.put(payload)

    async def close(self) -> "None":
        if self._closed:
            return
        self._closed = True
        await self._queue.put(_CLOSED)

    async def __aiter__(self) -> "AsyncIterator[dict[str, Any]]":
        while True:
            payload = await self._queue.get()
            if payload is _CLOSED:
                return
            yield payload


@dataclass
class _RunStream:
    """
    per-run bookkeeping for turning cumulative snapshots into deltas.
    """

    since: "str | None"
    sent_count: "int" = 0
    stats: "DashboardStats | None" = None


class StreamingSession:
    """
    StreamingSession wraps one client-facing request.

    It runs the orchestrator, turns every progress snapshot into an
    outbound event carrying only the records that are new since the
    previous event, and closes the sink exactly once: after the final
    event, after an error event, or when the client goes away.

    Starting a new run supersedes the previous one. The old run is not
    aborted, but its callbacks are tagged with a stale generation and
    dropped, so two runs never interleave events in one session.
    Nothing raised inside the callback path reaches the transport.
    """

    def __init__(
        self,
        sink: "EventSink",
        orchestrator: "ParallelScanOrchestrator",
        aggregator: "StatsAggregator",
        run_timeout: "float" = DEFAULT_RUN_TIMEOUT,
        demo: "bool" = False,
        metrics: "ScanMetrics | None" = None,
    ) -> "None":
        self._sink = sink
        self._orchestrator = orchestrator
        self._aggregator = aggregator
        self._run_timeout = run_timeout
        self._demo = demo
        self._metrics = metrics
        self._closed = False
        self._generation = 0
        self._task: "asyncio.Task[None] | None" = None

        if self._metrics is not None:
            self._metrics.session_opened()

    @property
    def closed(self) -> "bool":
        return self._closed

    def start(self, since: "str | None" = None) -> "asyncio.Task[None]":
        """
        starts a run in the background and returns its task. Any run
        already in flight stops being able to emit.
        """
        if self._closed:
            raise RuntimeError("session is closed")

        previous = self._task
        if previous is not None and not previous.done():
            logger.info("session_run_superseded", generation=self._generation)

        self._generation += 1
        self._task = asyncio.create_task(self._run(self._generation, since))
        return self._task

    async def wait(self) -> "None":
        """
        waits for the current run to finish.
        """
        if self._task is not None:
            await self._task

    async def close(self) -> "None":
        """
        closes the session and its sink. Safe to call repeatedly.
        """
        if self._closed:
            return
        self._mark_closed()
        try:
            await self._sink.close()
        except Exception:
            logger.warning("sink_close_failed", exc_info=True)

    def _mark_closed(self) -> "None":
        if self._closed:
            return
        self._closed = True
        if self._metrics is not None:
            self._metrics.session_closed()

    def _is_current(self, generation: "int") -> "bool":
        return not self._closed and generation == self._generation

    async def _run(self, generation: "int", since: "str | None") -> "None":
        stream = _RunStream(since=since)

        async def on_progress(update: "ScanProgress") -> "None":
            await self._handle_progress(generation, stream, update)

        try:
            await asyncio.wait_for(
                self._orchestrator.run(on_progress, since=since),
                timeout=self._run_timeout,
            )
        except TimeoutError:
            logger.error("scan_run_timeout", timeout_seconds=self._run_timeout)
            self._inc_run("timeout")
            await self._fail(
                generation,
                f"scan did not complete within {self._run_timeout:g} seconds",
            )
            return
        except asyncio.CancelledError:
            self._inc_run("cancelled")
            raise
        except Exception as exc:
            logger.exception("scan_run_failed")
            self._inc_run("failed")
            await self._fail(generation, str(exc) or exc.__class__.__name__)
            return

        self._inc_run("completed")
        # the final callback normally closed us already
        if self._is_current(generation):
            await self.close()

    async def _handle_progress(
        self,
        generation: "int",
        stream: "_RunStream",
        update: "ScanProgress",
    ) -> "None":
        if not self._is_current(generation):
            logger.debug("progress_dropped", generation=generation)
            return

        try:
            # the merged list is append-only, so the delta is its tail
            new_records = update.records[stream.sent_count :]
            stream.sent_count = len(update.records)
            stream.stats = self._aggregator.merge_increment(stream.stats, new_records)

            data: "dict[str, Any]" = {
                "newRecords": [record.to_dict() for record in new_records],
                "totalRecords": len(update.records),
                "expectedTotal": update.estimated_total,
            }
            # incremental runs only ship stats once they are final
            if stream.since is None or update.is_complete:
                data["stats"] = stream.stats.to_dict()

            await self._send(
                generation,
                {
                    "success": True,
                    "demo": self._demo,
                    "progress": update.progress,
                    "isComplete": update.is_complete,
                    "data": data,
                },
            )
        except Exception:
            logger.exception("progress_event_failed", progress=update.progress)
            return

        if update.is_complete and self._is_current(generation):
            logger.info(
                "session_complete",
                total_records=len(update.records),
                failed_segments=update.failed_segments,
            )
            await self.close()

    async def _fail(self, generation: "int", message: "str") -> "None":
        if not self._is_current(generation):
            return
        await self._send(
            generation,
            {
                "success": False,
                "error": message,
                "progress": 0,
                "isComplete": True,
            },
        )
        await self.close()

    async def _send(self, generation: "int", payload: "dict[str, Any]") -> "None":
        if not self._is_current(generation):
            return
        try:
            await self._sink.send(payload)
        except Exception:
            # the peer is gone; every later write becomes a no-op
            logger.warning("sink_write_failed", exc_info=True)
            await self.close()

    def _inc_run(self, outcome: "str") -> "None":
        if self._metrics is not None:
            self._metrics.inc_run(outcome)
