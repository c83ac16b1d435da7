import asyncio
import datetime
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog
from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from prometheus_client import REGISTRY, CollectorRegistry, make_asgi_app

from usagelens.config import Config
from usagelens.demo import generate_demo_items
from usagelens.export import export_csv, export_summary, export_text_report
from usagelens.metrics import ScanMetrics
from usagelens.models import UsageRecord
from usagelens.orchestrator import ParallelScanOrchestrator, ScanProgress
from usagelens.pricing import CostCalculator, PricingResolver, check_pricing_freshness
from usagelens.session import QueueEventSink, StreamingSession
from usagelens.stats import StatsAggregator
from usagelens.store.base import UsageStore
from usagelens.store.dynamodb import DynamoDBUsageStore
from usagelens.store.memory import InMemoryUsageStore

logger = structlog.get_logger()

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
    # keep reverse proxies from buffering the event stream
    "X-Accel-Buffering": "no",
}


def build_store(config: "Config") -> "UsageStore":
    if config.demo_mode:
        logger.info("demo_mode_enabled")
        return InMemoryUsageStore(generate_demo_items())
    return DynamoDBUsageStore(config.table_name, region_name=config.aws_region)


def _error(message: "str", status_code: "int") -> "JSONResponse":
    return JSONResponse(
        {"success": False, "error": message},
        status_code=status_code,
        headers=NO_CACHE_HEADERS,
    )


def _valid_since(since: "str | None") -> "bool":
    if since is None:
        return True
    try:
        datetime.datetime.fromisoformat(since)
    except ValueError:
        return False
    return True


async def _noop_progress(update: "ScanProgress") -> "None":
    pass


def create_app(
    config: "Config",
    store: "UsageStore | None" = None,
    registry: "CollectorRegistry" = REGISTRY,
) -> "FastAPI":
    """
    builds the web app. The store, pricing resolver and metrics are
    process-wide; every request gets its own orchestrator run and
    streaming session.
    """
    config.validate()
    store = store if store is not None else build_store(config)
    calculator = CostCalculator(PricingResolver())
    aggregator = StatsAggregator(calculator)
    metrics = ScanMetrics(registry=registry)

    @asynccontextmanager
    async def lifespan(app: "FastAPI") -> "AsyncIterator[None]":
        check_pricing_freshness()
        logger.info(
            "app_started",
            store=store.name,
            scan_segments=config.scan_segments,
            demo=config.demo_mode,
        )
        try:
            yield
        finally:
            logger.info("shutting_down")
            await store.close()
            logger.info("shutdown_complete")

    app = FastAPI(title="usagelens", lifespan=lifespan)
    app.mount("/metrics", make_asgi_app(registry=registry))

    def new_orchestrator() -> "ParallelScanOrchestrator":
        return ParallelScanOrchestrator(store, config.scan_segments, metrics=metrics)

    async def collect() -> "list[UsageRecord]":
        return await asyncio.wait_for(
            new_orchestrator().run(_noop_progress),
            timeout=config.run_timeout,
        )

    @app.get("/api/usage-stream", response_model=None)
    async def usage_stream(
        request: "Request",
        since: "str | None" = Query(default=None),
    ) -> "StreamingResponse | JSONResponse":
        """
        streams scan progress as Server-Sent Events. With `since`, only
        records newer than that timestamp are scanned.
        """
        if not _valid_since(since):
            return _error(f"invalid since timestamp: {since!r}", 400)

        sink = QueueEventSink()
        session = StreamingSession(
            sink,
            new_orchestrator(),
            aggregator,
            run_timeout=config.run_timeout,
            demo=config.demo_mode,
            metrics=metrics,
        )
        session.start(since=since)
        logger.info(
            "stream_session_started",
            since=since,
            client=request.client.host if request.client else None,
        )

        async def events() -> "AsyncIterator[str]":
            try:
                async for payload in sink:
                    yield f"data: {json.dumps(payload)}\n\n"
            finally:
                # client disconnects land here too; late results are dropped
                await session.close()

        return StreamingResponse(
            events(),
            media_type="text/event-stream",
            headers=NO_CACHE_HEADERS,
        )

    @app.get("/api/usage", response_model=None)
    async def usage() -> "JSONResponse":
        """
        one-shot full scan returning stats and every record.
        """
        try:
            records = await collect()
        except Exception as exc:
            logger.exception("usage_request_failed")
            return _error(str(exc) or exc.__class__.__name__, 500)

        stats = aggregator.compute_full(records)
        return JSONResponse(
            {
                "success": True,
                "demo": config.demo_mode,
                "data": {
                    "stats": stats.to_dict(),
                    "records": [record.to_dict() for record in records],
                },
            },
            headers=NO_CACHE_HEADERS,
        )

    @app.get("/api/usage/export", response_model=None)
    async def usage_export(
        fmt: "str" = Query(
            default="csv", alias="format", pattern="^(csv|text|summary)$"
        ),
    ) -> "Any":
        try:
            records = await collect()
        except Exception as exc:
            logger.exception("export_request_failed", format=fmt)
            return _error(str(exc) or exc.__class__.__name__, 500)

        if fmt == "csv":
            return PlainTextResponse(
                export_csv(records, calculator),
                media_type="text/csv",
                headers={"Content-Disposition": 'attachment; filename="usage.csv"'},
            )

        stats = aggregator.compute_full(records)
        if fmt == "text":
            return PlainTextResponse(export_text_report(records, stats, calculator))
        return JSONResponse(export_summary(records, stats))

    return app
