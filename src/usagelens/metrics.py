from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram


class ScanMetrics:
    """
    records scan and session activity in Prometheus metrics.
     - runs_total: scan runs by outcome (completed, failed, timeout,
     cancelled).
     - segment_errors_total: segments that failed and were counted
     as zero-yield, labeled by store.
     - records_admitted_total / duplicates_total: dedup results.
     - run_duration_seconds: wall time of completed runs.
     - active_sessions: streaming sessions currently open.
    """

    def __init__(self, registry: "CollectorRegistry" = REGISTRY) -> "None":
        self._runs = Counter(
            "usagelens_scan_runs_total",
            "Total parallel scan runs by outcome",
            ["outcome"],
            registry=registry,
        )
        self._segment_errors = Counter(
            "usagelens_segment_errors_total",
            "Total scan segments that failed and were treated as empty",
            ["store"],
            registry=registry,
        )
        self._records_admitted = Counter(
            "usagelens_records_admitted_total",
            "Total records admitted into a run's merged set",
            registry=registry,
        )
        self._duplicates = Counter(
            "usagelens_duplicates_total",
            "Total duplicate records dropped during scans",
            registry=registry,
        )
        self._run_duration = Histogram(
            "usagelens_run_duration_seconds",
            "Duration of parallel scan runs",
            buckets=(0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300),
            registry=registry,
        )
        self._active_sessions = Gauge(
            "usagelens_active_sessions",
            "Streaming sessions currently open",
            registry=registry,
        )

    def inc_run(self, outcome: "str") -> "None":
        self._runs.labels(outcome=outcome).inc()

    def inc_segment_error(self, store: "str") -> "None":
        self._segment_errors.labels(store=store).inc()

    def add_admitted(self, count: "int") -> "None":
        if count:
            self._records_admitted.inc(count)

    def add_duplicates(self, count: "int") -> "None":
        if count:
            self._duplicates.inc(count)

    def observe_run_duration(self, duration_seconds: "float") -> "None":
        self._run_duration.observe(duration_seconds)

    def session_opened(self) -> "None":
        self._active_sessions.inc()

    def session_closed(self) -> "None":
        self._active_sessions.dec()
