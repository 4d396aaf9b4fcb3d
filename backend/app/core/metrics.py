"""Prometheus metrics shared by the API and the retention worker."""

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNT = Counter(
    "library_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)
REQUEST_LATENCY = Histogram(
    "library_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

AUDIT_EVENTS_RECORDED = Counter(
    "library_audit_events_recorded_total",
    "Audit events persisted",
    ["action"],
)
AUDIT_RECORD_FAILURES = Counter(
    "library_audit_record_failures_total",
    "Audit events dropped because the store rejected the write",
)
AUDIT_CLEANUP_RUNS = Counter(
    "library_audit_cleanup_runs_total",
    "Retention cleanup cycles by outcome",
    ["status"],
)
AUDIT_CLEANUP_DELETED = Counter(
    "library_audit_cleanup_deleted_total",
    "Audit events deleted by retention policy",
    ["policy"],
)
AUDIT_ARCHIVES_WRITTEN = Counter(
    "library_audit_archives_written_total",
    "Archive files written",
    ["format"],
)
CLEANUP_SCHEDULER_UP = Gauge(
    "library_audit_cleanup_scheduler_up",
    "Retention scheduler liveness (1 running, 0 stopped)",
)
