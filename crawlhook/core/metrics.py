from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# ---------------------------------------------------------------------------
# Task pipeline
# ---------------------------------------------------------------------------
task_total = Counter(
    "crawlhook_task_total",
    "Browser tasks by kind and outcome",
    ["kind", "status"],
)
task_duration_seconds = Histogram(
    "crawlhook_task_duration_seconds",
    "Wall time of browser tasks including teardown",
    ["kind"],
    buckets=[0.5, 1, 2, 5, 10, 20, 30, 60, 120, 300],
)
live_sessions = Gauge(
    "crawlhook_live_sessions",
    "Browser sessions acquired and not yet released",
)
cascade_fallback_total = Counter(
    "crawlhook_cascade_fallback_total",
    "Extraction strategies that failed and advanced the cascade",
    ["artifact", "strategy"],
)
cascade_absent_total = Counter(
    "crawlhook_cascade_absent_total",
    "Artifacts for which every strategy failed",
    ["artifact"],
)
teardown_timeouts_total = Counter(
    "crawlhook_teardown_timeouts_total",
    "Sessions whose graceful shutdown overran the grace window",
)

# ---------------------------------------------------------------------------
# Cron / webhooks
# ---------------------------------------------------------------------------
webhook_dispatch_total = Counter(
    "crawlhook_webhook_dispatch_total",
    "Webhook deliveries by outcome",
    ["status"],
)
cron_jobs_registered = Gauge(
    "crawlhook_cron_jobs_registered",
    "Cron jobs currently held by the registry",
)


def get_metrics() -> bytes:
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
