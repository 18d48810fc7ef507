from fastapi import APIRouter, Depends
from fastapi.responses import Response

from crawlhook.api.deps import get_cron, get_runner
from crawlhook.config import settings
from crawlhook.core.metrics import get_metrics, get_metrics_content_type
from crawlhook.services.cron import CronRegistry
from crawlhook.services.pipeline import TaskRunner
from crawlhook.services.result import utcnow_iso

router = APIRouter()


@router.get(
    "/health",
    summary="Liveness check",
    description="Returns HTTP 200 while the process is up, with the scheduler status and the "
    "number of browser sessions currently alive.",
)
async def health(cron: CronRegistry = Depends(get_cron), runner: TaskRunner = Depends(get_runner)):
    return {
        "status": "healthy",
        "timestamp": utcnow_iso(),
        "cron": cron.status(),
        "liveSessions": runner.sessions.live_sessions,
    }


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose application metrics in Prometheus exposition format. Returns HTTP 404 if metrics collection is disabled in the application configuration.",
)
async def metrics():
    """Prometheus metrics endpoint."""
    if not settings.METRICS_ENABLED:
        return Response(content="Metrics disabled", status_code=404)

    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type(),
    )
