from fastapi import APIRouter, Depends

from crawlhook.api.deps import get_cron
from crawlhook.config import settings
from crawlhook.services.cron import CronRegistry

router = APIRouter()

ENDPOINTS = {
    "health": {
        "method": "GET",
        "path": "/health",
        "description": "Health check endpoint (includes cron status)",
    },
    "analyze": {
        "method": "POST",
        "path": "/analyze",
        "description": "Get page screenshot and HTML for AI analysis",
        "parameters": {
            "url": "URL to analyze (required)",
            "waitForSelector": "Wait for specific selector before analysis (optional)",
            "timeout": f"Timeout for analysis in ms (default: {settings.DEFAULT_ANALYZE_TIMEOUT})",
            "fullPage": "Capture the full scrollable page (default: false)",
            "viewport": "{width, height} of the browser window (optional)",
            "selectors": "Map of field name to CSS selector, returned under selectorData (optional)",
            "includeAttributes": "Return text and attributes per selector match (default: false)",
        },
        "returns": {
            "html": "Cleaned HTML content (scripts/styles removed)",
            "screenshot": "Base64 encoded screenshot",
            "pageInfo": "Basic page structure information",
            "title": "Page title",
            "url": "Processed URL",
        },
    },
    "youtubeTranscripts": {
        "method": "POST",
        "path": "/youtube-transcripts",
        "description": "Collect transcripts for a channel's latest videos",
        "parameters": {
            "channelHandle": "Channel handle, e.g. @veritasium (this or channelId)",
            "channelId": "Channel id, e.g. UCHnyfMqiRRG1u-2MsSQLbXA (this or channelHandle)",
            "maxVideos": f"Videos to process (default: {settings.DEFAULT_MAX_VIDEOS})",
            "timeout": f"Budget in ms (default: {settings.DEFAULT_TRANSCRIPT_TIMEOUT})",
            "includeShorts": "Include shorts (default: false)",
        },
    },
    "cron": {
        "/cron/status": "GET - Cron service status",
        "/cron/examples": "GET - Common cron schedule patterns",
        "/cron/jobs": "GET - List all cron jobs | POST - Create new cron job",
        "/cron/jobs/{cronId}/{action}": "PATCH - Start/stop specific cron job (action: start|stop)",
        "/cron/jobs/{cronId}": "DELETE - Delete specific cron job",
        "/cron/trigger/{webhookId}": "POST - Manually trigger single webhook",
        "/cron/trigger-multiple": "POST - Manually trigger multiple webhooks",
    },
}


@router.get("/", summary="API documentation")
async def root(cron: CronRegistry = Depends(get_cron)):
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "endpoints": ENDPOINTS,
        "cronManager": cron.status(),
    }
