import logging

from fastapi import APIRouter, Depends

from crawlhook.api.deps import get_runner
from crawlhook.schemas.analyze import AnalyzeRequest
from crawlhook.services.pipeline import TaskRunner, analyze_body

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/analyze",
    summary="Analyze a page",
    description="Render a page in a fresh headless browser and return its title, cleaned HTML, "
    "a base64 PNG screenshot and basic structure information. Failures answer 200 with "
    "success=false; partial extraction still counts as success.",
)
async def analyze(body: AnalyzeRequest, runner: TaskRunner = Depends(get_runner)):
    logger.info(
        f"New analyze request: url={body.url} waitForSelector={body.wait_for_selector} "
        f"timeout={body.timeout}"
    )
    result = await runner.analyze(body.to_task())
    return analyze_body(result)
