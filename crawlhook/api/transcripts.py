import logging

from fastapi import APIRouter, Depends

from crawlhook.api.deps import get_runner
from crawlhook.schemas.transcripts import TranscriptsRequest
from crawlhook.services.pipeline import TaskRunner, transcripts_body

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/youtube-transcripts",
    summary="Collect channel transcripts",
    description="Visit a YouTube channel's latest videos (and shorts on request) and return each "
    "video's transcript. Per-video problems are listed in errors and never fail the request.",
)
async def youtube_transcripts(body: TranscriptsRequest, runner: TaskRunner = Depends(get_runner)):
    task = body.to_task()
    logger.info(
        f"New transcripts request: channel={task.url} maxVideos={task.max_videos} "
        f"includeShorts={task.include_shorts} timeout={task.timeout_ms}"
    )
    result = await runner.transcripts(task)
    return transcripts_body(result)
