from fastapi import APIRouter

from crawlhook.api import analyze, cron, docs, health, transcripts

api_router = APIRouter()

api_router.include_router(docs.router, tags=["Docs"])
api_router.include_router(health.router, tags=["Health"])
api_router.include_router(analyze.router, tags=["Analyze"])
api_router.include_router(transcripts.router, tags=["Transcripts"])
api_router.include_router(cron.router, prefix="/cron", tags=["Cron"])
