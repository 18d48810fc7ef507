from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse

from crawlhook.api.deps import get_cron
from crawlhook.schemas.cron import CronJobCreate, TriggerMultipleRequest
from crawlhook.services.cron import CronRegistry
from crawlhook.services.result import utcnow_iso

router = APIRouter()


def _manual(payload: dict | None) -> dict:
    return {**(payload or {}), "manual_trigger": True, "triggered_at": utcnow_iso()}


@router.get("/status", summary="Scheduler status")
async def cron_status(cron: CronRegistry = Depends(get_cron)):
    return {"success": True, "service": "cron-manager", **cron.status(), "timestamp": utcnow_iso()}


@router.get("/examples", summary="Common cron schedule patterns")
async def cron_examples():
    return {
        "success": True,
        "examples": CronRegistry.examples(),
        "description": "Common cron schedule patterns",
    }


@router.get("/jobs", summary="List cron jobs")
async def list_jobs(cron: CronRegistry = Depends(get_cron)):
    jobs = cron.list_jobs()
    return {"success": True, "jobs": jobs, "totalJobs": len(jobs)}


@router.post("/jobs", status_code=201, summary="Create or replace a cron job")
async def create_job(body: CronJobCreate, cron: CronRegistry = Depends(get_cron)):
    return cron.create(
        body.cron_id,
        body.schedule,
        body.webhook_ids,
        payload=body.payload,
        description=body.description,
        timezone=body.timezone,
    )


@router.patch("/jobs/{cron_id}/{action}", summary="Start or stop a cron job")
async def toggle_job(cron_id: str, action: str, cron: CronRegistry = Depends(get_cron)):
    return cron.toggle(cron_id, action)


@router.delete("/jobs/{cron_id}", summary="Delete a cron job")
async def delete_job(cron_id: str, cron: CronRegistry = Depends(get_cron)):
    return cron.delete(cron_id)


@router.post("/trigger/{webhook_id}", summary="Trigger one webhook now")
async def trigger_webhook(
    webhook_id: str,
    payload: dict[str, Any] | None = Body(default=None),
    cron: CronRegistry = Depends(get_cron),
):
    result = await cron.dispatcher.trigger(webhook_id, _manual(payload))
    if not result.success:
        return JSONResponse(status_code=500, content=result.to_dict())
    return result.to_dict()


@router.post("/trigger-multiple", summary="Trigger several webhooks now, in order")
async def trigger_multiple(body: TriggerMultipleRequest, cron: CronRegistry = Depends(get_cron)):
    results = await cron.dispatcher.trigger_many(body.webhook_ids, _manual(body.payload))
    return {"success": True, "results": [r.to_dict() for r in results]}
