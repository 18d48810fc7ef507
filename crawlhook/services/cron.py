"""Cron jobs that fire webhooks.

``CronRegistry`` keeps named jobs on an APScheduler ``AsyncIOScheduler``;
each run POSTs to every webhook of the job through ``WebhookDispatcher``,
one after the other with a fixed pause between calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from crawlhook.config import settings
from crawlhook.core.exceptions import NotFoundError, ValidationError
from crawlhook.core.metrics import cron_jobs_registered, webhook_dispatch_total
from crawlhook.middleware.request_id import (
    REQUEST_ID_HEADER,
    get_request_id,
    new_request_id,
    trace_scope,
)
from crawlhook.services.result import utcnow_iso

logger = logging.getLogger(__name__)

USER_AGENT = "Crawlhook-Cron-Trigger/1.0"
SOURCE = "crawlhook-cron"

CRON_EXAMPLES = {
    "everyMinute": "* * * * *",
    "every5Minutes": "*/5 * * * *",
    "every15Minutes": "*/15 * * * *",
    "every30Minutes": "*/30 * * * *",
    "everyHour": "0 * * * *",
    "every6Hours": "0 */6 * * *",
    "everyDay9AM": "0 9 * * *",
    "everyDay9PM": "0 21 * * *",
    "twiceDaily": "0 9,21 * * *",
    "everyWeekMonday": "0 9 * * 1",
    "everyMonth1st": "0 9 1 * *",
    "workdaysOnly": "0 9 * * 1-5",
    "weekendsOnly": "0 9 * * 0,6",
}

_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]


# ---------------------------------------------------------------------------
# Webhook dispatch
# ---------------------------------------------------------------------------


@dataclass
class DispatchResult:
    webhook_id: str
    success: bool
    status: int | None = None
    data: Any = None
    error: str | None = None

    def to_dict(self) -> dict:
        if self.success:
            return {
                "webhookId": self.webhook_id,
                "success": True,
                "status": self.status,
                "data": self.data,
            }
        data = {"webhookId": self.webhook_id, "success": False, "error": self.error}
        if self.status is not None:
            data["status"] = self.status
        return data


class WebhookDispatcher:
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        delay: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or settings.WEBHOOK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.WEBHOOK_TIMEOUT
        self.delay = settings.WEBHOOK_DISPATCH_DELAY if delay is None else delay
        self._transport = transport

    def url_for(self, webhook_id: str) -> str:
        return f"{self.base_url}/webhook/{webhook_id}"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _post(self, client: httpx.AsyncClient, webhook_id: str, payload: dict) -> DispatchResult:
        url = self.url_for(webhook_id)
        body = {"timestamp": utcnow_iso(), "source": SOURCE, **payload}
        headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
        rid = get_request_id()
        if rid:
            headers[REQUEST_ID_HEADER] = rid
        logger.info(f"Triggering webhook: {url}")
        try:
            response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"Webhook {webhook_id} failed: {e}")
            webhook_dispatch_total.labels(status="error").inc()
            return DispatchResult(webhook_id=webhook_id, success=False, error=str(e) or type(e).__name__)

        if response.status_code >= 400:
            logger.warning(f"Webhook {webhook_id} returned {response.status_code}")
            webhook_dispatch_total.labels(status="error").inc()
            return DispatchResult(
                webhook_id=webhook_id,
                success=False,
                status=response.status_code,
                error=f"HTTP {response.status_code}",
            )

        try:
            data = response.json()
        except ValueError:
            data = response.text
        logger.info(f"Webhook {webhook_id} delivered: {response.status_code}")
        webhook_dispatch_total.labels(status="success").inc()
        return DispatchResult(webhook_id=webhook_id, success=True, status=response.status_code, data=data)

    async def trigger(self, webhook_id: str, payload: dict | None = None) -> DispatchResult:
        async with self._client() as client:
            return await self._post(client, webhook_id, dict(payload or {}))

    async def trigger_many(self, webhook_ids: Iterable[str], payload: dict | None = None) -> list[DispatchResult]:
        """POST to each webhook in order; one failure never stops the rest."""
        results = []
        ids = list(webhook_ids)
        async with self._client() as client:
            for index, webhook_id in enumerate(ids):
                results.append(await self._post(client, webhook_id, dict(payload or {})))
                if index < len(ids) - 1 and self.delay > 0:
                    await asyncio.sleep(self.delay)
        return results


# ---------------------------------------------------------------------------
# Cron expressions
# ---------------------------------------------------------------------------


def _weekday_values(part: str) -> list[int]:
    base, _, step = part.partition("/")
    if base in ("*", "?"):
        first, last = 0, 6
    elif "-" in base:
        a, b = base.split("-", 1)
        first, last = int(a), int(b)
    else:
        first = int(base)
        last = 6 if step else first
    if first < 0 or last > 7 or first > last:
        raise ValueError(part)
    values = range(first, last + 1, int(step) if step else 1)
    return [v % 7 for v in values]


def _translate_day_of_week(expr: str) -> str:
    """Crontab weekdays (0 or 7 = Sunday) to names, which APScheduler reads unambiguously."""
    if expr in ("*", "?"):
        return "*"
    names: list[str] = []
    for part in expr.split(","):
        if part[:1].isalpha():
            names.append(part.lower())
            continue
        try:
            values = _weekday_values(part)
        except ValueError:
            raise ValueError(f"invalid day of week '{part}'") from None
        for v in values:
            if _WEEKDAYS[v] not in names:
                names.append(_WEEKDAYS[v])
    return ",".join(names)


def parse_schedule(schedule: str, timezone: str) -> CronTrigger:
    """Build a trigger from a 5-field crontab line or a 6-field one with leading seconds.

    Raises ValueError on anything APScheduler cannot schedule.
    """
    fields = (schedule or "").split()
    if len(fields) == 5:
        second = "0"
        minute, hour, day, month, dow = fields
    elif len(fields) == 6:
        second, minute, hour, day, month, dow = fields
    else:
        raise ValueError(f"expected 5 or 6 fields, got {len(fields)}")
    try:
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=_translate_day_of_week(dow),
            timezone=timezone,
        )
    except (TypeError, LookupError) as e:
        raise ValueError(f"invalid timezone '{timezone}'") from e


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass
class CronJobRecord:
    cron_id: str
    schedule: str
    webhook_ids: list[str]
    payload: dict
    description: str
    timezone: str
    created: str = field(default_factory=utcnow_iso)
    running: bool = True

    def summary(self) -> dict:
        return {
            "cronId": self.cron_id,
            "schedule": self.schedule,
            "webhookIds": list(self.webhook_ids),
            "description": self.description,
            "timezone": self.timezone,
            "created": self.created,
            "isRunning": self.running,
        }


class CronRegistry:
    def __init__(
        self,
        dispatcher: WebhookDispatcher | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.dispatcher = dispatcher or WebhookDispatcher()
        self.scheduler = scheduler or AsyncIOScheduler()
        self._jobs: dict[str, CronJobRecord] = {}

    @staticmethod
    def examples() -> dict:
        return dict(CRON_EXAMPLES)

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Cron scheduler started")

    def shutdown(self) -> None:
        """Destroy every job and stop the scheduler."""
        for cron_id in list(self._jobs):
            self._remove(cron_id)
            logger.info(f"Stopped cron job: {cron_id}")
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        cron_jobs_registered.set(0)
        logger.info("Cron scheduler shut down")

    def _remove(self, cron_id: str) -> None:
        self._jobs.pop(cron_id, None)
        if self.scheduler.get_job(cron_id) is not None:
            self.scheduler.remove_job(cron_id)

    def _get(self, cron_id: str) -> CronJobRecord:
        record = self._jobs.get(cron_id)
        if record is None:
            raise NotFoundError(f"Cron job {cron_id} not found")
        return record

    def create(
        self,
        cron_id: str,
        schedule: str,
        webhook_ids: list[str],
        payload: dict | None = None,
        description: str = "",
        timezone: str | None = None,
    ) -> dict:
        """Create or replace a job and start it.

        Raises ValidationError when a field is missing, the target list is
        empty or the schedule cannot be parsed; nothing is registered then.
        """
        if not cron_id or not schedule or not webhook_ids:
            raise ValidationError("cronId, schedule, and webhookIds are required")
        timezone = timezone or settings.CRON_DEFAULT_TIMEZONE
        try:
            trigger = parse_schedule(schedule, timezone)
        except ValueError as e:
            raise ValidationError(f"Invalid cron expression: {e}") from e

        if cron_id in self._jobs:
            self._remove(cron_id)
            logger.info(f"Replaced existing cron job: {cron_id}")

        record = CronJobRecord(
            cron_id=cron_id,
            schedule=schedule,
            webhook_ids=list(webhook_ids),
            payload=dict(payload or {}),
            description=description or "",
            timezone=timezone,
        )
        self.scheduler.add_job(
            self._fire,
            trigger=trigger,
            args=[cron_id],
            id=cron_id,
            name=description or cron_id,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._jobs[cron_id] = record
        cron_jobs_registered.set(len(self._jobs))
        logger.info(f"Created and started cron job: {cron_id} with schedule: {schedule}")
        return {
            "success": True,
            "message": f"Cron job {cron_id} created and started",
            "cronId": cron_id,
            "schedule": schedule,
            "webhookIds": record.webhook_ids,
            "description": record.description,
            "timezone": timezone,
        }

    def list_jobs(self) -> list[dict]:
        return [record.summary() for record in self._jobs.values()]

    def toggle(self, cron_id: str, action: str) -> dict:
        if action not in ("start", "stop"):
            raise ValidationError('Action must be "start" or "stop"')
        record = self._get(cron_id)
        if action == "start":
            self.scheduler.resume_job(cron_id)
            record.running = True
        else:
            self.scheduler.pause_job(cron_id)
            record.running = False
        logger.info(f"Cron job {cron_id} {action}ed")
        return {
            "success": True,
            "message": f"Cron job {cron_id} {action}ed",
            "status": "scheduled" if record.running else "stopped",
        }

    def delete(self, cron_id: str) -> dict:
        self._get(cron_id)
        self._remove(cron_id)
        cron_jobs_registered.set(len(self._jobs))
        logger.info(f"Deleted cron job: {cron_id}")
        return {"success": True, "message": f"Cron job {cron_id} deleted"}

    def status(self) -> dict:
        return {
            "activeCronJobs": len(self._jobs),
            "cronJobs": list(self._jobs),
            "webhookBaseUrl": self.dispatcher.base_url,
        }

    async def _fire(self, cron_id: str) -> list[DispatchResult]:
        record = self._jobs.get(cron_id)
        if record is None:
            return []
        with trace_scope(new_request_id(prefix=f"cron-{cron_id}-")):
            logger.info(f"Executing cron job: {cron_id}")
            results = await self.dispatcher.trigger_many(
                record.webhook_ids,
                {"cronId": cron_id, "description": record.description, **record.payload},
            )
            delivered = sum(1 for r in results if r.success)
            logger.info(f"Cron job {cron_id} completed: {delivered}/{len(results)} webhooks delivered")
        return results
