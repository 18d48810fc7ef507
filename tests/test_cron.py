"""Tests for cron job registry, schedule parsing and webhook dispatch."""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from crawlhook.core.exceptions import NotFoundError, ValidationError
from crawlhook.middleware.request_id import get_request_id
from crawlhook.services.cron import (
    CRON_EXAMPLES,
    SOURCE,
    USER_AGENT,
    _translate_day_of_week,
    parse_schedule,
)


def _fields(trigger) -> dict[str, str]:
    return {f.name: str(f) for f in trigger.fields}


class TestParseSchedule:
    def test_five_fields_fire_on_the_minute(self):
        assert _fields(parse_schedule("*/5 * * * *", "UTC"))["second"] == "0"

    def test_six_fields_lead_with_seconds(self):
        fields = _fields(parse_schedule("30 0 9 * * *", "UTC"))
        assert fields["second"] == "30"
        assert fields["hour"] == "9"

    @pytest.mark.parametrize("expr", ["", "invalid cron", "* * *", "1 2 3 4 5 6 7", "99 * * * *", "0 9 * * 8"])
    def test_rejects_bad_expressions(self, expr):
        with pytest.raises(ValueError):
            parse_schedule(expr, "UTC")

    def test_rejects_unknown_timezone(self):
        with pytest.raises(ValueError, match="invalid timezone"):
            parse_schedule("0 9 * * *", "Mars/Olympus_Mons")

    def test_workdays_use_crontab_numbering(self):
        """1-5 means Monday to Friday, as in crontab."""
        trigger = parse_schedule("0 9 * * 1-5", "UTC")
        saturday = datetime(2024, 1, 6, 12, tzinfo=timezone.utc)
        assert trigger.get_next_fire_time(None, saturday) == datetime(2024, 1, 8, 9, tzinfo=timezone.utc)

    def test_every_example_parses(self):
        for name, expr in CRON_EXAMPLES.items():
            assert parse_schedule(expr, "UTC") is not None, name


class TestDayOfWeek:
    @pytest.mark.parametrize(
        "expr,expected",
        [
            ("*", "*"),
            ("1", "mon"),
            ("0", "sun"),
            ("7", "sun"),
            ("1-5", "mon,tue,wed,thu,fri"),
            ("0,6", "sun,sat"),
            ("*/2", "sun,tue,thu,sat"),
            ("MON", "mon"),
        ],
    )
    def test_translation(self, expr, expected):
        assert _translate_day_of_week(expr) == expected

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            _translate_day_of_week("8")


class TestCronRegistry:
    def test_create_and_list(self, cron):
        created = cron.create("daily-report", "0 9 * * *", ["report"], description="Daily report")
        assert created["success"] is True
        assert created["cronId"] == "daily-report"
        assert created["timezone"] == "UTC"

        jobs = cron.list_jobs()
        assert len(jobs) == 1
        assert jobs[0]["cronId"] == "daily-report"
        assert jobs[0]["webhookIds"] == ["report"]
        assert jobs[0]["isRunning"] is True

    def test_invalid_schedule_is_not_registered(self, cron):
        with pytest.raises(ValidationError, match="Invalid cron expression"):
            cron.create("broken", "invalid cron", ["x"])
        assert cron.list_jobs() == []
        assert cron.scheduler.get_job("broken") is None

    @pytest.mark.parametrize(
        "cron_id,schedule,webhook_ids",
        [("", "* * * * *", ["a"]), ("job", "", ["a"]), ("job", "* * * * *", [])],
    )
    def test_missing_fields(self, cron, cron_id, schedule, webhook_ids):
        with pytest.raises(ValidationError, match="cronId, schedule, and webhookIds are required"):
            cron.create(cron_id, schedule, webhook_ids)

    def test_create_replaces_existing(self, cron):
        cron.create("job", "0 9 * * *", ["a"])
        cron.create("job", "0 21 * * *", ["b"])
        jobs = cron.list_jobs()
        assert len(jobs) == 1
        assert jobs[0]["schedule"] == "0 21 * * *"
        assert jobs[0]["webhookIds"] == ["b"]

    def test_created_minus_deleted(self, cron):
        for i in range(5):
            cron.create(f"job-{i}", "*/5 * * * *", ["hook"])
        for i in range(2):
            cron.delete(f"job-{i}")
        assert len(cron.list_jobs()) == 3
        assert cron.status()["activeCronJobs"] == 3
        assert cron.status()["cronJobs"] == ["job-2", "job-3", "job-4"]

    def test_toggle(self, cron):
        cron.create("job", "0 9 * * *", ["a"])
        stopped = cron.toggle("job", "stop")
        assert stopped["status"] == "stopped"
        assert cron.list_jobs()[0]["isRunning"] is False
        started = cron.toggle("job", "start")
        assert started["status"] == "scheduled"
        assert cron.list_jobs()[0]["isRunning"] is True

    def test_toggle_rejects_unknown_action(self, cron):
        cron.create("job", "0 9 * * *", ["a"])
        with pytest.raises(ValidationError):
            cron.toggle("job", "pause")

    def test_unknown_job(self, cron):
        with pytest.raises(NotFoundError, match="Cron job ghost not found"):
            cron.toggle("ghost", "stop")
        with pytest.raises(NotFoundError):
            cron.delete("ghost")

    def test_shutdown_destroys_jobs(self, cron):
        cron.create("a", "0 9 * * *", ["x"])
        cron.create("b", "0 9 * * *", ["y"])
        cron.shutdown()
        assert cron.list_jobs() == []
        assert cron.scheduler.get_job("a") is None

    @pytest.mark.asyncio
    async def test_started_scheduler_plans_next_run(self, cron):
        cron.start()
        cron.create("job", "*/5 * * * *", ["a"])
        assert cron.scheduler.running
        assert cron.scheduler.get_job("job").next_run_time is not None
        cron.shutdown()
        assert cron.list_jobs() == []
        assert cron.scheduler.get_jobs() == []
        # AsyncIOScheduler finishes stopping on the next loop turn
        await asyncio.sleep(0)
        assert not cron.scheduler.running

    @pytest.mark.asyncio
    async def test_fire_posts_to_every_webhook(self, cron, webhooks):
        cron.create("job", "0 9 * * *", ["first", "second"], payload={"region": "eu"}, description="Nightly")
        results = await cron._fire("job")

        assert [r.success for r in results] == [True, True]
        assert [r.url.path for r in webhooks.requests] == ["/webhook/first", "/webhook/second"]
        body = json.loads(webhooks.requests[0].content)
        assert body["cronId"] == "job"
        assert body["description"] == "Nightly"
        assert body["region"] == "eu"
        assert body["source"] == SOURCE

    @pytest.mark.asyncio
    async def test_each_fire_runs_under_its_own_trace_id(self, cron, webhooks):
        cron.create("job", "0 9 * * *", ["first", "second"])
        await cron._fire("job")
        await cron._fire("job")

        ids = [r.headers["x-request-id"] for r in webhooks.requests]
        assert all(rid.startswith("cron-job-") for rid in ids)
        assert ids[0] == ids[1]
        assert ids[1] != ids[2]
        assert get_request_id() == ""


class TestWebhookDispatcher:
    @pytest.mark.asyncio
    async def test_trigger_body_and_headers(self, dispatcher, webhooks):
        result = await dispatcher.trigger("abc", {"manual_trigger": True})

        assert result.success is True
        assert result.status == 200
        assert result.data == {"received": "abc"}
        request = webhooks.requests[0]
        assert str(request.url) == "http://n8n.test/webhook/abc"
        assert request.headers["user-agent"] == USER_AGENT
        body = json.loads(request.content)
        assert body["manual_trigger"] is True
        assert body["source"] == SOURCE
        assert body["timestamp"].endswith("Z")
        assert "x-request-id" not in request.headers

    @pytest.mark.asyncio
    async def test_http_error_status(self, dispatcher, webhooks):
        webhooks.statuses["abc"] = 500
        result = await dispatcher.trigger("abc")
        assert result.success is False
        assert result.to_dict() == {"webhookId": "abc", "success": False, "error": "HTTP 500", "status": 500}

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_the_sequence(self, dispatcher, webhooks):
        webhooks.unreachable.add("b")
        results = await dispatcher.trigger_many(["a", "b", "c"])
        assert [r.webhook_id for r in results] == ["a", "b", "c"]
        assert [r.success for r in results] == [True, False, True]
        assert "Connection refused" in results[1].error
        assert len(webhooks.requests) == 3

    @pytest.mark.asyncio
    async def test_pause_between_calls_only(self, dispatcher):
        dispatcher.delay = 1.0
        with patch("crawlhook.services.cron.asyncio.sleep", new=AsyncMock()) as sleep:
            await dispatcher.trigger_many(["a", "b", "c"])
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.0)
