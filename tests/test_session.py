"""Tests for session acquisition and bounded teardown."""

import asyncio
import time
from unittest.mock import patch

import pytest

from conftest import FakeContext, fake_profile
from crawlhook.core.exceptions import CleanupError, FatalHandlerError, LaunchError
from crawlhook.services import extraction
from crawlhook.services.session import (
    BASE_LAUNCH_ARGS,
    CONTAINER_LAUNCH_ARGS,
    EnvironmentHints,
    Session,
    build_launch_args,
)
from crawlhook.services.task import CrawlTask


class TestLaunchArgs:
    def test_base_args_always_present(self):
        args = build_launch_args(EnvironmentHints(is_container=False))
        assert "--no-sandbox" in args
        assert "--disable-dev-shm-usage" in args
        assert "--single-process" not in args

    def test_container_adds_constrained_flags(self):
        args = build_launch_args(EnvironmentHints(is_container=True))
        assert args == BASE_LAUNCH_ARGS + CONTAINER_LAUNCH_ARGS
        assert "--no-zygote" in args


class TestAcquire:
    @pytest.mark.asyncio
    async def test_acquire_configures_browser_and_context(self, world, sessions):
        profile = fake_profile({"width": 1024, "height": 768})
        session = await sessions.acquire(profile, EnvironmentHints(is_container=True))
        try:
            browser = world.browsers[0]
            assert browser.launch_kwargs["headless"] is True
            assert "--single-process" in browser.launch_kwargs["args"]
            context = browser.contexts[0]
            assert context.options["viewport"] == {"width": 1024, "height": 768}
            assert context.options["user_agent"] == profile.user_agent
            assert "webdriver" in context.init_scripts[0]
            assert session.page is world.pages[0]
            assert sessions.live_sessions == 1
            assert sessions.busy
        finally:
            await sessions.release(session)
        assert sessions.live_sessions == 0
        assert not sessions.busy
        assert session.released

    @pytest.mark.asyncio
    async def test_launch_failure_raises_and_frees_slot(self, world, sessions):
        world.script.launch_error = RuntimeError("Executable doesn't exist at /ms-playwright/chromium")
        with pytest.raises(LaunchError) as exc_info:
            await sessions.acquire(fake_profile(), EnvironmentHints())
        assert "Browser cannot start" in exc_info.value.message
        assert sessions.live_sessions == 0
        assert not sessions.busy

        world.script.launch_error = None
        session = await asyncio.wait_for(sessions.acquire(fake_profile(), EnvironmentHints()), 1)
        await sessions.release(session)

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, sessions):
        session = await sessions.acquire(fake_profile(), EnvironmentHints())
        await sessions.release(session)
        assert await sessions.release(session) == []
        assert sessions.live_sessions == 0

    @pytest.mark.asyncio
    async def test_second_acquire_waits_for_release(self, sessions):
        first = await sessions.acquire(fake_profile(), EnvironmentHints())
        waiter = asyncio.ensure_future(sessions.acquire(fake_profile(), EnvironmentHints()))
        await asyncio.sleep(0.05)
        assert not waiter.done()
        await sessions.release(first)
        second = await asyncio.wait_for(waiter, 1)
        await sessions.release(second)

    @pytest.mark.asyncio
    async def test_stalled_launch_is_abandoned_within_timeout(self, world, sessions):
        async def hang(self):
            await asyncio.sleep(30)

        with patch.object(FakeContext, "new_page", hang), patch(
            "crawlhook.services.session.kill_processes"
        ) as kill:
            start = time.monotonic()
            with pytest.raises(LaunchError) as exc_info:
                await sessions.acquire(fake_profile(), EnvironmentHints(), timeout=0.3)
            elapsed = time.monotonic() - start
        assert elapsed < 0.3 + 0.2 + 0.5
        assert "did not start within" in exc_info.value.message
        assert kill.called
        assert (0, "close") in world.trace
        assert sessions.live_sessions == 0
        assert not sessions.busy

    @pytest.mark.asyncio
    async def test_waiting_for_the_slot_counts_against_timeout(self, sessions):
        first = await sessions.acquire(fake_profile(), EnvironmentHints())
        start = time.monotonic()
        with pytest.raises(LaunchError) as exc_info:
            await sessions.acquire(fake_profile(), EnvironmentHints(), timeout=0.1)
        assert time.monotonic() - start < 0.1 + 0.5
        assert "No browser session became free" in exc_info.value.message
        assert sessions.busy
        await sessions.release(first)
        assert not sessions.busy


class TestTeardown:
    @pytest.mark.asyncio
    async def test_hung_close_is_cut_at_grace_and_killed(self, world, sessions):
        """A shutdown that never finishes is abandoned after the grace window."""
        world.script.close_delay = 30
        session = await sessions.acquire(fake_profile(), EnvironmentHints())
        with patch.object(Session, "kill") as kill:
            start = time.monotonic()
            errors = await sessions.release(session)
            elapsed = time.monotonic() - start
        assert elapsed < 0.2 + 0.5
        assert kill.called
        assert len(errors) == 1
        assert isinstance(errors[0], CleanupError)
        assert "grace" in errors[0].message
        assert sessions.live_sessions == 0
        assert not sessions.busy

    @pytest.mark.asyncio
    async def test_close_error_is_collected_not_raised(self, world, sessions):
        world.script.close_error = RuntimeError("Target closed")
        session = await sessions.acquire(fake_profile(), EnvironmentHints())
        with patch.object(Session, "kill") as kill:
            errors = await sessions.release(session)
        assert kill.called
        assert "context: Target closed" in errors[0].message

    @pytest.mark.asyncio
    async def test_clean_close_reports_nothing(self, sessions):
        session = await sessions.acquire(fake_profile(), EnvironmentHints())
        with patch.object(Session, "kill") as kill:
            assert await sessions.release(session) == []
        assert not kill.called
        assert session.playwright.stopped


class TestSequentialTasks:
    @pytest.mark.asyncio
    async def test_back_to_back_tasks_never_interleave(self, world, runner):
        """Two tasks submitted together run one after the other, each on its own page."""
        world.script.delays = {"goto": 0.02, "title": 0.01, "screenshot": 0.01}
        first, second = await asyncio.gather(
            runner.analyze(CrawlTask(url="https://example.com/a")),
            runner.analyze(CrawlTask(url="https://example.com/b")),
        )
        assert first.success and second.success

        page_ids = [page_id for page_id, _ in world.trace]
        assert set(page_ids) == {1, 2}
        last_of_first = max(i for i, pid in enumerate(page_ids) if pid == 1)
        first_of_second = min(i for i, pid in enumerate(page_ids) if pid == 2)
        assert last_of_first < first_of_second
        assert world.trace[last_of_first] == (1, "close")

    @pytest.mark.asyncio
    async def test_failing_tasks_never_accumulate_sessions(self, world, runner, sessions):
        """Extraction blowing up mid-cascade still releases every session."""
        world.script.evaluate = {extraction.PAGE_STRUCTURE_JS: FatalHandlerError("renderer crashed")}
        for _ in range(5):
            result = await runner.analyze(CrawlTask(url="https://example.com"))
            assert result.success is False
            assert sessions.live_sessions == 0
        assert len(world.browsers) == 5
        assert all(page.closed for page in world.pages)
