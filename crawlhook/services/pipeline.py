"""Single-task pipeline.

acquire session -> navigate -> extract -> finalize -> release -> seal

Each run owns its ``TaskResult`` and returns it; nothing is shared
between runs apart from the session slot. Acquisition and the body of a
run share the task budget; the teardown grace window bounds the
release.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from playwright.async_api import Error as PlaywrightError

from crawlhook.core.exceptions import (
    CrawlhookError,
    ErrorStage,
    FatalHandlerError,
    LaunchError,
    TaskTimeout,
)
from crawlhook.core.metrics import task_duration_seconds, task_total
from crawlhook.services.adapters import registry as default_registry
from crawlhook.services.adapters.base import AdapterRegistry
from crawlhook.services.cascade import Deadline
from crawlhook.services.extraction import (
    HTML,
    HTML_PLACEHOLDER,
    PAGE_STRUCTURE,
    SCREENSHOT,
    SELECTOR_DATA,
    TITLE,
    ExtractionEngine,
)
from crawlhook.services.navigation import NavigationController, _first_line
from crawlhook.services.profile import AntiDetectionProfile, generate_profile
from crawlhook.services.result import ErrorRecord, ExtractionResult, TaskResult
from crawlhook.services.session import EnvironmentHints, SessionManager
from crawlhook.services.task import ChannelTranscriptTask, CrawlTask
from crawlhook.services.transcripts import CHANNEL_INFO, VIDEOS, ChannelCollector

logger = logging.getLogger(__name__)

TaskBody = Callable[[Any, TaskResult, Deadline], Awaitable[Any]]


class TaskRunner:
    def __init__(
        self,
        sessions: SessionManager | None = None,
        navigator: NavigationController | None = None,
        engine: ExtractionEngine | None = None,
        adapters: AdapterRegistry | None = None,
        hints: EnvironmentHints | None = None,
        profile_factory: Callable[..., AntiDetectionProfile] = generate_profile,
    ):
        self.sessions = sessions or SessionManager()
        self.navigator = navigator or NavigationController()
        self.engine = engine or ExtractionEngine()
        self.adapters = adapters or default_registry
        self.hints = hints
        self.profile_factory = profile_factory

    # -- analyze -----------------------------------------------------------

    async def analyze(self, task: CrawlTask) -> TaskResult:
        """Fetch one page and extract its artifacts."""

        async def body(page, result: TaskResult, deadline: Deadline) -> None:
            result.navigation = await self.navigator.navigate(
                page, task.url, deadline, task.wait_for_selector
            )
            await self.engine.extract(page, task, result, deadline)

        def on_budget_expired(result: TaskResult) -> None:
            for artifact, _, options in self.engine.plan(task, result):
                if artifact not in result.artifacts:
                    result.record(
                        ExtractionResult.absent(
                            artifact, empty=options.get("empty"), failures=["task budget exhausted"]
                        )
                    )

        return await self._run("analyze", task.url, task.timeout_ms, task.viewport, body, on_budget_expired)

    # -- transcripts -------------------------------------------------------

    async def transcripts(self, task: ChannelTranscriptTask) -> TaskResult:
        """Collect transcripts for a channel's videos on one session."""
        url = task.url
        adapter = self.adapters.for_url(url)
        if adapter is None:
            raise ValueError(f"No page model for {url}")
        collector = ChannelCollector(adapter, navigator=self.navigator)

        async def body(page, result: TaskResult, deadline: Deadline) -> None:
            await collector.run(page, task, result, deadline)

        def on_budget_expired(result: TaskResult) -> None:
            if CHANNEL_INFO not in result.artifacts:
                result.record(
                    ExtractionResult.absent(
                        CHANNEL_INFO,
                        empty={"name": None, "subscribers": None, "url": url},
                        failures=["task budget exhausted"],
                    )
                )
            result.warn("Time budget exhausted before every video was processed")

        return await self._run("transcripts", url, task.timeout_ms, None, body, on_budget_expired)

    # -- shared ------------------------------------------------------------

    async def _run(
        self,
        kind: str,
        url: str,
        budget_ms: int,
        viewport,
        body: TaskBody,
        on_budget_expired: Callable[[TaskResult], None],
    ) -> TaskResult:
        result = TaskResult(url=url)
        cleanup_errors = []
        started = time.monotonic()
        logger.info(f"Task {result.task_id} ({kind}) started: {url}")

        # Queueing for the slot and launching spend the budget too.
        deadline = Deadline(budget_ms)
        try:
            profile = self.profile_factory(viewport=viewport)
            async with self.sessions.session(
                profile, self.hints, cleanup_errors=cleanup_errors, timeout=deadline.remaining()
            ) as session:
                try:
                    await asyncio.wait_for(
                        body(session.page, result, deadline), timeout=deadline.remaining()
                    )
                except asyncio.TimeoutError:
                    self._budget_expired(result, budget_ms, on_budget_expired)
                except CrawlhookError as e:
                    logger.warning(f"Task {result.task_id} failed: {e.kind}: {e.message}")
                    result.fail(ErrorRecord.from_exception(e))
                except PlaywrightError as e:
                    logger.warning(f"Task {result.task_id} failed: {_first_line(e)}")
                    result.fail(ErrorRecord.from_exception(FatalHandlerError(_first_line(e))))
                except Exception as e:
                    logger.exception(f"Task {result.task_id} crashed: {e}")
                    result.fail(ErrorRecord.from_exception(FatalHandlerError(str(e) or type(e).__name__)))
                else:
                    result.finalize()
        except LaunchError as e:
            logger.warning(f"Task {result.task_id} failed: {e.message}")
            result.fail(ErrorRecord.from_exception(e))

        for err in cleanup_errors:
            result.note_cleanup(ErrorRecord.from_exception(err, stage=ErrorStage.CLEANUP))
        result.seal()

        elapsed = time.monotonic() - started
        status = "success" if result.success else "failure"
        task_total.labels(kind=kind, status=status).inc()
        task_duration_seconds.labels(kind=kind).observe(elapsed)
        logger.info(
            f"Task {result.task_id} ({kind}) finished: {status} in {elapsed:.2f}s"
            + (f" ({len(cleanup_errors)} cleanup error(s))" if cleanup_errors else "")
        )
        return result

    @staticmethod
    def _budget_expired(
        result: TaskResult, budget_ms: int, on_budget_expired: Callable[[TaskResult], None]
    ) -> None:
        if result.finalized:
            return
        if result.navigation is None:
            logger.warning(f"Task {result.task_id} ran out of budget before the page was ready")
            result.fail(
                ErrorRecord.from_exception(
                    TaskTimeout(f"Task budget of {budget_ms}ms exhausted before the page was ready")
                )
            )
            return
        logger.warning(f"Task {result.task_id} ran out of budget during extraction")
        on_budget_expired(result)
        result.finalize()


# ---------------------------------------------------------------------------
# Response bodies
# ---------------------------------------------------------------------------


def analyze_body(result: TaskResult) -> dict:
    if not result.success:
        return {
            "success": False,
            "url": result.url,
            "error": f"Analysis failed - {result.error.message}",
            "timestamp": result.finished_at,
            "diagnostics": result.diagnostics(),
        }

    nav = result.navigation
    structure = result.value(PAGE_STRUCTURE) or {}
    page_info = {
        "title": result.value(TITLE, ""),
        "url": (nav.final_url if nav else None) or result.url,
        "timestamp": result.finished_at,
        **structure,
        "readiness": nav.to_dict() if nav else None,
    }
    body = {
        "success": True,
        "url": result.url,
        "title": result.value(TITLE, ""),
        "pageInfo": page_info,
        "html": result.value(HTML, HTML_PLACEHOLDER),
        "screenshot": result.value(SCREENSHOT, ""),
        "timestamp": result.finished_at,
    }
    if SELECTOR_DATA in result.artifacts:
        body["selectorData"] = result.value(SELECTOR_DATA, {})
    body["diagnostics"] = result.diagnostics()
    return body


def transcripts_body(result: TaskResult) -> dict:
    videos = result.value(VIDEOS) or []
    errors = list(result.warnings)
    if result.error is not None:
        errors.insert(0, result.error.message)
    return {
        "success": bool(result.success),
        "channelInfo": result.value(CHANNEL_INFO) if result.success else None,
        "videos": videos,
        "errors": errors,
        "totalProcessed": len(videos),
    }
