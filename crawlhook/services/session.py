"""Browser session acquisition.

A ``Session`` is one Chromium process with a single context and page,
owned by exactly one in-flight task. ``SessionManager`` hands out at most
one live session at a time: the slot is taken in ``acquire`` and only
given back once the ``TeardownSupervisor`` has released the session.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from playwright.async_api import async_playwright

from crawlhook.config import settings
from crawlhook.core.exceptions import CleanupError, LaunchError
from crawlhook.core.metrics import live_sessions as live_sessions_gauge
from crawlhook.services.profile import AntiDetectionProfile
from crawlhook.services.teardown import TeardownSupervisor

logger = logging.getLogger(__name__)

# Always applied: Chromium's sandbox and /dev/shm both break under
# unprivileged containers and CI runners.
BASE_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-blink-features=AutomationControlled",
]

# Resource-constrained hosts only
CONTAINER_LAUNCH_ARGS = [
    "--disable-gpu",
    "--no-zygote",
    "--single-process",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI",
    "--disable-ipc-flooding-protection",
]


@dataclass(frozen=True)
class EnvironmentHints:
    is_container: bool = False
    headless: bool = True

    @classmethod
    def from_settings(cls) -> "EnvironmentHints":
        return cls(is_container=settings.is_container, headless=settings.BROWSER_HEADLESS)


def build_launch_args(hints: EnvironmentHints) -> list[str]:
    args = list(BASE_LAUNCH_ARGS)
    if hints.is_container:
        args.extend(CONTAINER_LAUNCH_ARGS)
    return args


@dataclass
class Session:
    """A live browser handle and the configuration it was launched with."""

    profile: AntiDetectionProfile
    launch_args: list[str]
    playwright: Any
    browser: Any
    context: Any
    page: Any
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    released: bool = False

    async def close(self) -> None:
        """Graceful shutdown: context, browser, then the driver.

        Every step is attempted even if an earlier one fails.
        """
        failures: list[str] = []
        for name, closer in (
            ("context", self.context.close),
            ("browser", self.browser.close),
            ("playwright", self.playwright.stop),
        ):
            try:
                await closer()
            except Exception as e:
                failures.append(f"{name}: {e}")
        if failures:
            raise CleanupError("; ".join(failures))

    def kill(self) -> None:
        """Kill the browser and driver processes without waiting on them."""
        kill_processes(self.playwright, self.browser)


def kill_processes(playwright: Any, browser: Any) -> None:
    """SIGKILL whatever Chromium and driver processes the handles own.

    Either handle may be None, e.g. when a launch stalled half way.
    """
    proc = getattr(getattr(browser, "_impl_obj", None), "_browser_process", None)
    if proc is not None and getattr(proc, "pid", None):
        try:
            os.kill(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    conn = getattr(getattr(playwright, "_impl_obj", None), "_connection", None)
    transport = getattr(conn, "_transport", None)
    driver = getattr(transport, "_proc", None)
    if driver is not None:
        try:
            driver.kill()
        except ProcessLookupError:
            pass


class SessionManager:
    """Acquires and configures one automation session per task.

    Concurrency is fixed at one live session. Two tasks never share ambient
    browser state (cookies, storage, service workers) this way.
    """

    def __init__(
        self,
        playwright_factory: Callable[[], Any] = async_playwright,
        supervisor: TeardownSupervisor | None = None,
        launch_timeout: int | None = None,
    ):
        self._playwright_factory = playwright_factory
        self._supervisor = supervisor or TeardownSupervisor()
        self._launch_timeout = launch_timeout or settings.LAUNCH_TIMEOUT
        self._slot: asyncio.Lock | None = None
        self._loop = None
        self._live: set[str] = set()

    @property
    def supervisor(self) -> TeardownSupervisor:
        return self._supervisor

    @property
    def live_sessions(self) -> int:
        """Sessions acquired and not yet released."""
        return len(self._live)

    @property
    def busy(self) -> bool:
        return self._slot is not None and self._slot.locked()

    def _get_slot(self) -> asyncio.Lock:
        """Get or create the slot lock bound to the current event loop."""
        current_loop = asyncio.get_running_loop()
        if self._slot is None or self._loop is not current_loop:
            self._slot = asyncio.Lock()
            self._loop = current_loop
        return self._slot

    async def acquire(
        self,
        profile: AntiDetectionProfile,
        hints: EnvironmentHints | None = None,
        timeout: float | None = None,
    ) -> Session:
        """Launch Chromium, open a context for ``profile`` and return the session.

        Waits for the slot if another task holds it. ``timeout`` (seconds)
        bounds the wait and the launch together. Raises LaunchError when
        the engine cannot start in time or at all; the slot is given back
        in that case.
        """
        hints = hints or EnvironmentHints.from_settings()
        slot = self._get_slot()
        started = time.monotonic()
        try:
            await asyncio.wait_for(slot.acquire(), timeout)
        except asyncio.TimeoutError:
            raise LaunchError(f"No browser session became free within {timeout:.1f}s") from None
        if timeout is not None:
            timeout = max(0.0, timeout - (time.monotonic() - started))
        try:
            session = await self._launch(profile, hints, timeout)
        except BaseException:
            slot.release()
            raise
        self._live.add(session.session_id)
        live_sessions_gauge.inc()
        logger.info(
            f"Session {session.session_id} acquired "
            f"(container={hints.is_container}, viewport={profile.viewport['width']}x{profile.viewport['height']})"
        )
        return session

    async def _launch(
        self, profile: AntiDetectionProfile, hints: EnvironmentHints, timeout: float | None = None
    ) -> Session:
        args = build_launch_args(hints)
        launch_ms = self._launch_timeout
        if timeout is not None:
            launch_ms = max(1, min(launch_ms, int(timeout * 1000)))
        handles: dict[str, Any] = {}
        try:
            page = await asyncio.wait_for(
                self._start(profile, hints, args, launch_ms, handles), timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Browser launch stalled after {launch_ms}ms, abandoning it")
            await self._abandon(handles, kill=True)
            raise LaunchError(f"Browser did not start within {launch_ms}ms") from None
        except Exception as e:
            logger.error(f"Browser launch failed: {e}")
            await self._abandon(handles)
            raise LaunchError(f"Browser cannot start: {e}") from e

        return Session(
            profile=profile,
            launch_args=args,
            playwright=handles["playwright"],
            browser=handles["browser"],
            context=handles["context"],
            page=page,
        )

    async def _start(
        self,
        profile: AntiDetectionProfile,
        hints: EnvironmentHints,
        args: list[str],
        launch_ms: int,
        handles: dict[str, Any],
    ) -> Any:
        # Published as they come up; _abandon tears down whatever exists.
        handles["playwright"] = pw = await self._playwright_factory().start()
        handles["browser"] = browser = await pw.chromium.launch(
            headless=hints.headless,
            args=args,
            timeout=launch_ms,
        )
        handles["context"] = context = await browser.new_context(**profile.context_options())
        await context.add_init_script(profile.init_script())
        return await context.new_page()

    async def _abandon(self, handles: dict[str, Any], kill: bool = False) -> None:
        """Best-effort close of a partially launched engine, within the grace window.

        Falls back to killing the processes when the close does not finish.
        """

        async def close_all() -> None:
            for name, method in (("context", "close"), ("browser", "close"), ("playwright", "stop")):
                handle = handles.get(name)
                if handle is None:
                    continue
                try:
                    await getattr(handle, method)()
                except Exception as e:
                    logger.debug(f"Ignoring error while abandoning {name}: {e}")

        try:
            await asyncio.wait_for(close_all(), timeout=self._supervisor.grace)
        except asyncio.TimeoutError:
            logger.warning(f"Abandoned launch did not close within {self._supervisor.grace}s")
            kill = True
        if kill:
            kill_processes(handles.get("playwright"), handles.get("browser"))

    async def release(self, session: Session) -> list[CleanupError]:
        """Tear the session down within the grace window and free the slot."""
        if session.released:
            return []
        try:
            return await self._supervisor.release(session)
        finally:
            session.released = True
            self._live.discard(session.session_id)
            live_sessions_gauge.dec()
            if self._slot is not None and self._slot.locked():
                self._slot.release()
            logger.info(f"Session {session.session_id} released")

    @asynccontextmanager
    async def session(
        self,
        profile: AntiDetectionProfile,
        hints: EnvironmentHints | None = None,
        cleanup_errors: list[CleanupError] | None = None,
        timeout: float | None = None,
    ) -> AsyncIterator[Session]:
        """Acquire a session and always release it, however the body ends.

        Cleanup errors are appended to ``cleanup_errors`` when given.
        """
        session = await self.acquire(profile, hints, timeout)
        try:
            yield session
        finally:
            errors = await asyncio.shield(self.release(session))
            if cleanup_errors is not None:
                cleanup_errors.extend(errors)
