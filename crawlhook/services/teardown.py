"""Bounded session release.

The graceful shutdown of a session races a fixed grace window. Whichever
finishes first wins; on overrun the shutdown is cancelled and the browser
processes are killed, so a hung close never holds the caller or the
session slot past the window.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from crawlhook.config import settings
from crawlhook.core.exceptions import CleanupError
from crawlhook.core.metrics import teardown_timeouts_total

if TYPE_CHECKING:
    from crawlhook.services.session import Session

logger = logging.getLogger(__name__)


def _consume_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()


class TeardownSupervisor:
    def __init__(self, grace: float | None = None):
        self.grace = settings.TEARDOWN_GRACE_SECONDS if grace is None else grace

    async def release(self, session: "Session") -> list[CleanupError]:
        """Close ``session``; return the cleanup errors seen (never raises)."""
        errors: list[CleanupError] = []
        closing = asyncio.ensure_future(session.close())
        done, _ = await asyncio.wait({closing}, timeout=self.grace)

        if not done:
            closing.cancel()
            closing.add_done_callback(_consume_result)
            teardown_timeouts_total.inc()
            logger.warning(
                f"Session {session.session_id} shutdown exceeded {self.grace}s grace window, killing"
            )
            errors.append(CleanupError(f"graceful shutdown exceeded {self.grace}s"))
        else:
            exc = closing.exception()
            if exc is None:
                return errors
            logger.warning(f"Cleanup error (non-critical) for session {session.session_id}: {exc}")
            errors.append(exc if isinstance(exc, CleanupError) else CleanupError(str(exc)))

        try:
            session.kill()
        except OSError as e:
            logger.debug(f"Kill after failed shutdown: {e}")
            errors.append(CleanupError(f"kill failed: {e}"))
        return errors
