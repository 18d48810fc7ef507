"""Error taxonomy.

Task errors (``CrawlhookError`` subclasses) carry the pipeline stage they
occurred in and whether they end the task. Only fatal ones reach the
caller as ``success: false``; the rest become diagnostics on the result.

HTTP errors (``AppError`` subclasses) are raised by routes and rendered by
the exception handler registered in ``crawlhook.main``.
"""

from enum import Enum


class ErrorStage(str, Enum):
    LAUNCH = "launch"
    NAVIGATION = "navigation"
    EXTRACTION = "extraction"
    CLEANUP = "cleanup"


class CrawlhookError(Exception):
    """Base class for errors raised inside a task pipeline."""

    stage: ErrorStage = ErrorStage.EXTRACTION
    fatal: bool = False

    def __init__(self, message: str, *, stage: ErrorStage | None = None):
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage

    @property
    def kind(self) -> str:
        return type(self).__name__


class LaunchError(CrawlhookError):
    """The automation engine could not start."""

    stage = ErrorStage.LAUNCH
    fatal = True


class NavigationError(CrawlhookError):
    """The target could not be reached at all (DNS, refused, TLS...)."""

    stage = ErrorStage.NAVIGATION
    fatal = True


class TaskTimeout(CrawlhookError):
    """The task budget ran out before the page reached a usable state."""

    stage = ErrorStage.NAVIGATION
    fatal = True


class NavigationTimeout(CrawlhookError):
    """A readiness wait expired. Drives the fallback chain."""

    stage = ErrorStage.NAVIGATION


class SelectorNotFound(CrawlhookError):
    stage = ErrorStage.NAVIGATION


class ExtractionStrategyFailure(CrawlhookError):
    """One strategy of a cascade failed or timed out."""

    def __init__(self, artifact: str, strategy: str, message: str):
        super().__init__(f"{artifact}/{strategy}: {message}")
        self.artifact = artifact
        self.strategy = strategy


class FatalHandlerError(CrawlhookError):
    """Unexpected exception while handling a page."""

    fatal = True


class CleanupError(CrawlhookError):
    """Releasing the session failed or overran the grace window. Logged only."""

    stage = ErrorStage.CLEANUP


# ---------------------------------------------------------------------------
# HTTP-facing errors
# ---------------------------------------------------------------------------


class AppError(Exception):
    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(AppError):
    status_code = 400


class ValidationError(BadRequestError):
    """Invalid scheduler input (bad cron expression, empty target list)."""


class NotFoundError(AppError):
    status_code = 404
