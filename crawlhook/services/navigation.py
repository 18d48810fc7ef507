"""Page readiness policy.

Navigation runs a small state machine:

    goto -> AwaitingSelector ----(found)-----------------------> Ready
                 |  (timeout)
                 v
            AwaitingDomContentLoaded --(loaded | timeout)-------> Ready

    goto -> AwaitingNetworkIdle --(idle)------------------------> Ready
                 |  (timeout)
                 v
            AwaitingDomContentLoaded --(loaded | timeout)-------> Ready

Every wait is bounded by a slice of the task deadline. A wait timeout is
recorded on the ``NavigationState`` and never raised: extraction always
runs against whatever the page reached. Only a target that cannot be
reached at all (DNS failure, refused connection, ...) is fatal.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from crawlhook.config import settings
from crawlhook.core.exceptions import NavigationError, NavigationTimeout, SelectorNotFound
from crawlhook.services.cascade import Deadline

logger = logging.getLogger(__name__)


def _bounded(ms: float) -> int:
    """Playwright reads a timeout of 0 as 'wait forever'."""
    return max(1, int(ms))


def _first_line(exc: Exception) -> str:
    text = str(exc).strip()
    return text.splitlines()[0] if text else type(exc).__name__


class ReadinessState(str, Enum):
    NAVIGATING = "Navigating"
    AWAITING_SELECTOR = "AwaitingSelector"
    AWAITING_NETWORK_IDLE = "AwaitingNetworkIdle"
    AWAITING_DOM_CONTENT_LOADED = "AwaitingDomContentLoaded"
    TIMED_OUT = "TimedOut"
    READY = "Ready"


@dataclass
class NavigationState:
    url: str
    wait_for_selector: str | None = None
    state: ReadinessState = ReadinessState.NAVIGATING
    strategy: str | None = None
    selector_found: bool = False
    status_code: int | None = None
    final_url: str | None = None
    settle_ms: int = 0
    history: list[str] = field(default_factory=list)
    timeouts: list[str] = field(default_factory=list)

    def enter(self, state: ReadinessState) -> None:
        self.state = state
        self.history.append(state.value)

    def record_timeout(self, exc: Exception) -> None:
        self.timeouts.append(f"{type(exc).__name__}: {exc}")

    @property
    def ready(self) -> bool:
        return self.state == ReadinessState.READY

    def to_dict(self) -> dict:
        return {
            "strategy": self.strategy,
            "selectorFound": self.selector_found,
            "waitForSelector": self.wait_for_selector,
            "statusCode": self.status_code,
            "timeouts": list(self.timeouts),
        }


class NavigationController:
    """Brings a page to a ready state within the task deadline.

    Budget shares are fractions of the time left when each wait starts.
    """

    GOTO_SHARE = 0.6
    PRIMARY_WAIT_SHARE = 0.5
    FALLBACK_WAIT_SHARE = 0.25
    SETTLE_SHARE = 0.25

    def __init__(
        self,
        dom_fallback_timeout: int | None = None,
        settle_confirmed: int | None = None,
        settle_unconfirmed: int | None = None,
    ):
        self.dom_fallback_timeout = dom_fallback_timeout or settings.DOM_FALLBACK_TIMEOUT
        self.settle_confirmed = (
            settings.SETTLE_DELAY_CONFIRMED if settle_confirmed is None else settle_confirmed
        )
        self.settle_unconfirmed = (
            settings.SETTLE_DELAY_UNCONFIRMED if settle_unconfirmed is None else settle_unconfirmed
        )

    async def navigate(
        self,
        page: Any,
        url: str,
        deadline: Deadline,
        wait_for_selector: str | None = None,
    ) -> NavigationState:
        nav = NavigationState(url=url, wait_for_selector=wait_for_selector)
        nav.enter(ReadinessState.NAVIGATING)

        await self._goto(page, nav, deadline)

        if wait_for_selector:
            await self._await_selector(page, nav, deadline)
        else:
            await self._await_network_idle(page, nav, deadline)

        nav.enter(ReadinessState.READY)
        await self._settle(page, nav, deadline)
        try:
            nav.final_url = page.url
        except PlaywrightError:
            nav.final_url = url
        logger.info(
            f"Page ready: {url} (strategy={nav.strategy}, selectorFound={nav.selector_found}, "
            f"timeouts={len(nav.timeouts)})"
        )
        return nav

    async def _goto(self, page: Any, nav: NavigationState, deadline: Deadline) -> None:
        try:
            response = await page.goto(
                nav.url,
                wait_until="domcontentloaded",
                timeout=_bounded(deadline.share(self.GOTO_SHARE)),
            )
        except PlaywrightTimeoutError as e:
            # Something may have rendered; the wait policy decides what to do with it
            logger.info(f"Navigation to {nav.url} timed out, continuing with partial page")
            nav.record_timeout(NavigationTimeout(_first_line(e)))
            return
        except PlaywrightError as e:
            raise NavigationError(f"Navigation to {nav.url} failed: {_first_line(e)}") from e
        if response is not None:
            nav.status_code = response.status

    async def _await_selector(self, page: Any, nav: NavigationState, deadline: Deadline) -> None:
        nav.enter(ReadinessState.AWAITING_SELECTOR)
        try:
            await page.wait_for_selector(
                nav.wait_for_selector,
                state="visible",
                timeout=_bounded(deadline.share(self.PRIMARY_WAIT_SHARE)),
            )
        except PlaywrightError as e:
            logger.info(f"Selector {nav.wait_for_selector} not found, continuing anyway")
            nav.record_timeout(SelectorNotFound(_first_line(e)))
            await self._await_dom_content_loaded(page, nav, deadline)
            return
        nav.selector_found = True
        nav.strategy = "selector"

    async def _await_network_idle(self, page: Any, nav: NavigationState, deadline: Deadline) -> None:
        nav.enter(ReadinessState.AWAITING_NETWORK_IDLE)
        try:
            await page.wait_for_load_state(
                "networkidle", timeout=_bounded(deadline.share(self.PRIMARY_WAIT_SHARE))
            )
        except PlaywrightError as e:
            nav.record_timeout(NavigationTimeout(_first_line(e)))
            await self._await_dom_content_loaded(page, nav, deadline)
            return
        logger.debug("Network idle detected")
        nav.strategy = "networkidle"

    async def _await_dom_content_loaded(
        self, page: Any, nav: NavigationState, deadline: Deadline
    ) -> None:
        nav.enter(ReadinessState.AWAITING_DOM_CONTENT_LOADED)
        try:
            await page.wait_for_load_state(
                "domcontentloaded",
                timeout=_bounded(
                    deadline.share(self.FALLBACK_WAIT_SHARE, cap_ms=self.dom_fallback_timeout)
                ),
            )
        except PlaywrightError as e:
            nav.record_timeout(NavigationTimeout(_first_line(e)))
            nav.enter(ReadinessState.TIMED_OUT)
            nav.strategy = "none"
            return
        logger.debug("DOM content loaded")
        nav.strategy = "domcontentloaded"

    async def _settle(self, page: Any, nav: NavigationState, deadline: Deadline) -> None:
        wanted = self.settle_confirmed if nav.selector_found else self.settle_unconfirmed
        nav.settle_ms = int(deadline.share(self.SETTLE_SHARE, cap_ms=wanted))
        if nav.settle_ms > 0:
            await page.wait_for_timeout(nav.settle_ms)
