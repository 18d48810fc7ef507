"""Ordered strategy cascades.

A cascade is a list of named async strategies sharing one signature
(page in, value out). ``run_cascade`` tries them in order, each under its
own short timeout, and returns the first accepted value. A strategy that
raises, times out or yields an unacceptable value only advances the
cascade. Adding or removing a fallback is a change to the list, not to
control flow.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Sequence

from crawlhook.core.exceptions import CrawlhookError, ExtractionStrategyFailure
from crawlhook.core.metrics import cascade_absent_total, cascade_fallback_total
from crawlhook.services.result import ExtractionResult

logger = logging.getLogger(__name__)

StrategyFn = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class Strategy:
    name: str
    fn: StrategyFn
    timeout: float | None = None  # seconds; None uses the cascade default


def is_present(value: Any) -> bool:
    """Default acceptance: anything but None and empty strings/collections."""
    if value is None:
        return False
    if isinstance(value, (str, bytes, list, dict, tuple)):
        return len(value) > 0
    return True


class Deadline:
    """Monotonic budget shared by every wait of one task."""

    def __init__(self, budget_ms: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.budget_ms = budget_ms
        self._expires = clock() + budget_ms / 1000

    def remaining_ms(self) -> float:
        return max(0.0, (self._expires - self._clock()) * 1000)

    def remaining(self) -> float:
        return self.remaining_ms() / 1000

    @property
    def expired(self) -> bool:
        return self.remaining_ms() <= 0

    def share(self, fraction: float, cap_ms: float | None = None) -> float:
        """A slice of what is left, in ms, optionally capped."""
        ms = self.remaining_ms() * fraction
        if cap_ms is not None:
            ms = min(ms, cap_ms)
        return ms


async def run_cascade(
    artifact: str,
    page: Any,
    strategies: Sequence[Strategy],
    step_timeout: float,
    accept: Callable[[Any], bool] = is_present,
    empty: Any = None,
    deadline: Deadline | None = None,
) -> ExtractionResult:
    """Run ``strategies`` in order until one produces an accepted value.

    Args:
        artifact: Artifact name, for diagnostics and metrics.
        page: Handed to every strategy.
        strategies: Ordered candidates.
        step_timeout: Per-strategy timeout in seconds.
        accept: Predicate a value must pass to win.
        empty: Value recorded when every strategy fails.
        deadline: Task budget; a step never gets more than what is left.

    Returns:
        ExtractionResult naming the winning strategy, or an absent result.
    """
    failures: list[str] = []
    for strategy in strategies:
        timeout = strategy.timeout if strategy.timeout is not None else step_timeout
        if deadline is not None:
            timeout = min(timeout, deadline.remaining())
            if timeout <= 0:
                failures.append(f"{strategy.name}: task budget exhausted")
                break
        try:
            value = await asyncio.wait_for(strategy.fn(page), timeout=timeout)
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout:.1f}s"
        except CrawlhookError as e:
            if e.fatal:
                raise
            reason = e.message
        except Exception as e:
            reason = str(e).splitlines()[0] if str(e) else type(e).__name__
        else:
            if accept(value):
                if failures:
                    logger.info(f"{artifact}: strategy '{strategy.name}' succeeded after {len(failures)} fallback(s)")
                return ExtractionResult(
                    artifact=artifact,
                    value=value,
                    strategy=strategy.name,
                    present=True,
                    failures=tuple(failures),
                )
            reason = "no usable value"

        logger.debug(f"Cascade step failed: {ExtractionStrategyFailure(artifact, strategy.name, reason)}")
        cascade_fallback_total.labels(artifact=artifact, strategy=strategy.name).inc()
        failures.append(f"{strategy.name}: {reason}")

    logger.warning(f"{artifact}: every strategy failed ({'; '.join(failures)})")
    cascade_absent_total.labels(artifact=artifact).inc()
    return ExtractionResult.absent(artifact, empty=empty, failures=failures)
