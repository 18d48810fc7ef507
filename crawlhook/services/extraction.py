"""Artifact extraction for a ready page.

Each artifact is produced by an ordered cascade (see ``cascade``). The
engine runs the artifacts one after the other and records every outcome
on the task's ``TaskResult``; an artifact whose cascade fails completely
is recorded as absent and the engine moves on.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any

from crawlhook.config import settings
from crawlhook.core.exceptions import FatalHandlerError
from crawlhook.services.cascade import Deadline, Strategy, run_cascade
from crawlhook.services.result import ExtractionResult, TaskResult
from crawlhook.services.selectors import extract_by_selectors
from crawlhook.services.task import CrawlTask

logger = logging.getLogger(__name__)

# Last resort of the cleaned-markup cascade
HTML_PLACEHOLDER = "<html><head></head><body><!-- content unavailable --></body></html>"

STRIPPED_HTML_JS = """
() => {
    const clone = document.documentElement.cloneNode(true);
    clone.querySelectorAll('script, style, noscript, link[rel="stylesheet"]')
        .forEach(el => el.remove());
    return clone.outerHTML || '';
}
"""

BODY_HTML_JS = "() => document.body ? document.body.outerHTML : ''"

DOCUMENT_TITLE_JS = "() => document.title"

PAGE_STRUCTURE_JS = """
() => ({
    hasImages: document.images.length > 0,
    hasLinks: document.querySelector('a[href]') !== null,
    hasForms: document.forms.length > 0,
    hasHeadings: document.querySelector('h1, h2, h3, h4, h5, h6') !== null,
    hasLists: document.querySelector('ul, ol') !== null,
    hasTables: document.querySelector('table') !== null,
    totalElements: document.getElementsByTagName('*').length,
})
"""

# Artifact names, in extraction order
TITLE = "title"
PAGE_STRUCTURE = "pageStructure"
HTML = "html"
SCREENSHOT = "screenshot"
SELECTOR_DATA = "selectorData"


# ---------------------------------------------------------------------------
# Strategies: uniform signature, page in, value out
# ---------------------------------------------------------------------------


async def _page_title(page) -> str:
    return await page.title()


async def _document_title(page) -> str:
    return await page.evaluate(DOCUMENT_TITLE_JS)


async def _stripped_html(page) -> str:
    return await page.evaluate(STRIPPED_HTML_JS)


async def _raw_html(page) -> str:
    return await page.content()


async def _body_html(page) -> str:
    return await page.evaluate(BODY_HTML_JS)


async def _placeholder_html(page) -> str:
    return HTML_PLACEHOLDER


async def _page_structure(page) -> dict:
    return await page.evaluate(PAGE_STRUCTURE_JS)


TITLE_CASCADE = [
    Strategy("page_title", _page_title),
    Strategy("document_title", _document_title),
]

HTML_CASCADE = [
    Strategy("stripped", _stripped_html),
    Strategy("raw", _raw_html),
    Strategy("body", _body_html),
    Strategy("placeholder", _placeholder_html),
]

STRUCTURE_CASCADE = [
    Strategy("dom_query", _page_structure),
]


def _screenshot_strategy(full_page: bool, timeout_ms: int) -> Strategy:
    async def capture(page) -> str:
        png = await page.screenshot(type="png", full_page=full_page, timeout=timeout_ms)
        return base64.b64encode(png).decode()

    return Strategy("full_page" if full_page else "viewport", capture, timeout=timeout_ms / 1000)


def _selector_strategies(task: CrawlTask, result: TaskResult) -> list[Strategy]:
    async def from_rendered_dom(page) -> dict:
        html = await page.content()
        return await asyncio.to_thread(
            extract_by_selectors, html, task.selectors, task.include_attributes
        )

    async def from_cleaned_markup(page) -> dict:
        html = result.value(HTML)
        if not html or html == HTML_PLACEHOLDER:
            raise ValueError("no cleaned markup to scrape")
        return await asyncio.to_thread(
            extract_by_selectors, html, task.selectors, task.include_attributes
        )

    return [
        Strategy("rendered_dom", from_rendered_dom),
        Strategy("cleaned_markup", from_cleaned_markup),
    ]


def _is_str(value: Any) -> bool:
    return isinstance(value, str)


def _is_dict(value: Any) -> bool:
    return isinstance(value, dict)


class ExtractionEngine:
    """Runs the analyze artifacts' cascades against a ready page."""

    def __init__(self, step_timeout: int | None = None, screenshot_timeout: int | None = None):
        self.step_timeout = (step_timeout or settings.EXTRACTION_STEP_TIMEOUT) / 1000
        self.screenshot_timeout = screenshot_timeout or settings.SCREENSHOT_TIMEOUT

    def plan(self, task: CrawlTask, result: TaskResult) -> list[tuple[str, list[Strategy], dict]]:
        """Artifacts to extract for ``task``: (name, cascade, run_cascade kwargs)."""
        plan = [
            (TITLE, TITLE_CASCADE, {"accept": _is_str, "empty": ""}),
            (PAGE_STRUCTURE, STRUCTURE_CASCADE, {"accept": _is_dict, "empty": {}}),
            (HTML, HTML_CASCADE, {"empty": HTML_PLACEHOLDER}),
            (SCREENSHOT, [_screenshot_strategy(task.full_page, self.screenshot_timeout)], {"empty": ""}),
        ]
        if task.selectors:
            plan.append(
                (SELECTOR_DATA, _selector_strategies(task, result), {"accept": _is_dict, "empty": {}})
            )
        return plan

    async def extract(
        self,
        page: Any,
        task: CrawlTask,
        result: TaskResult,
        deadline: Deadline | None = None,
    ) -> TaskResult:
        """Populate ``result`` with every planned artifact.

        Raises FatalHandlerError when the page itself is gone or an
        unexpected error escapes a cascade; artifact-level failures never
        raise.
        """
        for artifact, strategies, options in self.plan(task, result):
            if deadline is not None and deadline.expired:
                result.record(
                    ExtractionResult.absent(
                        artifact, empty=options.get("empty"), failures=["task budget exhausted"]
                    )
                )
                continue
            if _page_closed(page):
                raise FatalHandlerError(f"Page closed before extracting {artifact}")
            try:
                outcome = await run_cascade(
                    artifact,
                    page,
                    strategies,
                    step_timeout=self.step_timeout,
                    deadline=deadline,
                    **options,
                )
            except FatalHandlerError:
                raise
            except Exception as e:
                raise FatalHandlerError(f"Extraction of {artifact} failed: {e}") from e
            result.record(outcome)
        return result


def _page_closed(page: Any) -> bool:
    is_closed = getattr(page, "is_closed", None)
    return bool(is_closed()) if callable(is_closed) else False
