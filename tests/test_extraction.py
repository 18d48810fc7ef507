"""Tests for the analyze artifact cascades."""

import pytest
from playwright.async_api import Error as PlaywrightError

from conftest import EXAMPLE_HTML, FakePage, FakeWorld
from crawlhook.core.exceptions import FatalHandlerError
from crawlhook.services import extraction
from crawlhook.services.cascade import Deadline
from crawlhook.services.extraction import HTML_PLACEHOLDER, ExtractionEngine
from crawlhook.services.result import TaskResult
from crawlhook.services.task import CrawlTask


def _page(**script) -> FakePage:
    world = FakeWorld()
    for key, value in script.items():
        setattr(world.script, key, value)
    return FakePage(world, 1, world.script)


@pytest.fixture
def engine():
    return ExtractionEngine(step_timeout=500, screenshot_timeout=500)


async def _extract(engine, page, task=None, deadline=None) -> TaskResult:
    task = task or CrawlTask(url="https://example.com")
    result = TaskResult(url=task.url)
    await engine.extract(page, task, result, deadline)
    return result


class TestHtmlCascade:
    @pytest.mark.asyncio
    async def test_stripped_markup_drops_scripts_and_styles(self, engine):
        result = await _extract(engine, _page())
        html = result.value(extraction.HTML)
        assert "<h1>Example Domain</h1>" in html
        assert "<script" not in html
        assert "<style" not in html
        assert result.artifacts[extraction.HTML].strategy == "stripped"

    @pytest.mark.asyncio
    async def test_primary_failure_yields_raw_content(self, engine):
        """A failing primary yields exactly what the next strategy returns."""
        page = _page(evaluate={extraction.STRIPPED_HTML_JS: PlaywrightError("Execution context was destroyed")})
        result = await _extract(engine, page)
        assert result.value(extraction.HTML) == EXAMPLE_HTML
        assert result.artifacts[extraction.HTML].strategy == "raw"

    @pytest.mark.asyncio
    async def test_body_markup_when_content_fails(self, engine):
        page = _page(
            evaluate={
                extraction.STRIPPED_HTML_JS: PlaywrightError("boom"),
                "content": PlaywrightError("boom"),
            }
        )
        result = await _extract(engine, page)
        assert result.value(extraction.HTML).startswith("<body>")
        assert result.artifacts[extraction.HTML].strategy == "body"

    @pytest.mark.asyncio
    async def test_all_fail_yields_placeholder(self, engine):
        page = _page(
            evaluate={
                extraction.STRIPPED_HTML_JS: PlaywrightError("boom"),
                extraction.BODY_HTML_JS: PlaywrightError("boom"),
                "content": PlaywrightError("boom"),
            }
        )
        result = await _extract(engine, page)
        assert result.value(extraction.HTML) == HTML_PLACEHOLDER
        assert result.artifacts[extraction.HTML].strategy == "placeholder"


class TestTitleAndStructure:
    @pytest.mark.asyncio
    async def test_title_and_structure(self, engine):
        result = await _extract(engine, _page())
        assert result.value(extraction.TITLE) == "Example Domain"
        structure = result.value(extraction.PAGE_STRUCTURE)
        assert structure["hasHeadings"] is True
        assert structure["hasLinks"] is True
        assert structure["hasTables"] is False

    @pytest.mark.asyncio
    async def test_title_falls_back_to_document_title(self, engine):
        page = _page(evaluate={"title": PlaywrightError("boom"), extraction.DOCUMENT_TITLE_JS: "From DOM"})
        result = await _extract(engine, page)
        assert result.value(extraction.TITLE) == "From DOM"
        assert result.artifacts[extraction.TITLE].strategy == "document_title"

    @pytest.mark.asyncio
    async def test_untitled_page_keeps_empty_title(self, engine):
        page = _page(title="")
        result = await _extract(engine, page)
        assert result.value(extraction.TITLE) == ""
        assert result.artifacts[extraction.TITLE].strategy == "page_title"


class TestScreenshot:
    @pytest.mark.asyncio
    async def test_screenshot_is_base64_png(self, engine):
        result = await _extract(engine, _page())
        assert result.value(extraction.SCREENSHOT) == "iVBORw0KGgpmYWtl"
        assert result.artifacts[extraction.SCREENSHOT].strategy == "viewport"

    @pytest.mark.asyncio
    async def test_full_page_strategy(self, engine):
        task = CrawlTask(url="https://example.com", full_page=True)
        result = await _extract(engine, _page(), task)
        assert result.artifacts[extraction.SCREENSHOT].strategy == "full_page"

    @pytest.mark.asyncio
    async def test_screenshot_failure_is_empty_not_fatal(self, engine):
        page = _page(screenshot=PlaywrightError("Target page, context or browser has been closed"))
        result = await _extract(engine, page)
        assert result.value(extraction.SCREENSHOT) == ""
        assert not result.artifacts[extraction.SCREENSHOT].present
        assert result.value(extraction.HTML)


class TestSelectorData:
    @pytest.mark.asyncio
    async def test_named_selectors(self, engine):
        task = CrawlTask(url="https://example.com", selectors={"headline": "h1", "links": "a"})
        result = await _extract(engine, _page(), task)
        data = result.value(extraction.SELECTOR_DATA)
        assert data == {"headline": ["Example Domain"], "links": ["More information..."]}

    @pytest.mark.asyncio
    async def test_not_planned_without_selectors(self, engine):
        result = await _extract(engine, _page())
        assert extraction.SELECTOR_DATA not in result.artifacts


class TestEngineBoundaries:
    @pytest.mark.asyncio
    async def test_expired_deadline_marks_artifacts_absent(self, engine):
        deadline = Deadline(0)
        result = await _extract(engine, _page(), deadline=deadline)
        assert all(not r.present for r in result.artifacts.values())
        assert result.value(extraction.HTML) == HTML_PLACEHOLDER

    @pytest.mark.asyncio
    async def test_closed_page_is_fatal(self, engine):
        page = _page()
        page.closed = True
        with pytest.raises(FatalHandlerError):
            await _extract(engine, page)
