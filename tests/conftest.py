"""Shared fixtures: an in-memory Playwright stand-in and a wired app.

``FakeWorld`` plays the part of ``async_playwright()``. Every launch gets a
fresh page driven by ``world.script`` (a ``PageScript``), and every page
operation is appended to ``world.trace`` as ``(page_id, op)``.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from crawlhook.main import create_app
from crawlhook.services import extraction
from crawlhook.services.cron import CronRegistry, WebhookDispatcher
from crawlhook.services.extraction import ExtractionEngine
from crawlhook.services.navigation import NavigationController
from crawlhook.services.pipeline import TaskRunner
from crawlhook.services.profile import AntiDetectionProfile
from crawlhook.services.session import EnvironmentHints, SessionManager
from crawlhook.services.teardown import TeardownSupervisor

EXAMPLE_HTML = """<!doctype html>
<html><head><title>Example Domain</title>
<script>console.log("tracking")</script><style>body { color: red; }</style></head>
<body><div><h1>Example Domain</h1>
<p>This domain is for use in illustrative examples in documents.</p>
<p><a href="https://www.iana.org/domains/example">More information...</a></p>
</div></body></html>"""


def _strip(html: str) -> str:
    return re.sub(r"<(script|style)[^>]*>.*?</\1>", "", html, flags=re.DOTALL)


def _body(html: str) -> str:
    match = re.search(r"<body.*</body>", html, flags=re.DOTALL)
    return match.group(0) if match else ""


def _structure(html: str) -> dict:
    return {
        "hasImages": "<img" in html,
        "hasLinks": "<a " in html,
        "hasForms": "<form" in html,
        "hasHeadings": bool(re.search(r"<h[1-6]", html)),
        "hasLists": "<ul" in html or "<ol" in html,
        "hasTables": "<table" in html,
        "totalElements": html.count("<") - html.count("</"),
    }


@dataclass
class FakeElement:
    text: str = ""
    visible: bool = True
    on_click: Callable[[], None] | None = None
    clicks: int = 0

    async def is_visible(self) -> bool:
        return self.visible

    async def click(self) -> None:
        self.clicks += 1
        if self.on_click:
            self.on_click()

    async def inner_text(self) -> str:
        return self.text


@dataclass
class PageScript:
    """How the next launched page behaves."""

    title: str = "Example Domain"
    html: str = EXAMPLE_HTML
    url: str = "https://example.com/"
    status: int = 200
    visible: set = field(default_factory=set)
    goto_error: Exception | None = None
    networkidle_ok: bool = True
    domcontentloaded_ok: bool = True
    evaluate: dict = field(default_factory=dict)
    screenshot: Any = b"\x89PNG\r\n\x1a\nfake"
    elements: dict = field(default_factory=dict)
    delays: dict = field(default_factory=dict)
    close_delay: float = 0.0
    close_error: Exception | None = None
    launch_error: Exception | None = None


class FakeResponse:
    def __init__(self, status: int):
        self.status = status


class FakePage:
    def __init__(self, world: "FakeWorld", page_id: int, script: PageScript):
        self.world = world
        self.page_id = page_id
        self.script = script
        self.url = "about:blank"
        self.closed = False
        self.goto_calls: list[str] = []
        self.waited_ms: list[int] = []

    async def _step(self, op: str) -> None:
        self.world.trace.append((self.page_id, op))
        await asyncio.sleep(self.script.delays.get(op, 0))

    def is_closed(self) -> bool:
        return self.closed

    async def goto(self, url, wait_until=None, timeout=None):
        await self._step("goto")
        self.goto_calls.append(url)
        if self.script.goto_error is not None:
            raise self.script.goto_error
        self.url = self.script.url if len(self.goto_calls) == 1 else url
        return FakeResponse(self.script.status)

    async def wait_for_selector(self, selector, state=None, timeout=None):
        await self._step("wait_for_selector")
        if selector not in self.script.visible:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def wait_for_load_state(self, state, timeout=None):
        await self._step(f"wait_for_load_state:{state}")
        ok = self.script.networkidle_ok if state == "networkidle" else self.script.domcontentloaded_ok
        if not ok:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {state}")

    async def wait_for_timeout(self, ms):
        self.waited_ms.append(ms)
        await asyncio.sleep(0)

    async def title(self):
        await self._step("title")
        return self._scripted("title", None, lambda: self.script.title)

    async def content(self):
        await self._step("content")
        return self._scripted("content", None, lambda: self.script.html)

    async def evaluate(self, expression, arg=None):
        await self._step("evaluate")
        defaults = {
            extraction.STRIPPED_HTML_JS: lambda: _strip(self.script.html),
            extraction.BODY_HTML_JS: lambda: _body(self.script.html),
            extraction.DOCUMENT_TITLE_JS: lambda: self.script.title,
            extraction.PAGE_STRUCTURE_JS: lambda: _structure(self.script.html),
        }
        return self._scripted(expression, arg, defaults.get(expression, lambda: None))

    def _scripted(self, key, arg, default):
        if key not in self.script.evaluate:
            return default()
        value = self.script.evaluate[key]
        if isinstance(value, Exception):
            raise value
        if callable(value):
            return value(arg) if arg is not None else value()
        return value

    async def screenshot(self, type=None, full_page=False, timeout=None):
        await self._step("screenshot")
        if isinstance(self.script.screenshot, Exception):
            raise self.script.screenshot
        return self.script.screenshot

    async def query_selector(self, selector):
        await self._step("query_selector")
        return self.script.elements.get(selector)


class FakeContext:
    def __init__(self, world, options):
        self.world = world
        self.options = options
        self.init_scripts: list[str] = []
        self.page: FakePage | None = None

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    async def new_page(self):
        self.world.page_count += 1
        self.page = FakePage(self.world, self.world.page_count, self.world.script)
        self.world.pages.append(self.page)
        return self.page

    async def close(self):
        page_id = self.page.page_id if self.page else 0
        self.world.trace.append((page_id, "close"))
        if self.world.script.close_delay:
            await asyncio.sleep(self.world.script.close_delay)
        if self.world.script.close_error is not None:
            raise self.world.script.close_error
        if self.page:
            self.page.closed = True


class FakeBrowser:
    def __init__(self, world, launch_kwargs):
        self.world = world
        self.launch_kwargs = launch_kwargs
        self.contexts: list[FakeContext] = []

    async def new_context(self, **options):
        context = FakeContext(self.world, options)
        self.contexts.append(context)
        return context

    async def close(self):
        pass


class FakeChromium:
    def __init__(self, world):
        self.world = world

    async def launch(self, **kwargs):
        if self.world.script.launch_error is not None:
            raise self.world.script.launch_error
        browser = FakeBrowser(self.world, kwargs)
        self.world.browsers.append(browser)
        return browser


class FakePlaywright:
    def __init__(self, world):
        self.world = world
        self.chromium = FakeChromium(world)
        self.stopped = False

    async def start(self):
        return self

    async def stop(self):
        self.stopped = True


class FakeWorld:
    def __init__(self):
        self.script = PageScript()
        self.trace: list[tuple[int, str]] = []
        self.pages: list[FakePage] = []
        self.browsers: list[FakeBrowser] = []
        self.page_count = 0

    def factory(self) -> FakePlaywright:
        return FakePlaywright(self)


def fake_profile(viewport=None) -> AntiDetectionProfile:
    return AntiDetectionProfile(
        user_agent="Mozilla/5.0 (X11; Linux x86_64) Chrome/124.0 Safari/537.36",
        viewport=dict(viewport or {"width": 1280, "height": 720}),
        headers={"Accept-Language": "en-US,en;q=0.9"},
    )


@pytest.fixture
def world() -> FakeWorld:
    return FakeWorld()


@pytest.fixture
def sessions(world) -> SessionManager:
    return SessionManager(
        playwright_factory=world.factory,
        supervisor=TeardownSupervisor(grace=0.2),
        launch_timeout=1000,
    )


@pytest.fixture
def runner(sessions) -> TaskRunner:
    return TaskRunner(
        sessions=sessions,
        navigator=NavigationController(settle_confirmed=0, settle_unconfirmed=0),
        engine=ExtractionEngine(step_timeout=500, screenshot_timeout=500),
        hints=EnvironmentHints(is_container=False, headless=True),
        profile_factory=fake_profile,
    )


class WebhookRecorder:
    """httpx transport that records requests and answers from a status map."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.statuses: dict[str, int] = {}
        self.unreachable: set[str] = set()

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        webhook_id = request.url.path.rsplit("/", 1)[-1]
        if webhook_id in self.unreachable:
            raise httpx.ConnectError("Connection refused", request=request)
        return httpx.Response(self.statuses.get(webhook_id, 200), json={"received": webhook_id})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def webhooks() -> WebhookRecorder:
    return WebhookRecorder()


@pytest.fixture
def dispatcher(webhooks) -> WebhookDispatcher:
    return WebhookDispatcher(
        base_url="http://n8n.test", timeout=5.0, delay=0, transport=webhooks.transport()
    )


@pytest.fixture
def cron(dispatcher) -> CronRegistry:
    registry = CronRegistry(dispatcher=dispatcher)
    yield registry
    registry.shutdown()


@pytest_asyncio.fixture
async def client(runner, cron):
    app = create_app(runner=runner, cron=cron)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
