"""Video transcripts.

``TranscriptExtractor`` opens a video's transcript panel and reads it:

1. click the first visible transcript control,
2. else open the "more actions" menu and click a transcript item,
3. else accept a panel that is already open.

None of the three working means the video has no transcript, which is
not an error. Once open, segments are parsed into ``{time, text}`` pairs
through the page model's known layouts; a container's raw text is the
last resort when it is long enough to be a real transcript.

``ChannelCollector`` drives a whole channel on one page: the videos tab
(and shorts tab), channel info, then every video in turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from playwright.async_api import Error as PlaywrightError

from crawlhook.config import settings
from crawlhook.core.exceptions import CrawlhookError, NavigationError
from crawlhook.services.adapters.base import PageModelAdapter, SegmentLayout
from crawlhook.services.cascade import Deadline, Strategy, is_present, run_cascade
from crawlhook.services.navigation import NavigationController, _bounded, _first_line
from crawlhook.services.result import ExtractionResult, TaskResult
from crawlhook.services.task import ChannelTranscriptTask

logger = logging.getLogger(__name__)

SEGMENTS_JS = """
(layout) => {
    const container = document.querySelector(layout.container);
    if (!container) return null;
    return Array.from(container.querySelectorAll(layout.segment)).map(seg => {
        const time = seg.querySelector(layout.time);
        const text = seg.querySelector(layout.text);
        return {
            time: time ? time.textContent.trim() : '',
            text: text ? text.textContent.replace(/\\s+/g, ' ').trim() : '',
        };
    }).filter(s => s.text);
}
"""

CONTAINER_TEXT_JS = """
(selector) => {
    const el = document.querySelector(selector);
    return el ? (el.innerText || el.textContent || '').trim() : null;
}
"""

LINKS_JS = """
(selectors) => {
    const seen = new Set();
    const links = [];
    for (const selector of selectors) {
        for (const a of document.querySelectorAll(selector)) {
            const url = a.href;
            if (!url || seen.has(url)) continue;
            seen.add(url);
            const title = (a.getAttribute('title') || a.getAttribute('aria-label') || a.textContent || '').trim();
            links.push({title, url});
        }
    }
    return links;
}
"""

SCROLL_JS = "() => window.scrollBy(0, document.documentElement.scrollHeight)"

CHANNEL_INFO = "channelInfo"
VIDEOS = "videos"

# Menu animation before its items can be probed
MENU_OPEN_DELAY = 500

# No new links after this many scrolls means the tab is exhausted
STALE_SCROLLS = 2

# A video never gets less than this unless the task has less left overall
VIDEO_BUDGET_FLOOR = 15000


async def _click_first(page: Any, selectors: Sequence[str]) -> str | None:
    """Click the first visible match; return its selector or None."""
    for selector in selectors:
        try:
            el = await page.query_selector(selector)
            if el and await el.is_visible():
                await el.click()
                return selector
        except PlaywrightError as e:
            logger.debug(f"Probe {selector} failed: {_first_line(e)}")
            continue
    return None


async def _first_text(page: Any, selectors: Sequence[str]) -> str | None:
    for selector in selectors:
        try:
            el = await page.query_selector(selector)
            if el:
                text = (await el.inner_text()).strip()
                if text:
                    return text
        except PlaywrightError:
            continue
    return None


@dataclass(frozen=True)
class TranscriptOutcome:
    has_transcript: bool
    transcript: list[dict] | str | None = None
    opened_via: str | None = None
    strategy: str | None = None


class TranscriptExtractor:
    def __init__(
        self,
        adapter: PageModelAdapter,
        step_timeout: int | None = None,
        settle_ms: int | None = None,
        min_text_length: int | None = None,
    ):
        self.adapter = adapter
        self.step_timeout = (step_timeout or settings.EXTRACTION_STEP_TIMEOUT) / 1000
        self.settle_ms = settings.TRANSCRIPT_SETTLE_DELAY if settle_ms is None else settle_ms
        self.min_text_length = (
            settings.TRANSCRIPT_MIN_TEXT_LENGTH if min_text_length is None else min_text_length
        )

    # -- opening -----------------------------------------------------------

    async def _open_via_button(self, page: Any) -> str:
        # The description must be expanded before its transcript section renders
        await _click_first(page, self.adapter.description_expanders)
        selector = await _click_first(page, self.adapter.transcript_buttons)
        if selector is None:
            raise LookupError("no transcript control")
        return selector

    async def _open_via_menu(self, page: Any) -> str:
        if await _click_first(page, self.adapter.more_actions_buttons) is None:
            raise LookupError("no more-actions menu")
        await page.wait_for_timeout(MENU_OPEN_DELAY)
        selector = await _click_first(page, self.adapter.transcript_menu_items)
        if selector is None:
            raise LookupError("no transcript item in menu")
        return selector

    async def _panel_present(self, page: Any) -> str:
        for selector in self.adapter.transcript_panels:
            if await page.query_selector(selector):
                return selector
        raise LookupError("no transcript panel")

    def open_strategies(self) -> list[Strategy]:
        return [
            Strategy("button", self._open_via_button),
            Strategy("menu", self._open_via_menu),
            Strategy("panel", self._panel_present),
        ]

    # -- reading -----------------------------------------------------------

    def _segments_strategy(self, layout: SegmentLayout) -> Strategy:
        async def read(page) -> list[dict]:
            segments = await page.evaluate(SEGMENTS_JS, layout.as_args())
            return [{"time": s.get("time", ""), "text": s["text"]} for s in segments or []]

        return Strategy(layout.name, read)

    async def _raw_text(self, page: Any) -> str:
        longest = 0
        for selector in self.adapter.raw_text_containers:
            text = await page.evaluate(CONTAINER_TEXT_JS, selector)
            if text and len(text) > self.min_text_length:
                return text
            longest = max(longest, len(text or ""))
        raise LookupError(
            f"container text too short ({longest} <= {self.min_text_length} chars)"
        )

    def content_strategies(self) -> list[Strategy]:
        strategies = [self._segments_strategy(layout) for layout in self.adapter.segment_layouts]
        strategies.append(Strategy("raw_text", self._raw_text))
        return strategies

    async def extract(self, page: Any, deadline: Deadline) -> TranscriptOutcome:
        opened = await run_cascade(
            "transcript_open",
            page,
            self.open_strategies(),
            step_timeout=self.step_timeout,
            accept=is_present,
            deadline=deadline,
        )
        if not opened.present:
            return TranscriptOutcome(has_transcript=False)

        settle = _bounded(deadline.share(0.25, cap_ms=self.settle_ms))
        await page.wait_for_timeout(settle)

        content = await run_cascade(
            "transcript",
            page,
            self.content_strategies(),
            step_timeout=self.step_timeout,
            deadline=deadline,
        )
        if not content.present:
            return TranscriptOutcome(has_transcript=False, opened_via=opened.strategy)
        return TranscriptOutcome(
            has_transcript=True,
            transcript=content.value,
            opened_via=opened.strategy,
            strategy=content.strategy,
        )


def _video_deadline(deadline: Deadline, videos_left: int) -> Deadline:
    remaining = deadline.remaining_ms()
    fair = remaining / max(1, videos_left)
    return Deadline(min(remaining, max(fair, VIDEO_BUDGET_FLOOR)))


def _interleave(first: list[dict], second: list[dict]) -> list[dict]:
    merged = []
    for i in range(max(len(first), len(second))):
        if i < len(first):
            merged.append(first[i])
        if i < len(second):
            merged.append(second[i])
    return merged


class ChannelCollector:
    """Runs a channel transcript task against one live page."""

    def __init__(
        self,
        adapter: PageModelAdapter,
        navigator: NavigationController | None = None,
        extractor: TranscriptExtractor | None = None,
        scroll_pause_ms: int = 1000,
    ):
        self.adapter = adapter
        self.navigator = navigator or NavigationController()
        self.extractor = extractor or TranscriptExtractor(adapter)
        self.scroll_pause_ms = scroll_pause_ms

    async def dismiss_consent(self, page: Any) -> None:
        selector = await _click_first(page, self.adapter.consent_buttons)
        if selector:
            logger.info(f"Dismissed consent dialog via {selector}")
            await page.wait_for_timeout(300)

    async def read_channel_info(self, page: Any, url: str) -> dict:
        name = await _first_text(page, self.adapter.channel_name)
        if not name:
            try:
                name = (await page.title()).removesuffix(" - YouTube").strip() or None
            except PlaywrightError:
                name = None
        subscribers = await _first_text(page, self.adapter.channel_subscribers)
        return {"name": name, "subscribers": subscribers, "url": url}

    async def collect_links(
        self,
        page: Any,
        selectors: Sequence[str],
        limit: int,
        deadline: Deadline,
    ) -> list[dict]:
        """Scroll until ``limit`` links are visible or no new ones load."""
        links: list[dict] = []
        stale = 0
        while len(links) < limit and not deadline.expired:
            try:
                found = await page.evaluate(LINKS_JS, list(selectors)) or []
            except PlaywrightError as e:
                logger.warning(f"Link collection stopped: {_first_line(e)}")
                break
            if len(found) <= len(links):
                stale += 1
                if stale >= STALE_SCROLLS:
                    break
            else:
                stale = 0
                links = found
            if len(links) >= limit:
                break
            try:
                await page.evaluate(SCROLL_JS)
            except PlaywrightError as e:
                logger.warning(f"Scroll failed: {_first_line(e)}")
                break
            await page.wait_for_timeout(_bounded(deadline.share(0.1, cap_ms=self.scroll_pause_ms)))
        return links[:limit]

    async def _collect_tab(
        self,
        page: Any,
        url: str,
        selectors: Sequence[str],
        task: ChannelTranscriptTask,
        deadline: Deadline,
        is_short: bool,
    ) -> list[dict]:
        await self.navigator.navigate(page, url, deadline, self.adapter.channel_ready)
        await self.dismiss_consent(page)
        links = await self.collect_links(page, selectors, task.max_videos, deadline)
        logger.info(f"Collected {len(links)} {'shorts' if is_short else 'videos'} from {url}")
        return [{"title": link["title"], "url": link["url"], "isShort": is_short} for link in links]

    async def run(
        self,
        page: Any,
        task: ChannelTranscriptTask,
        result: TaskResult,
        deadline: Deadline,
    ) -> TaskResult:
        """Fill ``result`` with channelInfo and videos.

        NavigationError on the channel's videos tab propagates; everything
        after that degrades into per-video errors.
        """
        channel = task.url
        nav = await self.navigator.navigate(page, f"{channel}/videos", deadline, self.adapter.channel_ready)
        result.navigation = nav
        if nav.status_code is not None and nav.status_code >= 400:
            raise NavigationError(f"Channel page {channel} answered HTTP {nav.status_code}")
        await self.dismiss_consent(page)

        info = await self.read_channel_info(page, channel)
        result.record(
            ExtractionResult(CHANNEL_INFO, value=info, strategy=self.adapter.label, present=True)
        )

        videos = await self.collect_links(page, self.adapter.video_links, task.max_videos, deadline)
        videos = [{"title": v["title"], "url": v["url"], "isShort": False} for v in videos]
        logger.info(f"Collected {len(videos)} videos from {channel}")

        if task.include_shorts and not deadline.expired:
            try:
                shorts = await self._collect_tab(
                    page, f"{channel}/shorts", self.adapter.short_links, task, deadline, is_short=True
                )
            except CrawlhookError as e:
                result.warn(f"Shorts tab unavailable: {e.message}")
                shorts = []
            videos = _interleave(videos, shorts)[: task.max_videos]

        processed: list[dict] = []
        self._record_videos(result, processed)
        for index, video in enumerate(videos):
            if deadline.expired:
                result.warn(
                    f"Time budget exhausted: {len(videos) - index} video(s) not processed"
                )
                break
            video_deadline = _video_deadline(deadline, len(videos) - index)
            processed.append(await self._process_video(page, video, video_deadline, result))
            self._record_videos(result, processed)
        return result

    def _record_videos(self, result: TaskResult, processed: list[dict]) -> None:
        # Re-recorded after every video so a budget cut keeps what was done
        result.record(
            ExtractionResult(
                VIDEOS, value=list(processed), strategy=self.adapter.label, present=bool(processed)
            )
        )

    async def _process_video(self, page: Any, video: dict, deadline: Deadline, result: TaskResult) -> dict:
        entry = {
            "title": video["title"],
            "url": video["url"],
            "isShort": video["isShort"],
            "transcript": None,
            "hasTranscript": False,
        }
        try:
            await self.navigator.navigate(page, video["url"], deadline, self.adapter.watch_ready)
            outcome = await self.extractor.extract(page, deadline)
        except CrawlhookError as e:
            message = e.message
        except PlaywrightError as e:
            message = _first_line(e)
        else:
            entry["transcript"] = outcome.transcript
            entry["hasTranscript"] = outcome.has_transcript
            logger.debug(
                f"Transcript for {video['url']}: has={outcome.has_transcript} "
                f"opened_via={outcome.opened_via} strategy={outcome.strategy}"
            )
            return entry
        logger.warning(f"Video {video['url']} failed: {message}")
        entry["error"] = message
        result.warn(f"{video['title'] or video['url']}: {message}")
        return entry
