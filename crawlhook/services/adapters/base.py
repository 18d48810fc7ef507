"""Versioned page models.

Selectors for third-party sites drift. Keeping them in one versioned
object per site, picked by URL pattern, means a markup change is a new
adapter version rather than an edit scattered through the pipeline.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SegmentLayout:
    """One known shape of a transcript panel.

    ``segment`` is matched inside ``container``; ``time`` and ``text``
    inside each segment.
    """

    name: str
    container: str
    segment: str
    time: str
    text: str

    def as_args(self) -> dict:
        return {
            "container": self.container,
            "segment": self.segment,
            "time": self.time,
            "text": self.text,
        }


@dataclass(frozen=True)
class PageModelAdapter:
    name: str
    version: str
    url_patterns: tuple[str, ...]
    channel_ready: str | None = None
    watch_ready: str | None = None
    consent_buttons: tuple[str, ...] = ()
    channel_name: tuple[str, ...] = ()
    channel_subscribers: tuple[str, ...] = ()
    video_links: tuple[str, ...] = ()
    short_links: tuple[str, ...] = ()
    description_expanders: tuple[str, ...] = ()
    transcript_buttons: tuple[str, ...] = ()
    more_actions_buttons: tuple[str, ...] = ()
    transcript_menu_items: tuple[str, ...] = ()
    transcript_panels: tuple[str, ...] = ()
    segment_layouts: tuple[SegmentLayout, ...] = ()
    raw_text_containers: tuple[str, ...] = ()
    _compiled: tuple[Any, ...] = field(default=(), repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_compiled", tuple(re.compile(p) for p in self.url_patterns))

    @property
    def label(self) -> str:
        return f"{self.name}@{self.version}"

    def matches(self, url: str) -> bool:
        return any(p.search(url) for p in self._compiled)


class AdapterRegistry:
    """Adapters by URL; later registrations win over earlier ones."""

    def __init__(self, adapters: Sequence[PageModelAdapter] = ()):
        self._adapters: list[PageModelAdapter] = list(adapters)

    def register(self, adapter: PageModelAdapter) -> None:
        self._adapters.append(adapter)
        logger.debug(f"Registered page model {adapter.label}")

    def for_url(self, url: str) -> PageModelAdapter | None:
        for adapter in reversed(self._adapters):
            if adapter.matches(url):
                return adapter
        return None

    def __len__(self) -> int:
        return len(self._adapters)
