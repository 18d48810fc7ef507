from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from crawlhook.config import settings
from crawlhook.services.adapters.youtube import channel_url


@dataclass(frozen=True)
class CrawlTask:
    """One bounded request to fetch a page and extract its artifacts."""

    url: str
    wait_for_selector: str | None = None
    timeout_ms: int = field(default_factory=lambda: settings.DEFAULT_ANALYZE_TIMEOUT)
    full_page: bool = False
    viewport: Mapping[str, int] | None = None
    include_attributes: bool = False
    selectors: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "selectors", MappingProxyType(dict(self.selectors or {})))
        if self.viewport is not None:
            object.__setattr__(self, "viewport", MappingProxyType(dict(self.viewport)))
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    @property
    def timeout(self) -> float:
        """Budget in seconds."""
        return self.timeout_ms / 1000


@dataclass(frozen=True)
class ChannelTranscriptTask:
    """Collect transcripts for the latest videos of one channel."""

    channel_handle: str | None = None
    channel_id: str | None = None
    max_videos: int = field(default_factory=lambda: settings.DEFAULT_MAX_VIDEOS)
    timeout_ms: int = field(default_factory=lambda: settings.DEFAULT_TRANSCRIPT_TIMEOUT)
    include_shorts: bool = False

    def __post_init__(self):
        if not (self.channel_handle or self.channel_id):
            raise ValueError("channelId or channelHandle is required")
        if self.max_videos <= 0:
            raise ValueError("max_videos must be positive")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")

    @property
    def url(self) -> str:
        return channel_url(self.channel_handle, self.channel_id)

    @property
    def timeout(self) -> float:
        return self.timeout_ms / 1000
