"""YouTube page model."""

from __future__ import annotations

from crawlhook.services.adapters.base import PageModelAdapter, SegmentLayout

YOUTUBE_URL_PATTERNS = (
    r"^https?://(www\.|m\.)?youtube\.com/",
    r"^https?://youtu\.be/",
)

YOUTUBE_2024 = PageModelAdapter(
    name="youtube",
    version="2024.2",
    url_patterns=YOUTUBE_URL_PATTERNS,
    channel_ready="ytd-rich-grid-renderer, ytd-two-column-browse-results-renderer",
    watch_ready="ytd-watch-metadata, #above-the-fold",
    consent_buttons=(
        "button[aria-label*='Accept all']",
        "button:has-text('Accept all')",
        "form[action*='consent'] button",
        "button:has-text('Reject all')",
    ),
    channel_name=(
        "yt-page-header-renderer yt-dynamic-text-view-model h1",
        "ytd-channel-name #text",
        "#channel-header #channel-name #text",
    ),
    channel_subscribers=(
        "#subscriber-count",
        "yt-content-metadata-view-model span:has-text('subscriber')",
        "#channel-header #subscriber-count",
    ),
    video_links=(
        "ytd-rich-item-renderer a#video-title-link",
        "ytd-grid-video-renderer a#video-title",
        "ytd-rich-grid-media a#video-title-link",
    ),
    short_links=(
        "ytd-rich-item-renderer a[href*='/shorts/']",
        "ytm-shorts-lockup-view-model a[href*='/shorts/']",
        "ytd-reel-item-renderer a[href*='/shorts/']",
    ),
    description_expanders=(
        "tp-yt-paper-button#expand",
        "#description-inline-expander #expand",
    ),
    transcript_buttons=(
        "ytd-video-description-transcript-section-renderer button",
        "button[aria-label='Show transcript']",
        "button:has-text('Show transcript')",
    ),
    more_actions_buttons=(
        "ytd-watch-metadata button[aria-label='More actions']",
        "#button-shape button[aria-label='More actions']",
        "ytd-menu-renderer yt-button-shape button",
    ),
    transcript_menu_items=(
        "ytd-menu-service-item-renderer:has-text('Show transcript')",
        "tp-yt-paper-item:has-text('transcript')",
        "[role='menuitem']:has-text('transcript')",
    ),
    transcript_panels=(
        "ytd-transcript-renderer",
        "ytd-engagement-panel-section-list-renderer[target-id='engagement-panel-searchable-transcript']",
    ),
    segment_layouts=(
        SegmentLayout(
            name="segment_list",
            container="ytd-transcript-segment-list-renderer",
            segment="ytd-transcript-segment-renderer",
            time=".segment-timestamp",
            text=".segment-text",
        ),
        SegmentLayout(
            name="cue_groups",
            container="ytd-transcript-body-renderer",
            segment="div.cue-group",
            time=".cue-group-start-offset",
            text=".cue",
        ),
    ),
    raw_text_containers=(
        "ytd-transcript-renderer #body",
        "ytd-transcript-renderer",
        "[target-id='engagement-panel-searchable-transcript'] #content",
    ),
)


def channel_url(channel_handle: str | None = None, channel_id: str | None = None) -> str:
    """Canonical channel URL from a handle (with or without '@') or an id."""
    if channel_handle:
        return f"https://www.youtube.com/@{channel_handle.lstrip('@')}"
    if channel_id:
        return f"https://www.youtube.com/channel/{channel_id}"
    raise ValueError("channel_handle or channel_id is required")
