from crawlhook.services.adapters.base import AdapterRegistry, PageModelAdapter, SegmentLayout
from crawlhook.services.adapters.youtube import YOUTUBE_2024

registry = AdapterRegistry([YOUTUBE_2024])

__all__ = ["AdapterRegistry", "PageModelAdapter", "SegmentLayout", "YOUTUBE_2024", "registry"]
