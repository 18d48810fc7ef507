from pydantic import BaseModel, Field, field_validator

from crawlhook.config import settings
from crawlhook.services.task import CrawlTask


def _normalize_url(url: str) -> str:
    """Prepend https:// if no protocol is present."""
    url = url.strip()
    if url and not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


class Viewport(BaseModel):
    width: int = Field(gt=0, le=7680)
    height: int = Field(gt=0, le=4320)


class AnalyzeRequest(BaseModel):
    url: str = Field(min_length=1)
    wait_for_selector: str | None = Field(default=None, alias="waitForSelector")
    timeout: int = Field(default_factory=lambda: settings.DEFAULT_ANALYZE_TIMEOUT, gt=0)  # ms
    full_page: bool = Field(default=False, alias="fullPage")
    viewport: Viewport | None = None
    include_attributes: bool = Field(default=False, alias="includeAttributes")
    selectors: dict[str, str] | None = None  # field name -> CSS selector

    model_config = {"populate_by_name": True}

    @field_validator("url", mode="before")
    @classmethod
    def _add_protocol(cls, v: str) -> str:
        return _normalize_url(v) if isinstance(v, str) else v

    def to_task(self) -> CrawlTask:
        return CrawlTask(
            url=self.url,
            wait_for_selector=self.wait_for_selector or None,
            timeout_ms=self.timeout,
            full_page=self.full_page,
            viewport=self.viewport.model_dump() if self.viewport else None,
            include_attributes=self.include_attributes,
            selectors=self.selectors or {},
        )
