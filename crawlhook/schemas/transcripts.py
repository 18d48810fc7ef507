from pydantic import BaseModel, Field, model_validator

from crawlhook.config import settings
from crawlhook.services.task import ChannelTranscriptTask


class TranscriptsRequest(BaseModel):
    channel_id: str | None = Field(default=None, alias="channelId")
    channel_handle: str | None = Field(default=None, alias="channelHandle")  # with or without '@'
    max_videos: int = Field(
        default_factory=lambda: settings.DEFAULT_MAX_VIDEOS, gt=0, alias="maxVideos"
    )
    timeout: int = Field(default_factory=lambda: settings.DEFAULT_TRANSCRIPT_TIMEOUT, gt=0)  # ms
    include_shorts: bool = Field(default=False, alias="includeShorts")

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _require_channel(self):
        if not (self.channel_id or self.channel_handle):
            raise ValueError("channelId or channelHandle is required")
        return self

    def to_task(self) -> ChannelTranscriptTask:
        return ChannelTranscriptTask(
            channel_handle=self.channel_handle,
            channel_id=self.channel_id,
            max_videos=self.max_videos,
            timeout_ms=self.timeout,
            include_shorts=self.include_shorts,
        )
