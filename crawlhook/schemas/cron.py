from typing import Any

from pydantic import BaseModel, Field


class CronJobCreate(BaseModel):
    # Presence is validated by CronRegistry.create
    cron_id: str = Field(default="", alias="cronId")
    schedule: str = ""  # 5 fields, or 6 with leading seconds
    webhook_ids: list[str] = Field(default_factory=list, alias="webhookIds")
    payload: dict[str, Any] = {}
    description: str = ""
    timezone: str | None = None

    model_config = {"populate_by_name": True}


class TriggerMultipleRequest(BaseModel):
    webhook_ids: list[str] = Field(alias="webhookIds")
    payload: dict[str, Any] = {}

    model_config = {"populate_by_name": True}
