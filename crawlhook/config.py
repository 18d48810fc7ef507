import os

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # App
    APP_NAME: str = "crawlhook"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    # "production" implies a container host unless CONTAINER says otherwise
    ENVIRONMENT: str = "development"
    CONTAINER: bool | None = None

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = ["*"]

    # Browser
    BROWSER_HEADLESS: bool = True
    LAUNCH_TIMEOUT: int = 30000  # ms

    # Tasks
    DEFAULT_ANALYZE_TIMEOUT: int = 30000  # ms
    DEFAULT_TRANSCRIPT_TIMEOUT: int = 60000  # ms
    DEFAULT_MAX_VIDEOS: int = 100
    TEARDOWN_GRACE_SECONDS: float = 3.0

    # Readiness policy
    DOM_FALLBACK_TIMEOUT: int = 5000  # ms
    SETTLE_DELAY_CONFIRMED: int = 1000  # ms, selector found
    SETTLE_DELAY_UNCONFIRMED: int = 2000  # ms, no selector confirmed

    # Extraction
    EXTRACTION_STEP_TIMEOUT: int = 5000  # ms per cascade step
    SCREENSHOT_TIMEOUT: int = 10000  # ms
    TRANSCRIPT_SETTLE_DELAY: int = 1500  # ms
    TRANSCRIPT_MIN_TEXT_LENGTH: int = 50

    # Cron / webhooks
    WEBHOOK_BASE_URL: str = "http://localhost:5678"
    WEBHOOK_TIMEOUT: float = 30.0  # seconds
    WEBHOOK_DISPATCH_DELAY: float = 1.0  # seconds between sequential triggers
    CRON_DEFAULT_TIMEZONE: str = "UTC"

    # Sentry
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.2
    SENTRY_ENVIRONMENT: str = "development"

    # Logging
    LOG_FORMAT: str = "json"  # "json" for production, "text" for development
    LOG_LEVEL: str = "INFO"

    # Metrics
    METRICS_ENABLED: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def is_container(self) -> bool:
        """Whether the browser runs in a resource-constrained container."""
        if self.CONTAINER is not None:
            return self.CONTAINER
        if self.ENVIRONMENT.lower() == "production":
            return True
        return os.path.exists("/.dockerenv")


settings = Settings()
