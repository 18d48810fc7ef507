"""crawlhook: headless-browser page analysis service with cron-driven webhooks."""

__version__ = "1.0.0"
