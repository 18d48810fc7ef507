from fastapi import Request

from crawlhook.services.cron import CronRegistry
from crawlhook.services.pipeline import TaskRunner


def get_runner(request: Request) -> TaskRunner:
    return request.app.state.runner


def get_cron(request: Request) -> CronRegistry:
    return request.app.state.cron
