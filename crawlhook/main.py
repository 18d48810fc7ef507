import logging
from contextlib import asynccontextmanager

import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from crawlhook.api.router import api_router
from crawlhook.config import settings
from crawlhook.core.exceptions import AppError
from crawlhook.core.logging_config import configure_logging
from crawlhook.middleware.request_id import RequestIDMiddleware
from crawlhook.middleware.security_headers import SecurityHeadersMiddleware
from crawlhook.services.cron import CronRegistry
from crawlhook.services.pipeline import TaskRunner

# Configure structured logging (must happen before any logger is created)
configure_logging(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)

# Initialize Sentry error tracking
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE,
        environment=settings.SENTRY_ENVIRONMENT,
        release=f"crawlhook@{settings.APP_VERSION}",
    )

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} on port {settings.PORT}")
    app.state.cron.start()

    yield

    # uvicorn turns SIGTERM/SIGINT into this shutdown
    logger.info("Shutting down cron jobs...")
    app.state.cron.shutdown()


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    if loc == ["url"] and first.get("type") in ("missing", "string_too_short"):
        return "URL is required"
    msg = first.get("msg", "Invalid request").removeprefix("Value error, ")
    field = ".".join(loc)
    return f"{field}: {msg}" if field else msg


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    content = {"success": False, "error": _validation_message(exc)}
    if request.url.path == "/analyze":
        body = exc.body if isinstance(exc.body, dict) else {}
        content["url"] = body.get("url") or None
    return JSONResponse(status_code=400, content=content)


def create_app(runner: TaskRunner | None = None, cron: CronRegistry | None = None) -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Headless-browser page analysis and transcript collection, "
        "with cron-scheduled webhook triggers.",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.runner = runner or TaskRunner()
    app.state.cron = cron or CronRegistry()

    # Request ID middleware (must be added before other middleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(api_router)
    return app


app = create_app()
