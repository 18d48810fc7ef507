"""Trace ids for HTTP requests and scheduled runs.

Every unit of work (an API request, a cron fire) runs under one trace id.
The id sits in a ContextVar: the logging filter stamps it on every record
and each TaskResult created under it reports it as ``requestId``.

Callers may supply their own id through X-Request-ID. Anything that is
not a short token of safe characters is replaced, so header content
never reaches the logs verbatim.
"""

import contextvars
import re
import uuid
from contextlib import contextmanager
from typing import Iterator

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_VALID_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


def new_request_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:16]}"


def accept_request_id(candidate: str | None) -> str:
    """The caller's id when it is usable, a fresh one otherwise."""
    if candidate and _VALID_ID.match(candidate):
        return candidate
    return new_request_id()


@contextmanager
def trace_scope(rid: str) -> Iterator[str]:
    """Run the enclosed block under ``rid``."""
    token = request_id_var.set(rid)
    try:
        yield rid
    finally:
        request_id_var.reset(token)


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        with trace_scope(accept_request_id(request.headers.get(REQUEST_ID_HEADER))) as rid:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            return response


def get_request_id() -> str:
    """Current trace id (empty string outside a request or cron run)."""
    return request_id_var.get()
