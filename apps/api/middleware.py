"""
HTTP middleware.

- Request IDs: forwards a safe ``x-request-id`` from the client or
  generates one, and sets it on the response
- Access log: one line per request (``/heartbeat`` excluded)
- ``server`` response header
"""

import logging
import re
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"
REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")

UNLOGGED_PATHS = frozenset({"/heartbeat"})


def sanitize_request_id(raw: str | None) -> str:
    """Return ``raw`` if it is safe to log, otherwise a new UUID."""
    if raw and REQUEST_ID_PATTERN.match(raw.strip()):
        return raw.strip()
    return str(uuid.uuid4())


class RequestContextMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, server_header: str):
        super().__init__(app)
        self.server_header = server_header

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = sanitize_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["server"] = self.server_header

        if request.url.path not in UNLOGGED_PATHS:
            logger.info(
                f"{request.method} {request.url.path} -> {response.status_code} "
                f"({elapsed_ms:.2f}ms) [{request_id}]"
            )

        return response
