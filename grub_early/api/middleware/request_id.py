import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from grub_early.core.observability.metrics import inc_named

REQUEST_ID_HEADER = "X-Request-Id"
REQUEST_ID_STATE_KEY = "request_id"

log = logging.getLogger("grub_early.api.access")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id (the caller's, or a fresh one) and counts it."""

    async def dispatch(self, request: Request, call_next):
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        setattr(request.state, REQUEST_ID_STATE_KEY, rid)
        inc_named("requests_total")

        started = time.monotonic()
        response: Response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = rid
        log.debug(
            "request rid=%s method=%s path=%s status=%d ms=%.1f",
            rid,
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - started) * 1000.0,
        )
        return response
