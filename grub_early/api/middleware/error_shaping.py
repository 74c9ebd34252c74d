from __future__ import annotations

import logging
import traceback
from typing import Callable, Dict, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from grub_early.core.errors import ConfigError, ExternalToolError, GrubEarlyError, MissingInputError
from grub_early.core.imaging.mkimage import UnknownModuleError
from grub_early.core.observability.metrics import inc_named
from grub_early.core.requirements import ModuleNameError, UnsatisfiableConstraintError

log = logging.getLogger("grub_early.api.errors")

# most specific first
_STATUS = (
    (UnsatisfiableConstraintError, 422),
    (UnknownModuleError, 422),
    (ModuleNameError, 400),
    (ConfigError, 400),
    (MissingInputError, 400),
    (ExternalToolError, 502),
)


def status_for(exc: GrubEarlyError) -> int:
    for cls, status in _STATUS:
        if isinstance(exc, cls):
            return status
    return 500


class SafeErrorMiddleware(BaseHTTPMiddleware):
    """
    - Build errors become a JSON body carrying their message and a 4xx/5xx
      status (a resolution that cannot be satisfied is the caller's problem)
    - Anything else is a 500 without stack traces
    - request_id is preserved in both cases
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except GrubEarlyError as e:
            rid = _request_id(request)
            status = status_for(e)
            log.warning("Build error: %s status=%d rid=%s path=%s", e, status, rid, request.url.path)
            inc_named(f"api_errors_{status}")
            return _json(status, {"detail": str(e), "error": type(e).__name__}, rid)
        except Exception as e:
            rid = _request_id(request)
            log.error(
                "Unhandled error: %s rid=%s path=%s\n%s",
                str(e),
                rid,
                request.url.path,
                traceback.format_exc(),
            )
            inc_named("api_errors_500")
            return _json(500, {"detail": "Internal Server Error"}, rid)


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None) or request.headers.get("x-request-id")


def _json(status: int, payload: Dict, rid: Optional[str]) -> JSONResponse:
    headers = {}
    if rid:
        payload["request_id"] = rid
        headers["X-Request-Id"] = rid
    return JSONResponse(status_code=status, content=payload, headers=headers)
