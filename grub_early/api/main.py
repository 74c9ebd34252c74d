from __future__ import annotations

from fastapi import FastAPI

from grub_early import __version__
from grub_early.api.endpoints import health, metrics_export, requirements
from grub_early.api.middleware.error_shaping import SafeErrorMiddleware
from grub_early.api.middleware.request_id import RequestIdMiddleware

app = FastAPI(
    title="grub-early API",
    version=__version__,
)

# ------------------------------------------------------------
# Middleware stack (ORDER MATTERS)
# Starlette reverses add_middleware order: the LAST call is the outermost.
# Runtime order: SafeErrorMiddleware -> RequestIdMiddleware -> handler
# ------------------------------------------------------------
app.add_middleware(RequestIdMiddleware)
app.add_middleware(SafeErrorMiddleware)

app.include_router(health.router)
app.include_router(requirements.router)
app.include_router(metrics_export.router)
