"""Metrics endpoints.

``/metrics`` is the Prometheus scrape target; ``/metrics/snapshot`` returns the
in-process resolver counters as JSON (reset between tests).
"""

from typing import Dict

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from grub_early.core.observability.metrics import snapshot

router = APIRouter()


@router.get("/metrics", include_in_schema=False)
def prometheus_metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@router.get("/metrics/snapshot")
def metrics_snapshot() -> Dict[str, int]:
    return snapshot()
