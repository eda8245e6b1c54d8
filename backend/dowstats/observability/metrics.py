from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Histogram,
    generate_latest,
)

router = APIRouter()

REQUEST_COUNTER = Counter(
    "dowstats_http_requests_total",
    "Total HTTP requests",
    ["path", "method", "status"],
)
REQUEST_LATENCY = Histogram(
    "dowstats_http_request_duration_seconds",
    "Request latency",
    ["path", "method"],
)

# outcome: created | updated | failed | skipped
MERGES = Counter(
    "dowstats_merges_total",
    "Aggregate merges by outcome",
    ["outcome"],
)
MERGE_LATENCY = Histogram(
    "dowstats_merge_duration_seconds",
    "Wall time of one fetch-compute-save merge",
)
# outcome: ok | failed | cancelled
DISPATCH_BATCHES = Counter(
    "dowstats_dispatch_batches_total",
    "Metric batches dispatched",
    ["outcome"],
)
# outcome: scanned | skipped
CATCHUP_POINTS = Counter(
    "dowstats_catchup_points_total",
    "Points visited by catch-up scans",
    ["outcome"],
)


@router.get("/metrics")
async def metrics_endpoint() -> PlainTextResponse:
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)
