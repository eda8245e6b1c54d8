from __future__ import annotations

from fastapi import APIRouter, Depends

from dowstats.errors import DispatchError
from dowstats.plugin import PluginContext, process
from dowstats.routers.deps import get_context
from dowstats.schemas.common import fail, meta_now, ok
from dowstats.schemas.metric import MetricBatch

router = APIRouter(prefix="/api/metrics", tags=["ingest"])


@router.post("")
def ingest_metrics(batch: MetricBatch, ctx: PluginContext = Depends(get_context)):
    """
    Fold a batch of point metrics into the weekday aggregates.

    Partial failures still merge every healthy (point, weekday) key; the
    response reports them as 502 DISPATCH_FAILED with the counts.
    """
    if not batch.metrics:
        return fail(code="INVALID_BATCH", message="Batch contains no metrics.", status_code=400, meta=meta_now())

    try:
        result = process(ctx, batch.metrics)
    except DispatchError as ex:
        details = ex.result.to_dict() if ex.result is not None else {"failed": ex.failed}
        return fail(
            code="DISPATCH_FAILED",
            message=str(ex),
            status_code=502,
            details=details,
            meta=meta_now(metrics=len(batch.metrics)),
        )
    return ok(data=result.to_dict(), meta=meta_now(metrics=len(batch.metrics)))
