from __future__ import annotations

from fastapi import APIRouter, Depends

from dowstats.errors import UpstreamUnavailable
from dowstats.plugin import PluginContext
from dowstats.routers.deps import get_context
from dowstats.schemas.common import fail, meta_now, ok
from dowstats.schemas.metric import CatchUpRequest

router = APIRouter(prefix="/api/catchup", tags=["catchup"])


@router.post("")
def run_catchup(req: CatchUpRequest, ctx: PluginContext = Depends(get_context)):
    try:
        result = ctx.scanner.run_from(req.offset)
    except UpstreamUnavailable as ex:
        return fail(
            code="UPSTREAM_UNAVAILABLE",
            message=str(ex),
            status_code=502,
            meta=meta_now(offset=req.offset.isoformat()),
        )
    return ok(data=result.to_dict(), meta=meta_now(offset=req.offset.isoformat()))
