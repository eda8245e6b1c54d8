from __future__ import annotations

from fastapi import APIRouter, Depends

from dowstats.errors import StoreUnavailable
from dowstats.plugin import PluginContext
from dowstats.routers.deps import get_context
from dowstats.schemas.common import fail, meta_now, ok
from dowstats.utils.weekday import Weekday

router = APIRouter(prefix="/api/aggregates", tags=["aggregates"])


@router.get("/{point_id}")
def list_point_aggregates(point_id: int, ctx: PluginContext = Depends(get_context)):
    try:
        rows = ctx.store.list_for_point(point_id)
    except StoreUnavailable as ex:
        return fail(code="STORE_UNAVAILABLE", message=str(ex), status_code=503, meta=meta_now(point_id=point_id))
    return ok(data=[r.to_dict() for r in rows], meta=meta_now(point_id=point_id))


@router.get("/{point_id}/{weekday}")
def get_point_aggregate(point_id: int, weekday: str, ctx: PluginContext = Depends(get_context)):
    try:
        day = Weekday.parse(weekday)
    except ValueError:
        return fail(
            code="BAD_REQUEST",
            message=f"Unknown weekday '{weekday}'. Use 0-6 or a day name.",
            status_code=400,
            meta=meta_now(point_id=point_id),
        )

    try:
        row = ctx.store.get_or_none(point_id, day)
    except StoreUnavailable as ex:
        return fail(code="STORE_UNAVAILABLE", message=str(ex), status_code=503, meta=meta_now(point_id=point_id))
    if row is None:
        return fail(
            code="NOT_FOUND",
            message=f"No aggregate for point {point_id} on {day.name.lower()}",
            status_code=404,
            meta=meta_now(point_id=point_id, weekday=day.name.lower()),
        )
    return ok(data=row.to_dict(), meta=meta_now(point_id=point_id, weekday=day.name.lower()))
