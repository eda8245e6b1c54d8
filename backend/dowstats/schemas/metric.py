# dowstats/schemas/metric.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dowstats.utils.weekday import ensure_utc


class Metric(BaseModel):
    """One observation from a point. Immutable once parsed."""

    model_config = ConfigDict(frozen=True)

    point_id: int = Field(..., ge=0)
    value: float = Field(..., allow_inf_nan=False)
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class MetricBatch(BaseModel):
    metrics: List[Metric] = Field(default_factory=list)


class Point(BaseModel):
    id: int = Field(..., ge=0)
    name: Optional[str] = None


class CatchUpRequest(BaseModel):
    offset: datetime = Field(..., description="Scan historical metrics from this instant forward")

    @field_validator("offset")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


__all__ = ["Metric", "MetricBatch", "Point", "CatchUpRequest"]
