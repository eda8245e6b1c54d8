# dowstats/services/catchup.py
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional, Protocol

import structlog

from dowstats.errors import UpstreamUnavailable
from dowstats.observability.metrics import CATCHUP_POINTS
from dowstats.schemas.metric import Metric, Point
from dowstats.services.dispatcher import Dispatcher
from dowstats.utils.weekday import ensure_utc

logger = structlog.get_logger(__name__)


class PointDirectory(Protocol):
    def list_points(self, limit: int, offset: int) -> List[Point]: ...

    def get_point(self, point_id: int) -> Optional[Point]: ...


class MetricSource(Protocol):
    def select_metrics(self, point_id: int, start: datetime, end: Optional[datetime] = None) -> List[Metric]: ...


@dataclass
class CatchUpResult:
    points_scanned: int = 0
    points_skipped: int = 0
    metrics: int = 0
    merged: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return {
            "points_scanned": self.points_scanned,
            "points_skipped": self.points_skipped,
            "metrics": self.metrics,
            "merged": self.merged,
            "failed": self.failed,
        }


class CatchUpScanner:
    """Backfill: replay every known point's history from an offset through the merge path."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        directory: PointDirectory,
        source: MetricSource,
        page_size: int = 1000,
    ):
        self.dispatcher = dispatcher
        self.directory = directory
        self.source = source
        self.page_size = page_size

    def iter_points(self) -> Iterator[Point]:
        """Page through the directory until a short page comes back."""
        offset = 0
        while True:
            page = self.directory.list_points(self.page_size, offset)
            yield from page
            if len(page) < self.page_size:
                return
            offset += self.page_size

    def run_from(self, offset: datetime, cancel: Optional[threading.Event] = None) -> CatchUpResult:
        offset = ensure_utc(offset)
        result = CatchUpResult()
        logger.info("catchup.start", offset=offset.isoformat(), page_size=self.page_size)

        for point in self.iter_points():
            if cancel is not None and cancel.is_set():
                logger.info("catchup.cancelled", **result.to_dict())
                break

            try:
                metrics = self.source.select_metrics(point.id, offset, None)
            except UpstreamUnavailable as ex:
                result.points_skipped += 1
                CATCHUP_POINTS.labels(outcome="skipped").inc()
                logger.warning("catchup.point_skipped", point_id=point.id, error=str(ex))
                continue

            result.points_scanned += 1
            CATCHUP_POINTS.labels(outcome="scanned").inc()
            if not metrics:
                continue

            unit = self.dispatcher.process_point(point.id, metrics, cancel=cancel)
            result.metrics += unit.samples
            result.merged += unit.merged
            result.failed += unit.failed

        logger.info("catchup.completed", offset=offset.isoformat(), **result.to_dict())
        return result


__all__ = ["CatchUpResult", "CatchUpScanner", "MetricSource", "PointDirectory"]
