# dowstats/services/dispatcher.py
from __future__ import annotations

import os
import threading
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol

import structlog

from dowstats.errors import DispatchError, DowStatsError, MergeCancelled
from dowstats.observability.metrics import DISPATCH_BATCHES, MERGES
from dowstats.services.merger import BatchMerger, Sample
from dowstats.utils.weekday import Weekday, weekday_of

logger = structlog.get_logger(__name__)


class MetricLike(Protocol):
    point_id: int
    value: float
    timestamp: object


def default_max_workers() -> int:
    return min(32, (os.cpu_count() or 1) + 4)


@dataclass
class DispatchResult:
    points: int = 0
    samples: int = 0
    merged: int = 0
    failed: int = 0
    skipped: int = 0
    first_error: Optional[BaseException] = field(default=None, repr=False, compare=False)

    def absorb(self, other: "DispatchResult") -> None:
        self.points += other.points
        self.samples += other.samples
        self.merged += other.merged
        self.failed += other.failed
        self.skipped += other.skipped
        if self.first_error is None:
            self.first_error = other.first_error

    def to_dict(self) -> dict:
        return {
            "points": self.points,
            "samples": self.samples,
            "merged": self.merged,
            "failed": self.failed,
            "skipped": self.skipped,
        }


def group_by_point(metrics: Iterable[MetricLike]) -> Dict[int, List[MetricLike]]:
    groups: Dict[int, List[MetricLike]] = defaultdict(list)
    for m in metrics:
        groups[int(m.point_id)].append(m)
    return dict(groups)


def group_by_weekday(metrics: Iterable[MetricLike]) -> Dict[Weekday, List[Sample]]:
    """Bucket samples by the UTC weekday of their timestamp."""
    days: Dict[Weekday, List[Sample]] = defaultdict(list)
    for m in metrics:
        days[weekday_of(m.timestamp)].append((float(m.value), m.timestamp))
    return dict(days)


class Dispatcher:
    """
    Fans a metric batch out to one unit of work per point.

    Units run on a bounded thread pool; inside a unit the weekday buckets are
    merged one after the other, so two merges for the same point never race
    within a single dispatch. A failing key is logged and counted without
    stopping its siblings; `run` raises a single DispatchError after the
    join when anything failed.
    """

    def __init__(self, merger: BatchMerger, max_workers: Optional[int] = None):
        self.merger = merger
        self.max_workers = max_workers or default_max_workers()

    def process_point(
        self,
        point_id: int,
        metrics: Iterable[MetricLike],
        cancel: Optional[threading.Event] = None,
    ) -> DispatchResult:
        result = DispatchResult(points=1)
        buckets = group_by_weekday(metrics)

        for day in sorted(buckets):
            samples = buckets[day]
            result.samples += len(samples)
            if cancel is not None and cancel.is_set():
                result.skipped += 1
                continue
            try:
                self.merger.merge(point_id, day, samples, cancel=cancel)
            except MergeCancelled:
                result.skipped += 1
            except DowStatsError as ex:
                MERGES.labels(outcome="failed").inc()
                logger.error(
                    "merge.failed",
                    point_id=point_id,
                    weekday=day.name,
                    samples=len(samples),
                    error=str(ex),
                    error_type=type(ex).__name__,
                )
                result.failed += 1
                if result.first_error is None:
                    result.first_error = ex
            except Exception as ex:
                MERGES.labels(outcome="failed").inc()
                logger.exception("merge.crashed", point_id=point_id, weekday=day.name, samples=len(samples))
                result.failed += 1
                if result.first_error is None:
                    result.first_error = ex
            else:
                result.merged += 1
        return result

    def run(self, batch: Iterable[MetricLike], cancel: Optional[threading.Event] = None) -> DispatchResult:
        units = group_by_point(batch)
        total = DispatchResult()
        if not units:
            return total

        started = time.perf_counter()
        workers = min(self.max_workers, len(units))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dowstats-point") as pool:
            futures = {
                pool.submit(self.process_point, point_id, items, cancel): point_id
                for point_id, items in units.items()
            }
            for fut in as_completed(futures):
                point_id = futures[fut]
                try:
                    total.absorb(fut.result())
                except Exception as ex:
                    logger.exception("dispatch.unit_crashed", point_id=point_id)
                    total.absorb(DispatchResult(points=1, failed=1, first_error=ex))

        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        keys = total.merged + total.failed + total.skipped

        if total.failed:
            DISPATCH_BATCHES.labels(outcome="failed").inc()
            logger.warning("dispatch.failed", duration_ms=duration_ms, **total.to_dict())
            err = DispatchError(total.failed, keys)
            err.result = total
            raise err from total.first_error

        outcome = "cancelled" if total.skipped else "ok"
        DISPATCH_BATCHES.labels(outcome=outcome).inc()
        logger.info("dispatch.completed", duration_ms=duration_ms, outcome=outcome, **total.to_dict())
        return total


__all__ = [
    "DispatchResult",
    "Dispatcher",
    "default_max_workers",
    "group_by_point",
    "group_by_weekday",
]
