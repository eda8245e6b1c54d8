# dowstats/services/merger.py
"""
Incremental merge of a batch of samples into a persisted weekday aggregate.

The aggregate never sees the full sample history. Each batch is reduced to
its moments (count, sum, population deviation, extrema, time bounds) and folded
into the stored running values:

  * count, sum, min, max, start and end are exact.
  * mean and std_dev are combined as a weighted average, each side weighted
    by its share of the post-merge sample count. std_dev is therefore an
    approximation of the true pooled deviation.
"""
from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Sequence, Tuple

import structlog

from dowstats.errors import ConflictError, InvalidBatch, MergeCancelled, StoreUnavailable
from dowstats.models.weekday_aggregate import WeekdayAggregate
from dowstats.observability.metrics import MERGE_LATENCY, MERGES
from dowstats.services.aggregate_store import AggregateStore
from dowstats.utils.weekday import Weekday, ensure_utc, utcnow

logger = structlog.get_logger(__name__)

Sample = Tuple[float, datetime]


@dataclass(frozen=True)
class BatchMoments:
    count: int
    sum: float
    std_dev: float
    min: float
    max: float
    start: datetime
    end: datetime

    @property
    def mean(self) -> float:
        return self.sum / self.count


def compute_moments(samples: Iterable[Sample]) -> Optional[BatchMoments]:
    """
    Reduce (value, timestamp) pairs to their moments. Returns None for no samples.

    std_dev is the population deviation, taken in two passes over values
    scaled into [-1, 1] so squaring cannot overflow. Raises InvalidBatch for
    NaN or infinite values and when the batch sum overflows.
    """
    pairs = [(float(value), ensure_utc(ts)) for value, ts in samples]
    if not pairs:
        return None

    values = [v for v, _ in pairs]
    bad = sum(1 for v in values if not math.isfinite(v))
    if bad:
        raise InvalidBatch(f"{bad} of {len(values)} sample values are not finite")

    count = len(values)
    total = sum(values)
    if not math.isfinite(total):
        raise InvalidBatch(f"sum of {count} sample values overflows")

    lo, hi = min(values), max(values)
    scale = max(abs(lo), abs(hi)) or 1.0
    scaled_mean = sum(v / scale for v in values) / count
    m2 = sum((v / scale - scaled_mean) ** 2 for v in values)

    timestamps = [ts for _, ts in pairs]
    return BatchMoments(
        count=count,
        sum=total,
        std_dev=math.sqrt(m2 / count) * scale,
        min=lo,
        max=hi,
        start=min(timestamps),
        end=max(timestamps),
    )


def weighted_average(value1: float, weight1: float, value2: float, weight2: float) -> float:
    return (value1 * weight1 + value2 * weight2) / (weight1 + weight2)


def _check_cancel(cancel: Optional[threading.Event], point_id: int, weekday: Weekday) -> None:
    if cancel is not None and cancel.is_set():
        MERGES.labels(outcome="skipped").inc()
        raise MergeCancelled(f"point={point_id} weekday={weekday.name}")


def _start_is_unset(ts: Optional[datetime]) -> bool:
    return ts is None or ensure_utc(ts).timestamp() <= 0


def fold_batch(agg: WeekdayAggregate, batch: BatchMoments, now: Optional[datetime] = None) -> WeekdayAggregate:
    """Fold `batch` into `agg` in place and return it."""
    prior = agg.count or 0
    merged_sum = batch.sum if prior == 0 or agg.sum is None else agg.sum + batch.sum
    if not math.isfinite(merged_sum):
        raise InvalidBatch(f"running sum for point={agg.point_id} overflows")

    agg.min = batch.min if agg.min is None else min(agg.min, batch.min)
    agg.max = batch.max if agg.max is None else max(agg.max, batch.max)

    if _start_is_unset(agg.start_time) or batch.start < ensure_utc(agg.start_time):
        agg.start_time = batch.start
    if agg.end_time is None or batch.end > ensure_utc(agg.end_time):
        agg.end_time = batch.end

    batch_mean = batch.mean
    batch_std = batch.std_dev

    if prior == 0:
        agg.mean = batch_mean
        agg.std_dev = batch_std
    else:
        total = prior + batch.count
        w_new = batch.count / total
        w_old = prior / total
        agg.mean = batch_mean if agg.mean is None else weighted_average(agg.mean, w_old, batch_mean, w_new)
        agg.std_dev = batch_std if agg.std_dev is None else weighted_average(agg.std_dev, w_old, batch_std, w_new)

    agg.sum = merged_sum
    agg.count = prior + batch.count
    agg.evals = (agg.evals or 0) + 1
    agg.last_updated = now or utcnow()
    return agg


class BatchMerger:
    def __init__(self, store: AggregateStore):
        self.store = store

    def _fetch_or_create(
        self,
        point_id: int,
        weekday: Weekday,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[WeekdayAggregate, bool]:
        existing = self.store.get_or_none(point_id, weekday)
        if existing is not None:
            return existing, False

        _check_cancel(cancel, point_id, weekday)
        try:
            self.store.create(point_id, weekday)
        except ConflictError:
            # someone else created it first; carry on as an update
            logger.info("merge.create_conflict", point_id=point_id, weekday=weekday.name)

        existing = self.store.get_or_none(point_id, weekday)
        if existing is None:
            raise StoreUnavailable(f"aggregate for point={point_id} weekday={weekday.name} vanished after create")
        return existing, True

    def merge(
        self,
        point_id: int,
        weekday: Weekday,
        samples: Sequence[Sample],
        cancel: Optional[threading.Event] = None,
    ) -> Optional[WeekdayAggregate]:
        """
        Fold `samples` into the (point_id, weekday) aggregate and persist it.

        Empty `samples` is a no-op and returns None. Non-finite values raise
        InvalidBatch before the store is touched. Store errors propagate to
        the caller and leave the stored aggregate untouched.
        """
        moments = compute_moments(samples)
        if moments is None:
            logger.debug("merge.empty_batch", point_id=point_id, weekday=weekday.name)
            return None

        started = time.perf_counter()
        with self.store.key_lock(point_id, weekday):
            agg, created = self._fetch_or_create(point_id, weekday, cancel)
            fold_batch(agg, moments)
            _check_cancel(cancel, point_id, weekday)

            self.store.save(agg)

        MERGES.labels(outcome="created" if created else "updated").inc()
        MERGE_LATENCY.observe(time.perf_counter() - started)
        logger.debug(
            "merge.saved",
            point_id=point_id,
            weekday=weekday.name,
            batch=moments.count,
            count=agg.count,
            evaluations=agg.evals,
        )
        return agg


__all__ = [
    "BatchMoments",
    "BatchMerger",
    "compute_moments",
    "fold_batch",
    "weighted_average",
]
