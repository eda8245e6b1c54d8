# dowstats/services/aggregate_store.py
from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from dowstats.errors import ConflictError, NotFoundError, StoreUnavailable
from dowstats.models.weekday_aggregate import WeekdayAggregate
from dowstats.utils.weekday import Weekday, utcnow

logger = structlog.get_logger(__name__)

Key = Tuple[int, int]


class AggregateStore:
    """
    Durable (point_id, weekday) -> WeekdayAggregate mapping.

    Every call runs in its own short transaction and returns detached rows.
    The unique constraint on (point_id, day_of_week) is what protects against
    duplicate creation across processes; `key_lock` serializes the
    read-compute-write span inside this process.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        # entries vanish once no caller holds the lock
        self._locks: "weakref.WeakValueDictionary[Key, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_guard = threading.Lock()

    @contextmanager
    def _transaction(self, op: str) -> Iterator[Session]:
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except (ConflictError, NotFoundError):
            raise
        except IntegrityError:
            raise
        except SQLAlchemyError as ex:
            logger.error("store.unavailable", op=op, error=str(ex))
            raise StoreUnavailable(f"{op} failed: {ex}") from ex
        finally:
            session.close()

    @contextmanager
    def key_lock(self, point_id: int, weekday: Weekday) -> Iterator[None]:
        key = (int(point_id), int(weekday))
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
        with lock:
            yield

    def get_or_none(self, point_id: int, weekday: Weekday) -> Optional[WeekdayAggregate]:
        with self._transaction("select") as session:
            stmt = select(WeekdayAggregate).where(
                WeekdayAggregate.point_id == point_id,
                WeekdayAggregate.day_of_week == int(weekday),
            )
            row = session.execute(stmt).scalar_one_or_none()
            if row is not None:
                session.expunge(row)
            return row

    def create(self, point_id: int, weekday: Weekday) -> int:
        """Insert a zero-valued aggregate and return its id."""
        agg = WeekdayAggregate(
            point_id=point_id,
            day_of_week=int(weekday),
            last_updated=utcnow(),
            evals=0,
            count=0,
        )
        try:
            with self._transaction("insert") as session:
                session.add(agg)
                session.flush()  # so agg.id is available
                new_id = agg.id
        except IntegrityError as ex:
            raise ConflictError(point_id, int(weekday)) from ex
        if not new_id:
            raise StoreUnavailable(f"insert for point={point_id} weekday={int(weekday)} returned no id")
        return int(new_id)

    def save(self, agg: WeekdayAggregate) -> None:
        with self._transaction("update") as session:
            result = session.execute(
                update(WeekdayAggregate)
                .where(WeekdayAggregate.id == agg.id)
                .values(
                    last_updated=agg.last_updated,
                    start_time=agg.start_time,
                    end_time=agg.end_time,
                    evals=agg.evals,
                    count=agg.count,
                    sum=agg.sum,
                    mean=agg.mean,
                    std_dev=agg.std_dev,
                    min=agg.min,
                    max=agg.max,
                )
            )
            if not result.rowcount:
                raise NotFoundError(agg.id)

    def list_for_point(self, point_id: int) -> List[WeekdayAggregate]:
        with self._transaction("select") as session:
            stmt = (
                select(WeekdayAggregate)
                .where(WeekdayAggregate.point_id == point_id)
                .order_by(WeekdayAggregate.day_of_week.asc())
            )
            rows = list(session.execute(stmt).scalars().all())
            session.expunge_all()
            return rows


__all__ = ["AggregateStore"]
