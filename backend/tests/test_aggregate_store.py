from __future__ import annotations

import gc
import threading

import pytest

from dowstats.db.session import build_engine, make_sessionmaker
from dowstats.errors import ConflictError, NotFoundError, StoreUnavailable
from dowstats.models.weekday_aggregate import WeekdayAggregate
from dowstats.services.aggregate_store import AggregateStore
from dowstats.utils.weekday import Weekday


def test_get_or_none_absent(store):
    assert store.get_or_none(1, Weekday.MONDAY) is None


def test_create_zero_valued(store):
    new_id = store.create(1, Weekday.WEDNESDAY)
    assert new_id > 0

    row = store.get_or_none(1, Weekday.WEDNESDAY)
    assert row.id == new_id
    assert row.day_of_week == 2
    assert row.weekday is Weekday.WEDNESDAY
    assert row.count == 0
    assert row.evals == 0
    assert row.sum is None and row.mean is None and row.std_dev is None
    assert row.min is None and row.max is None
    assert row.start_time is None and row.end_time is None


def test_create_twice_conflicts(store):
    store.create(1, Weekday.MONDAY)
    with pytest.raises(ConflictError) as exc:
        store.create(1, Weekday.MONDAY)
    assert exc.value.point_id == 1
    assert exc.value.weekday == 0


def test_same_weekday_different_points_do_not_conflict(store):
    a = store.create(1, Weekday.MONDAY)
    b = store.create(2, Weekday.MONDAY)
    assert a != b


def test_save_missing_id_raises_not_found(store):
    ghost = WeekdayAggregate(id=9999, point_id=1, day_of_week=0, evals=1, count=1)
    with pytest.raises(NotFoundError):
        store.save(ghost)


def test_list_for_point_orders_monday_first(store):
    for day in (Weekday.SUNDAY, Weekday.MONDAY, Weekday.THURSDAY):
        store.create(4, day)
    store.create(5, Weekday.TUESDAY)

    days = [row.weekday for row in store.list_for_point(4)]
    assert days == [Weekday.MONDAY, Weekday.THURSDAY, Weekday.SUNDAY]


def test_unreachable_database_raises_store_unavailable(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'missing' / 'nested' / 'x.db'}")
    try:
        broken = AggregateStore(make_sessionmaker(engine))
        with pytest.raises(StoreUnavailable):
            broken.get_or_none(1, Weekday.MONDAY)
    finally:
        engine.dispose()


def test_key_lock_blocks_same_key_only(store):
    entered_same = threading.Event()
    entered_other = threading.Event()

    def _enter(day, flag):
        with store.key_lock(1, day):
            flag.set()

    with store.key_lock(1, Weekday.MONDAY):
        same = threading.Thread(target=_enter, args=(Weekday.MONDAY, entered_same))
        other = threading.Thread(target=_enter, args=(Weekday.TUESDAY, entered_other))
        same.start()
        other.start()
        assert entered_other.wait(2.0)
        assert not entered_same.wait(0.2)

    same.join(2.0)
    other.join(2.0)
    assert entered_same.is_set()


def test_key_lock_registry_drops_released_keys(store):
    for day in Weekday:
        with store.key_lock(3, day):
            assert len(store._locks) == 1
    gc.collect()
    assert len(store._locks) == 0
