from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from dowstats.db.session import make_sessionmaker
from dowstats.errors import DispatchError, StoreUnavailable
from dowstats.services.aggregate_store import AggregateStore
from dowstats.services.dispatcher import Dispatcher, group_by_point, group_by_weekday
from dowstats.services.merger import BatchMerger
from dowstats.utils.weekday import Weekday

from _helpers import MON_T1, MON_T2, TUE_T1, comparable, metric, utc


def _dispatcher_for(engine):
    store = AggregateStore(make_sessionmaker(engine))
    return Dispatcher(BatchMerger(store), max_workers=4), store


def test_group_by_point():
    batch = [metric(1, 1.0, MON_T1), metric(2, 2.0, MON_T1), metric(1, 3.0, TUE_T1)]
    groups = group_by_point(batch)
    assert set(groups) == {1, 2}
    assert [m.value for m in groups[1]] == [1.0, 3.0]


def test_group_by_weekday_routes_by_utc_day():
    # 23:30 at UTC-5 on Monday is already Tuesday in UTC
    late_monday_est = datetime(2024, 1, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
    batch = [metric(1, 1.0, MON_T1), metric(1, 2.0, late_monday_est), metric(1, 3.0, utc(2024, 1, 7, 12))]
    days = group_by_weekday(batch)
    assert set(days) == {Weekday.MONDAY, Weekday.TUESDAY, Weekday.SUNDAY}
    assert [v for v, _ in days[Weekday.TUESDAY]] == [2.0]


def test_two_weekdays_produce_two_rows(dispatcher, store):
    result = dispatcher.run([metric(1, 3.0, MON_T1), metric(1, 10.0, TUE_T1), metric(1, 5.0, MON_T2)])

    assert result.points == 1
    assert result.merged == 2
    assert result.samples == 3
    rows = store.list_for_point(1)
    assert [r.weekday for r in rows] == [Weekday.MONDAY, Weekday.TUESDAY]
    monday, tuesday = rows
    assert (monday.count, monday.sum, monday.min, monday.max) == (2, 8.0, 3.0, 5.0)
    assert (tuesday.count, tuesday.sum, tuesday.min, tuesday.max) == (1, 10.0, 10.0, 10.0)


def test_samples_only_reach_their_own_weekday(dispatcher, store):
    week = [metric(9, float(day), utc(2024, 1, 1 + day, 6)) for day in range(7)]
    dispatcher.run(week)

    rows = store.list_for_point(9)
    assert len(rows) == 7
    for row in rows:
        assert row.count == 1
        assert row.sum == float(row.day_of_week)


@pytest.mark.parametrize("order", ["ab", "ba"])
def test_mixed_batch_matches_separate_runs(make_engine, order):
    a = [metric(1, v, MON_T1 + timedelta(days=7 * i)) for i, v in enumerate([1.0, 4.0, 9.0])]
    b = [metric(2, v, TUE_T1 + timedelta(hours=i)) for i, v in enumerate([2.0, -1.0])]

    mixed_dispatcher, mixed_store = _dispatcher_for(make_engine("mixed"))
    mixed_dispatcher.run(a + b)

    split_dispatcher, split_store = _dispatcher_for(make_engine("split"))
    for part in ([a, b] if order == "ab" else [b, a]):
        split_dispatcher.run(part)

    for point in (1, 2):
        mixed = [comparable(r) for r in mixed_store.list_for_point(point)]
        split = [comparable(r) for r in split_store.list_for_point(point)]
        assert mixed == split


def test_many_points_in_parallel(dispatcher, store):
    batch = [metric(p, float(i), MON_T1 + timedelta(minutes=i)) for p in range(20) for i in range(3)]
    result = dispatcher.run(batch)

    assert result.points == 20
    assert result.merged == 20
    for p in range(20):
        row = store.get_or_none(p, Weekday.MONDAY)
        assert row.count == 3
        assert row.sum == 3.0


def test_empty_batch_is_noop(dispatcher):
    result = dispatcher.run([])
    assert result.to_dict() == {"points": 0, "samples": 0, "merged": 0, "failed": 0, "skipped": 0}


class _FlakyMerger(BatchMerger):
    def __init__(self, store, bad_point):
        super().__init__(store)
        self.bad_point = bad_point

    def merge(self, point_id, weekday, samples, cancel=None):
        if point_id == self.bad_point:
            raise StoreUnavailable("connection reset")
        return super().merge(point_id, weekday, samples, cancel=cancel)


def test_one_failing_point_does_not_abort_others(store):
    dispatcher = Dispatcher(_FlakyMerger(store, bad_point=2), max_workers=4)
    batch = [metric(1, 1.0, MON_T1), metric(2, 2.0, MON_T1), metric(2, 2.0, TUE_T1), metric(3, 3.0, MON_T1)]

    with pytest.raises(DispatchError) as exc:
        dispatcher.run(batch)

    err = exc.value
    assert err.failed == 2
    assert err.total == 4
    assert isinstance(err.__cause__, StoreUnavailable)
    assert err.result.merged == 2
    assert store.get_or_none(1, Weekday.MONDAY).count == 1
    assert store.get_or_none(3, Weekday.MONDAY).count == 1
    assert store.get_or_none(2, Weekday.MONDAY) is None


class _CrashingMerger(BatchMerger):
    def merge(self, point_id, weekday, samples, cancel=None):
        if point_id == 2 and weekday == Weekday.TUESDAY:
            raise RuntimeError("bug")
        return super().merge(point_id, weekday, samples, cancel=cancel)


def test_unexpected_crash_is_isolated_to_its_weekday(store):
    dispatcher = Dispatcher(_CrashingMerger(store), max_workers=2)
    wed = utc(2024, 1, 3, 12)
    batch = [metric(1, 1.0, MON_T1), metric(2, 2.0, MON_T1), metric(2, 3.0, TUE_T1), metric(2, 4.0, wed)]

    with pytest.raises(DispatchError) as exc:
        dispatcher.run(batch)

    err = exc.value
    assert isinstance(err.__cause__, RuntimeError)
    assert err.failed == 1
    assert err.result.merged == 3
    assert err.result.samples == 4
    assert store.get_or_none(1, Weekday.MONDAY).count == 1
    assert store.get_or_none(2, Weekday.MONDAY).count == 1
    assert store.get_or_none(2, Weekday.TUESDAY) is None
    assert store.get_or_none(2, Weekday.WEDNESDAY).count == 1


def test_large_magnitudes_keep_statistics_non_null(dispatcher, store):
    dispatcher.run([metric(2, 1e200, MON_T1), metric(2, 1e200, MON_T2)])

    row = store.get_or_none(2, Weekday.MONDAY)
    assert row.count == 2
    assert row.sum == 2e200
    assert row.mean == 1e200
    assert row.std_dev == 0.0


def test_cancelled_dispatch_writes_nothing(dispatcher, store):
    cancel = threading.Event()
    cancel.set()

    result = dispatcher.run([metric(1, 1.0, MON_T1), metric(2, 2.0, TUE_T1)], cancel=cancel)

    assert result.merged == 0
    assert result.skipped == 2
    assert result.failed == 0
    assert store.get_or_none(1, Weekday.MONDAY) is None
    assert store.get_or_none(2, Weekday.TUESDAY) is None


def test_concurrent_dispatches_on_same_point(dispatcher, store):
    batch = [metric(5, 1.0, MON_T1), metric(5, 2.0, TUE_T1)]

    def _worker():
        for _ in range(3):
            dispatcher.run(batch)

    threads = [threading.Thread(target=_worker) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get_or_none(5, Weekday.MONDAY).count == 9
    assert store.get_or_none(5, Weekday.TUESDAY).evals == 9
