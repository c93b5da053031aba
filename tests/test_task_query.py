# tests/test_task_query.py

from __future__ import annotations

import locale
from datetime import timedelta

import pytest

from todu.core.events import EventKind
from todu.tasks.task_engine import TaskEngine
from todu.tasks.task_query import DueBucket, FilterCriteria, SortDirection, SortKey, StatusFilter, local_day

from .fakes import EventRecorder, FakeClock


def _today(clock: FakeClock):
    return local_day(clock.now)


def test_due_date_sort_puts_undated_last_in_collection_order(engine: TaskEngine) -> None:
    high = engine.add_task("high", priority="high")
    medium = engine.add_task("medium", priority="medium")
    low = engine.add_task("low", priority="low", due_date="2024-01-01")
    assert high and medium and low

    asc = engine.query({"sort_key": "due_date", "sort_direction": "asc"})
    assert [t.id for t in asc] == [low.id, medium.id, high.id]

    desc = engine.query(FilterCriteria(sort_key=SortKey.DUE_DATE, sort_direction=SortDirection.DESC))
    assert desc[0].id == low.id
    assert [t.id for t in desc[1:]] == [medium.id, high.id]


def test_due_date_sort_orders_dated_records(engine: TaskEngine) -> None:
    engine.add_task("later", due_date="2024-08-01")
    engine.add_task("none")
    engine.add_task("sooner", due_date="2024-07-01")

    asc = engine.query(FilterCriteria(sort_key=SortKey.DUE_DATE, sort_direction=SortDirection.ASC))
    assert [t.text for t in asc] == ["sooner", "later", "none"]
    desc = engine.query(FilterCriteria(sort_key=SortKey.DUE_DATE, sort_direction=SortDirection.DESC))
    assert [t.text for t in desc] == ["later", "sooner", "none"]


def test_priority_sort_high_first_when_descending(engine: TaskEngine) -> None:
    engine.add_task("m", priority="medium")
    engine.add_task("h", priority="high")
    engine.add_task("l", priority="low")

    desc = engine.query(FilterCriteria(sort_key=SortKey.PRIORITY))
    assert [t.text for t in desc] == ["h", "m", "l"]
    asc = engine.query(FilterCriteria(sort_key=SortKey.PRIORITY, sort_direction=SortDirection.ASC))
    assert [t.text for t in asc] == ["l", "m", "h"]


def test_alphabetical_and_category_sorts(engine: TaskEngine) -> None:
    engine.add_task("banana", category="Shop")
    engine.add_task("Apple", category="home")
    engine.add_task("cherry", category="Work")

    alpha = engine.query(FilterCriteria(sort_key=SortKey.ALPHABETICAL, sort_direction=SortDirection.ASC))
    assert [t.text for t in alpha] == ["Apple", "banana", "cherry"]
    cats = engine.query({"sortBy": "category", "sortOrder": "asc"})
    assert [t.category for t in cats] == ["home", "Shop", "Work"]


def test_default_query_is_newest_first(engine: TaskEngine) -> None:
    for text in ("one", "two", "three"):
        engine.add_task(text)
    assert [t.text for t in engine.query()] == ["three", "two", "one"]
    assert [t.text for t in engine.query({"sortOrder": "asc"})] == ["one", "two", "three"]


def test_status_priority_category_and_search_filters(engine: TaskEngine) -> None:
    milk = engine.add_task("Buy milk", category="Errands", priority="low")
    report = engine.add_task("Quarterly report", category="Work", priority="high")
    call = engine.add_task("Call mom", category="Personal")
    assert milk and report and call
    engine.toggle_completion(report.id)

    assert [t.id for t in engine.query({"status": "completed"})] == [report.id]
    assert {t.id for t in engine.query({"status": StatusFilter.PENDING})} == {milk.id, call.id}
    assert [t.id for t in engine.query({"priority": "low"})] == [milk.id]
    assert [t.id for t in engine.query({"category": "Work"})] == [report.id]
    assert [t.id for t in engine.query({"search": "MILK"})] == [milk.id]
    # search also matches category
    assert [t.id for t in engine.query({"search": "errand"})] == [milk.id]
    assert len(engine.query({"search": "   "})) == 3


def test_due_buckets_use_calendar_days(engine: TaskEngine, clock: FakeClock) -> None:
    today = _today(clock)
    overdue = engine.add_task("overdue", due_date=today - timedelta(days=1))
    overdue_done = engine.add_task("overdue done", due_date=today - timedelta(days=3))
    due_today = engine.add_task("today", due_date=today)
    upcoming = engine.add_task("upcoming", due_date=today + timedelta(days=2))
    undated = engine.add_task("undated")
    assert overdue and overdue_done and due_today and upcoming and undated
    engine.toggle_completion(overdue_done.id)
    engine.toggle_completion(due_today.id)

    def ids(bucket) -> set[str]:
        return {t.id for t in engine.query(FilterCriteria(due=bucket))}

    assert ids(DueBucket.OVERDUE) == {overdue.id}
    assert ids(DueBucket.TODAY) == {due_today.id}
    assert ids(DueBucket.UPCOMING) == {upcoming.id}
    assert ids(DueBucket.NONE) == {undated.id}
    assert {t.id for t in engine.query({"dueDate": "no-date"})} == {undated.id}
    assert len(ids(DueBucket.ALL)) == 5


def test_query_emits_view_computed_and_never_mutates(engine: TaskEngine) -> None:
    engine.add_task("alpha")
    engine.add_task("beta")
    before = engine.tasks()
    rec = EventRecorder().attach(engine)

    results = engine.query({"search": "alp"})
    results.clear()

    assert engine.tasks() == before
    assert len(rec.of(EventKind.VIEW_COMPUTED)) == 1
    assert [t.text for t in rec.of(EventKind.VIEW_COMPUTED)[0][0]] == ["alpha"]


def test_criteria_from_mapping_falls_back_on_unknown_values() -> None:
    c = FilterCriteria.from_mapping({"status": "weird", "sortBy": "createdAt", "sortOrder": "sideways"})
    assert c == FilterCriteria()
    assert FilterCriteria.from_mapping(None) == FilterCriteria()
    assert FilterCriteria.from_mapping({"sortBy": "dueDate"}).sort_key is SortKey.DUE_DATE


def test_statistics_on_empty_collection(engine: TaskEngine) -> None:
    stats = engine.statistics()
    assert stats.total == 0
    assert stats.completion_rate == 0
    assert stats.by_priority == {"high": 0, "medium": 0, "low": 0}
    assert stats.categories == []
    assert (stats.completed_today, stats.due_today, stats.overdue) == (0, 0, 0)
    assert (stats.this_week.created, stats.this_month.created) == (0, 0)


def test_statistics_counts(engine: TaskEngine, clock: FakeClock) -> None:
    old = engine.add_task("old", category="Work", priority="high")
    assert old
    clock.advance(timedelta(days=10))

    today = _today(clock)
    late = engine.add_task("late", category="Work", due_date=today - timedelta(days=1))
    now_due = engine.add_task("due now", due_date=today, priority="low")
    done = engine.add_task("done", category="Home", due_date=today - timedelta(days=5))
    assert late and now_due and done
    engine.toggle_completion(done.id)

    stats = engine.statistics()
    assert (stats.total, stats.completed, stats.pending) == (4, 1, 3)
    assert stats.completion_rate == 25
    assert stats.by_priority == {"high": 1, "medium": 2, "low": 1}
    assert stats.completed_today == 1
    assert stats.due_today == 1
    assert stats.overdue == 1  # the completed overdue one does not count
    assert [(c.name, c.count) for c in stats.categories][0] == ("Work", 2)
    assert (stats.this_week.created, stats.this_week.completed) == (3, 1)
    assert (stats.this_month.created, stats.this_month.completed) == (4, 1)


@pytest.fixture()
def collating_locale():
    """Switch LC_COLLATE to a real UTF-8 locale for one test, if the machine has one."""
    previous = locale.setlocale(locale.LC_COLLATE)
    for name in ("en_US.UTF-8", "en_US.utf8", "de_DE.UTF-8", "fr_FR.UTF-8", "en_GB.UTF-8"):
        try:
            locale.setlocale(locale.LC_COLLATE, name)
        except locale.Error:
            continue
        break
    else:
        pytest.skip("no UTF-8 collation locale installed")
    try:
        yield
    finally:
        locale.setlocale(locale.LC_COLLATE, previous)


def test_alphabetical_sort_collates_accented_text(engine: TaskEngine, collating_locale) -> None:
    engine.add_task("zebra")
    engine.add_task("éclair", category="Épicerie")
    engine.add_task("Apple", category="Zoo")

    asc = engine.query({"sortKey": "alphabetical", "sortDirection": "asc"})
    assert [t.text for t in asc] == ["Apple", "éclair", "zebra"]
    cats = engine.query({"sortKey": "category", "sortDirection": "asc"})
    assert [t.category for t in cats] == ["Épicerie", "General", "Zoo"]
