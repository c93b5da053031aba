# src/todu/tasks/task_query.py

from __future__ import annotations

"""
Filtering, sorting and statistics over a task collection.

Everything here is a pure function of its inputs: nothing mutates the
collection it is given, and "today" is always passed in by the caller.
"""

import locale
import logging
import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import StrEnum
from typing import Any

from .task_models import Priority, Task

logger = logging.getLogger(__name__)

ALL = "all"

PRODUCTIVITY_WEEK_DAYS = 7
PRODUCTIVITY_MONTH_DAYS = 30


class StatusFilter(StrEnum):
    ALL = "all"
    COMPLETED = "completed"
    PENDING = "pending"


class DueBucket(StrEnum):
    ALL = "all"
    OVERDUE = "overdue"
    TODAY = "today"
    UPCOMING = "upcoming"
    NONE = "none"


class SortKey(StrEnum):
    CREATED_AT = "created_at"
    DUE_DATE = "due_date"
    PRIORITY = "priority"
    ALPHABETICAL = "alphabetical"
    CATEGORY = "category"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


# Spellings used by persisted settings (sortBy/sortOrder) and older filter UIs.
_ALIASES: dict[str, str] = {
    "createdat": SortKey.CREATED_AT,
    "duedate": SortKey.DUE_DATE,
    "no-date": DueBucket.NONE,
    "nodate": DueBucket.NONE,
    "ascending": SortDirection.ASC,
    "descending": SortDirection.DESC,
}


def _coerce(enum_cls: type[StrEnum], raw: Any, default: StrEnum) -> Any:
    if raw is None:
        return default
    if isinstance(raw, enum_cls):
        return raw
    s = str(raw).strip().lower()
    s = _ALIASES.get(s, s)
    try:
        return enum_cls(s)
    except ValueError:
        logger.debug("Unknown %s value %r; using %s", enum_cls.__name__, raw, default)
        return default


def _first(data: Mapping[str, Any], *names: str) -> Any:
    for n in names:
        if n in data:
            return data[n]
    return None


@dataclass(frozen=True, slots=True)
class FilterCriteria:
    status: StatusFilter = StatusFilter.ALL
    priority: str = ALL  # "all" or a Priority value
    category: str = ALL
    due: DueBucket = DueBucket.ALL
    search: str = ""
    sort_key: SortKey = SortKey.CREATED_AT
    sort_direction: SortDirection = SortDirection.DESC

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> FilterCriteria:
        """
        Lenient constructor for loosely-typed input (console args, stored settings).

        Accepts snake_case and camelCase names; unknown enum values fall back to defaults.
        """
        if not data:
            return cls()
        priority = _first(data, "priority")
        category = _first(data, "category")
        search = _first(data, "search")
        return cls(
            status=_coerce(StatusFilter, _first(data, "status"), StatusFilter.ALL),
            priority=str(priority).strip().lower() if priority else ALL,
            category=str(category) if category else ALL,
            due=_coerce(DueBucket, _first(data, "due", "dueDate", "due_date", "dueDateBucket"), DueBucket.ALL),
            search=str(search) if search else "",
            sort_key=_coerce(SortKey, _first(data, "sort_key", "sortKey", "sortBy"), SortKey.CREATED_AT),
            sort_direction=_coerce(
                SortDirection,
                _first(data, "sort_direction", "sortDirection", "sortOrder"),
                SortDirection.DESC,
            ),
        )


@dataclass(frozen=True, slots=True)
class CategoryCount:
    name: str
    count: int


@dataclass(frozen=True, slots=True)
class WindowRollup:
    created: int
    completed: int


@dataclass(frozen=True, slots=True)
class StatisticsSnapshot:
    total: int
    completed: int
    pending: int
    completion_rate: int  # whole percent, 0 when total == 0
    by_priority: dict[str, int]
    completed_today: int
    due_today: int
    overdue: int
    categories: list[CategoryCount] = field(default_factory=list)
    this_week: WindowRollup = WindowRollup(0, 0)
    this_month: WindowRollup = WindowRollup(0, 0)


def local_day(ts: datetime) -> date:
    """Calendar day of a timestamp in the local timezone."""
    return ts.astimezone().date()


def _matches_due(task: Task, bucket: DueBucket, today: date) -> bool:
    due = task.due_date
    if bucket is DueBucket.ALL:
        return True
    if bucket is DueBucket.NONE:
        return due is None
    if due is None:
        return False
    if bucket is DueBucket.OVERDUE:
        return due < today and not task.completed
    if bucket is DueBucket.TODAY:
        return due == today
    return due > today  # UPCOMING


def filter_tasks(tasks: Iterable[Task], criteria: FilterCriteria, *, today: date) -> list[Task]:
    out = list(tasks)

    if criteria.status is StatusFilter.COMPLETED:
        out = [t for t in out if t.completed]
    elif criteria.status is StatusFilter.PENDING:
        out = [t for t in out if not t.completed]

    if criteria.priority != ALL:
        out = [t for t in out if t.priority.value == criteria.priority]

    if criteria.category != ALL:
        out = [t for t in out if t.category == criteria.category]

    if criteria.due is not DueBucket.ALL:
        out = [t for t in out if _matches_due(t, criteria.due, today)]

    needle = criteria.search.strip().lower()
    if needle:
        out = [t for t in out if needle in t.text.lower() or needle in t.category.lower()]

    return out


def _collate(s: str) -> str:
    return locale.strxfrm(s.casefold())


def sort_tasks(tasks: Sequence[Task], key: SortKey, direction: SortDirection) -> list[Task]:
    """
    Stable sort; equal keys keep their collection order in both directions.

    Due-date sort always puts undated tasks last, whatever the direction.
    """
    reverse = direction is SortDirection.DESC

    if key is SortKey.DUE_DATE:
        dated = [t for t in tasks if t.due_date is not None]
        undated = [t for t in tasks if t.due_date is None]
        dated.sort(key=lambda t: t.due_date, reverse=reverse)  # type: ignore[arg-type, return-value]
        return dated + undated

    if key is SortKey.PRIORITY:
        return sorted(tasks, key=lambda t: t.priority.rank, reverse=reverse)
    if key is SortKey.ALPHABETICAL:
        return sorted(tasks, key=lambda t: _collate(t.text), reverse=reverse)
    if key is SortKey.CATEGORY:
        return sorted(tasks, key=lambda t: _collate(t.category), reverse=reverse)
    return sorted(tasks, key=lambda t: t.created_at, reverse=reverse)


def run_query(tasks: Sequence[Task], criteria: FilterCriteria, *, today: date) -> list[Task]:
    return sort_tasks(filter_tasks(tasks, criteria, today=today), criteria.sort_key, criteria.sort_direction)


def _rollup(tasks: Sequence[Task], since: datetime) -> WindowRollup:
    window = [t for t in tasks if t.created_at >= since]
    return WindowRollup(created=len(window), completed=sum(1 for t in window if t.completed))


def compute_statistics(tasks: Sequence[Task], *, now: datetime) -> StatisticsSnapshot:
    today = local_day(now)
    total = len(tasks)
    completed = sum(1 for t in tasks if t.completed)

    by_priority = {p.value: 0 for p in (Priority.HIGH, Priority.MEDIUM, Priority.LOW)}
    category_counts: dict[str, int] = {}
    for t in tasks:
        by_priority[t.priority.value] += 1
        category_counts[t.category] = category_counts.get(t.category, 0) + 1

    categories = sorted(
        (CategoryCount(name=n, count=c) for n, c in category_counts.items()),
        key=lambda cc: cc.count,
        reverse=True,
    )

    return StatisticsSnapshot(
        total=total,
        completed=completed,
        pending=total - completed,
        completion_rate=math.floor(completed * 100 / total + 0.5) if total else 0,
        by_priority=by_priority,
        completed_today=sum(
            1 for t in tasks if t.completed and t.completed_at is not None and local_day(t.completed_at) == today
        ),
        due_today=sum(1 for t in tasks if not t.completed and t.due_date == today),
        overdue=sum(1 for t in tasks if not t.completed and t.due_date is not None and t.due_date < today),
        categories=categories,
        this_week=_rollup(tasks, now - timedelta(days=PRODUCTIVITY_WEEK_DAYS)),
        this_month=_rollup(tasks, now - timedelta(days=PRODUCTIVITY_MONTH_DAYS)),
    )
