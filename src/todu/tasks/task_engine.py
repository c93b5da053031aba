# src/todu/tasks/task_engine.py

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from ..core.events import EventBus, EventKind, Subscriber
from ..core.ports import TaskRepo
from .task_models import Priority, Task, clean_category, parse_due_date, utcnow
from .task_query import FilterCriteria, StatisticsSnapshot, compute_statistics, local_day, run_query

logger = logging.getLogger(__name__)

_PATCHABLE = frozenset({"text", "due_date", "priority", "category", "completed"})
_UNSET: Any = object()


class TaskEngine:
    """
    Owner of the ordered task collection.

    Every mutation:
    1. validates its input (invalid input -> None/False, nothing changes),
    2. swaps records in the in-memory list,
    3. hands the full list to the store,
    4. emits its event.
    A failed save does not undo step 2; it emits SAVE_FAILED instead.

    Operations hold a re-entrant lock, so a subscriber may call back into the
    engine, and a host thread polling for external changes never sees a
    half-applied mutation.
    """

    def __init__(
        self,
        store: TaskRepo,
        *,
        events: EventBus | None = None,
        clock: Callable[[], datetime] = utcnow,
        load: bool = True,
    ) -> None:
        self._store = store
        self.events = events or EventBus()
        self._clock = clock
        self._lock = threading.RLock()
        self._tasks: list[Task] = []
        self._last_save_ok = True

        self._unsubscribe_store = store.subscribe_to_external_change(self._on_external_change)
        if load:
            self.reload()
        logger.info("TaskEngine ready tasks=%d", len(self._tasks))

    def close(self) -> None:
        self._unsubscribe_store()

    # ---- events ----

    def on(self, kind: EventKind | str, callback: Subscriber) -> Callable[[], None]:
        return self.events.subscribe(kind, callback)

    def off(self, kind: EventKind | str, callback: Subscriber) -> bool:
        return self.events.unsubscribe(kind, callback)

    # ---- internals ----

    def _index_of(self, task_id: str) -> int | None:
        for i, t in enumerate(self._tasks):
            if t.id == task_id:
                return i
        return None

    def _commit(self) -> bool:
        ok = self._store.save_tasks(list(self._tasks))
        self._last_save_ok = ok
        if not ok:
            logger.warning("Tasks not persisted; in-memory state is ahead of storage (tasks=%d)", len(self._tasks))
            self.events.emit(EventKind.SAVE_FAILED, tuple(self._tasks))
        return ok

    def _on_external_change(self, key: str, old_value: Any, new_value: Any) -> None:
        if key != self._store.tasks_key:
            return
        logger.info("Tasks changed by another instance; reloading")
        self.reload()

    # ---- reads ----

    @property
    def last_save_ok(self) -> bool:
        return self._last_save_ok

    def __len__(self) -> int:
        return len(self._tasks)

    def tasks(self) -> tuple[Task, ...]:
        with self._lock:
            return tuple(self._tasks)

    def get_task(self, task_id: str) -> Task | None:
        with self._lock:
            idx = self._index_of(task_id)
            return self._tasks[idx] if idx is not None else None

    def query(self, criteria: FilterCriteria | Mapping[str, Any] | None = None) -> list[Task]:
        """Filter + sort a copy of the collection; emits VIEW_COMPUTED with the result."""
        if not isinstance(criteria, FilterCriteria):
            criteria = FilterCriteria.from_mapping(criteria)
        with self._lock:
            snapshot = list(self._tasks)
            results = run_query(snapshot, criteria, today=local_day(self._clock()))
            self.events.emit(EventKind.VIEW_COMPUTED, list(results))
        return results

    def statistics(self) -> StatisticsSnapshot:
        with self._lock:
            return compute_statistics(tuple(self._tasks), now=self._clock())

    def categories(self) -> list[str]:
        with self._lock:
            return sorted({t.category for t in self._tasks if t.category})

    # ---- single-record mutations ----

    def add_task(
        self,
        text: str,
        due_date: Any = None,
        priority: Priority | str | None = None,
        category: str | None = None,
    ) -> Task | None:
        if not isinstance(text, str) or not text.strip():
            logger.debug("add_task rejected: empty text")
            return None
        try:
            due = parse_due_date(due_date)
        except ValueError:
            logger.debug("add_task rejected: bad due date %r", due_date)
            return None
        prio = Priority.MEDIUM if priority is None else Priority.parse(priority)
        if prio is None:
            logger.debug("add_task rejected: bad priority %r", priority)
            return None

        with self._lock:
            now = self._clock()
            task = Task(
                id=self._store.generate_id(),
                text=text.strip(),
                completed=False,
                due_date=due,
                priority=prio,
                category=clean_category(category),
                created_at=now,
                updated_at=now,
                completed_at=None,
            )
            self._tasks.insert(0, task)
            self._commit()
            logger.debug("Task added id=%s priority=%s", task.id, task.priority.value)
            self.events.emit(EventKind.CREATED, task)
            return task

    def update_task(self, task_id: str, **changes: Any) -> Task | None:
        """
        Replace only the supplied fields (text, due_date, priority, category, completed).

        updated_at is refreshed even for an empty patch.
        """
        unknown = set(changes) - _PATCHABLE
        if unknown:
            logger.warning("update_task rejected: unknown fields %s", sorted(unknown))
            return None

        with self._lock:
            idx = self._index_of(task_id)
            if idx is None:
                return None
            old = self._tasks[idx]
            now = self._clock()
            fields: dict[str, Any] = {"updated_at": now}

            text = changes.get("text", _UNSET)
            if text is not _UNSET:
                if not isinstance(text, str) or not text.strip():
                    return None
                fields["text"] = text.strip()

            if "due_date" in changes:
                try:
                    fields["due_date"] = parse_due_date(changes["due_date"])
                except ValueError:
                    return None

            if "priority" in changes:
                prio = Priority.parse(changes["priority"])
                if prio is None:
                    return None
                fields["priority"] = prio

            if "category" in changes:
                fields["category"] = clean_category(changes["category"])

            if "completed" in changes:
                completed = bool(changes["completed"])
                fields["completed"] = completed
                if completed != old.completed:
                    fields["completed_at"] = now if completed else None

            new = replace(old, **fields)
            self._tasks[idx] = new
            self._commit()
            self.events.emit(EventKind.UPDATED, new, old)
            return new

    def delete_task(self, task_id: str) -> Task | None:
        with self._lock:
            idx = self._index_of(task_id)
            if idx is None:
                return None
            task = self._tasks.pop(idx)
            self._commit()
            logger.debug("Task deleted id=%s", task_id)
            self.events.emit(EventKind.DELETED, task)
            return task

    def toggle_completion(self, task_id: str) -> Task | None:
        with self._lock:
            idx = self._index_of(task_id)
            if idx is None:
                return None
            old = self._tasks[idx]
            now = self._clock()
            completed = not old.completed
            new = replace(
                old,
                completed=completed,
                completed_at=now if completed else None,
                updated_at=now,
            )
            self._tasks[idx] = new
            self._commit()
            self.events.emit(EventKind.COMPLETION_CHANGED, new, old.completed)
            return new

    def reorder(self, old_index: int, new_index: int) -> bool:
        with self._lock:
            n = len(self._tasks)
            if not (0 <= old_index < n and 0 <= new_index < n):
                return False
            task = self._tasks.pop(old_index)
            self._tasks.insert(new_index, task)
            self._commit()
            self.events.emit(EventKind.REORDERED, tuple(self._tasks))
            return True

    # ---- bulk mutations ----

    def bulk_complete(self, task_ids: Iterable[str]) -> list[Task]:
        """Complete every known, still-pending id. One save; one COMPLETION_CHANGED per record."""
        with self._lock:
            now = self._clock()
            affected: list[Task] = []
            for task_id in dict.fromkeys(task_ids):
                idx = self._index_of(task_id)
                if idx is None or self._tasks[idx].completed:
                    continue
                new = replace(self._tasks[idx], completed=True, completed_at=now, updated_at=now)
                self._tasks[idx] = new
                affected.append(new)

            if affected:
                self._commit()
                for task in affected:
                    self.events.emit(EventKind.COMPLETION_CHANGED, task, False)
            return affected

    def _remove_many(self, task_ids: Iterable[str]) -> list[Task]:
        wanted = set(task_ids)
        removed = [t for t in self._tasks if t.id in wanted]
        if removed:
            self._tasks = [t for t in self._tasks if t.id not in wanted]
            self._commit()
            for task in removed:
                self.events.emit(EventKind.DELETED, task)
        return removed

    def bulk_delete(self, task_ids: Iterable[str]) -> list[Task]:
        with self._lock:
            return self._remove_many(task_ids)

    def bulk_set_category(self, task_ids: Iterable[str], category: str | None) -> list[Task]:
        with self._lock:
            now = self._clock()
            cat = clean_category(category)
            changed: list[tuple[Task, Task]] = []
            for task_id in dict.fromkeys(task_ids):
                idx = self._index_of(task_id)
                if idx is None:
                    continue
                old = self._tasks[idx]
                new = replace(old, category=cat, updated_at=now)
                self._tasks[idx] = new
                changed.append((new, old))

            if changed:
                self._commit()
                for new, old in changed:
                    self.events.emit(EventKind.UPDATED, new, old)
            return [new for new, _ in changed]

    def purge_completed(self, older_than_days: int) -> list[Task]:
        """Delete completed tasks whose completed_at is more than `older_than_days` days old."""
        with self._lock:
            cutoff = self._clock() - timedelta(days=max(0, int(older_than_days)))
            victims = [
                t.id for t in self._tasks if t.completed and t.completed_at is not None and t.completed_at < cutoff
            ]
            removed = self._remove_many(victims)
            if removed:
                logger.info("Purged %d completed tasks older than %s days", len(removed), older_than_days)
            return removed

    # ---- storage sync ----

    def reload(self) -> None:
        """Replace the collection with what the store holds; emits VIEW_INVALIDATED."""
        with self._lock:
            self._tasks = list(self._store.load_tasks())
            self.events.emit(EventKind.VIEW_INVALIDATED, tuple(self._tasks))
