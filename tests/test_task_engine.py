# tests/test_task_engine.py

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, timedelta

from todu.core.events import EventKind
from todu.storage.record_store import RecordStore
from todu.tasks.task_engine import TaskEngine
from todu.tasks.task_models import Priority

from .fakes import EventRecorder, FailingSaveStore


def test_add_task_defaults_and_head_insert(engine: TaskEngine, store: RecordStore) -> None:
    rec = EventRecorder().attach(engine)
    first = engine.add_task("  first  ")
    second = engine.add_task("second", due_date="2024-07-01", priority="high", category="  Work ")

    assert first is not None and second is not None
    assert first.text == "first"
    assert first.priority is Priority.MEDIUM
    assert first.category == "General"
    assert first.completed is False and first.completed_at is None
    assert first.created_at == first.updated_at
    assert second.due_date == date(2024, 7, 1)
    assert second.category == "Work"

    assert [t.id for t in engine.tasks()] == [second.id, first.id]
    assert [t.id for t in engine.query()] == [second.id, first.id]
    assert rec.of(EventKind.CREATED) == [(first,), (second,)]

    # persisted
    assert [t.id for t in store.load_tasks()] == [second.id, first.id]


def test_add_task_rejects_without_side_effects(engine: TaskEngine) -> None:
    rec = EventRecorder().attach(engine)
    assert engine.add_task("   ") is None
    assert engine.add_task("x", priority="urgent") is None
    assert engine.add_task("x", due_date="not-a-date") is None
    assert len(engine) == 0
    assert rec.events == []


def test_update_empty_patch_only_touches_updated_at(engine: TaskEngine) -> None:
    task = engine.add_task("write report", due_date="2024-06-20", priority="low")
    assert task is not None
    rec = EventRecorder().attach(engine)

    updated = engine.update_task(task.id)
    assert updated is not None
    assert updated.updated_at > task.updated_at
    assert replace(updated, updated_at=task.updated_at) == task
    assert rec.of(EventKind.UPDATED) == [(updated, task)]


def test_update_task_fields_and_rejections(engine: TaskEngine) -> None:
    task = engine.add_task("draft")
    assert task is not None

    assert engine.update_task("missing", text="x") is None
    assert engine.update_task(task.id, text="  ") is None
    assert engine.update_task(task.id, priority="nope") is None
    assert engine.update_task(task.id, id="other") is None
    assert engine.get_task(task.id) == task

    updated = engine.update_task(task.id, text=" final ", category="", priority="high", due_date=None)
    assert updated is not None
    assert updated.text == "final"
    assert updated.category == "General"
    assert updated.priority is Priority.HIGH
    assert updated.created_at == task.created_at

    done = engine.update_task(task.id, completed=True)
    assert done is not None and done.completed and done.completed_at is not None
    reopened = engine.update_task(task.id, completed=False)
    assert reopened is not None and reopened.completed_at is None


def test_toggle_completion_is_its_own_inverse(engine: TaskEngine) -> None:
    task = engine.add_task("water plants", category="Home")
    assert task is not None
    rec = EventRecorder().attach(engine)

    once = engine.toggle_completion(task.id)
    assert once is not None and once.completed and once.completed_at is not None

    twice = engine.toggle_completion(task.id)
    assert twice is not None
    assert twice.completed is False and twice.completed_at is None
    assert replace(twice, updated_at=task.updated_at) == task

    payloads = rec.of(EventKind.COMPLETION_CHANGED)
    assert [(p[0].completed, p[1]) for p in payloads] == [(True, False), (False, True)]
    assert engine.toggle_completion("missing") is None


def test_reorder_round_trip_and_bounds(engine: TaskEngine) -> None:
    for text in ("a", "b", "c", "d"):
        engine.add_task(text)
    original = [t.text for t in engine.tasks()]
    assert original == ["d", "c", "b", "a"]

    rec = EventRecorder().attach(engine)
    assert engine.reorder(0, 2) is True
    assert [t.text for t in engine.tasks()] == ["c", "b", "d", "a"]
    assert engine.reorder(2, 0) is True
    assert [t.text for t in engine.tasks()] == original

    assert engine.reorder(-1, 0) is False
    assert engine.reorder(0, 4) is False
    assert len(rec.of(EventKind.REORDERED)) == 2
    assert [t.text for t in rec.of(EventKind.REORDERED)[-1][0]] == original


def test_delete_unknown_id_is_rejected_silently(engine: TaskEngine) -> None:
    engine.add_task("keep me")
    rec = EventRecorder().attach(engine)
    assert engine.delete_task("nope") is None
    assert rec.of(EventKind.DELETED) == []
    assert len(engine) == 1


def test_bulk_delete_only_existing_ids(engine: TaskEngine, store: RecordStore) -> None:
    a = engine.add_task("a")
    b = engine.add_task("b")
    c = engine.add_task("c")
    assert a and b and c
    rec = EventRecorder().attach(engine)

    removed = engine.bulk_delete([a.id, "missing", b.id])
    assert {t.id for t in removed} == {a.id, b.id}
    assert len(rec.of(EventKind.DELETED)) == 2
    assert [t.id for t in engine.tasks()] == [c.id]
    assert [t.id for t in store.load_tasks()] == [c.id]


def test_bulk_complete_skips_completed_and_unknown(engine: TaskEngine) -> None:
    a = engine.add_task("a")
    b = engine.add_task("b")
    assert a and b
    engine.toggle_completion(a.id)
    rec = EventRecorder().attach(engine)

    done = engine.bulk_complete([a.id, b.id, "missing", b.id])
    assert [t.id for t in done] == [b.id]
    assert [(p[0].id, p[1]) for p in rec.of(EventKind.COMPLETION_CHANGED)] == [(b.id, False)]

    rec.clear()
    assert engine.bulk_complete(["missing"]) == []
    assert rec.events == []


def test_bulk_set_category_emits_updated_with_old_snapshot(engine: TaskEngine) -> None:
    a = engine.add_task("a", category="Work")
    b = engine.add_task("b")
    assert a and b
    rec = EventRecorder().attach(engine)

    changed = engine.bulk_set_category([a.id, b.id, "zzz"], "  Errands ")
    assert {t.category for t in changed} == {"Errands"}
    updates = rec.of(EventKind.UPDATED)
    assert [(new.category, old.category) for new, old in updates] == [("Errands", "Work"), ("Errands", "General")]
    assert engine.categories() == ["Errands"]


def test_subscriber_failure_does_not_block_others_or_roll_back(engine: TaskEngine, caplog) -> None:
    seen: list[str] = []

    def broken(task) -> None:
        raise RuntimeError("boom")

    engine.on(EventKind.CREATED, broken)
    engine.on(EventKind.CREATED, lambda task: seen.append(task.text))

    with caplog.at_level(logging.ERROR, logger="todu.core.events"):
        task = engine.add_task("still saved")

    assert task is not None
    assert seen == ["still saved"]
    assert len(engine) == 1
    assert any("failed on created" in r.getMessage() for r in caplog.records)


def test_save_failure_keeps_memory_state_and_emits_save_failed(store: RecordStore, clock) -> None:
    failing = FailingSaveStore(store)
    engine = TaskEngine(failing, clock=clock)
    rec = EventRecorder().attach(engine)

    task = engine.add_task("optimistic")
    assert task is not None
    assert engine.last_save_ok is False
    assert [t.id for t in engine.tasks()] == [task.id]
    assert len(rec.of(EventKind.SAVE_FAILED)) == 1
    assert rec.of(EventKind.CREATED) == [(task,)]
    assert store.load_tasks() == []


def test_purge_completed_removes_only_old_completed(engine: TaskEngine, clock) -> None:
    old = engine.add_task("old done")
    fresh = engine.add_task("fresh done")
    pending = engine.add_task("pending")
    assert old and fresh and pending
    engine.toggle_completion(old.id)
    clock.advance(timedelta(days=40))
    engine.toggle_completion(fresh.id)

    removed = engine.purge_completed(30)
    assert [t.id for t in removed] == [old.id]
    assert {t.id for t in engine.tasks()} == {fresh.id, pending.id}


def test_engine_loads_persisted_tasks_on_start(store: RecordStore, engine: TaskEngine, clock) -> None:
    engine.add_task("persist me", due_date=date(2024, 6, 30))
    again = TaskEngine(store, clock=clock)
    assert [t.text for t in again.tasks()] == ["persist me"]
    assert again.tasks()[0].due_date == date(2024, 6, 30)
