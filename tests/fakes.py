# tests/fakes.py

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from todu.core.events import EventKind
from todu.tasks.task_engine import TaskEngine
from todu.tasks.task_models import Task


class FakeClock:
    """
    Deterministic clock: every call returns the current instant, then moves forward by `step`.

    Ticking makes "updated_at changed" observable without sleeping.
    """

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + self.step
        return current

    def advance(self, delta: timedelta) -> None:
        self.now += delta


@dataclass(slots=True)
class EventRecorder:
    """Subscribes to every event kind of an engine and keeps (kind, payload) in order."""

    events: list[tuple[EventKind, tuple[Any, ...]]] = field(default_factory=list)

    def attach(self, engine: TaskEngine) -> EventRecorder:
        for kind in EventKind:
            engine.on(kind, self._make(kind))
        return self

    def _make(self, kind: EventKind) -> Callable[..., None]:
        def _record(*payload: Any) -> None:
            self.events.append((kind, payload))

        return _record

    def of(self, kind: EventKind) -> list[tuple[Any, ...]]:
        return [payload for k, payload in self.events if k == kind]

    def clear(self) -> None:
        self.events.clear()


class FailingSaveStore:
    """
    Wraps a real RecordStore but refuses every task save.

    Used to check the engine keeps optimistic in-memory state on persistence failure.
    """

    def __init__(self, inner: Any) -> None:
        self._inner = inner
        self.tasks_key = inner.tasks_key
        self.save_calls = 0

    def load_tasks(self) -> list[Task]:
        return self._inner.load_tasks()

    def save_tasks(self, tasks: Sequence[Task]) -> bool:
        self.save_calls += 1
        return False

    def generate_id(self) -> str:
        return self._inner.generate_id()

    def subscribe_to_external_change(self, callback):
        return self._inner.subscribe_to_external_change(callback)
