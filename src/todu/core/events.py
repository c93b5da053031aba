# src/todu/core/events.py

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

Subscriber = Callable[..., Any]


class EventKind(StrEnum):
    """
    Engine notifications and their positional payloads:

    CREATED            (task)
    UPDATED            (new_task, old_task)
    DELETED            (task)
    COMPLETION_CHANGED (task, was_completed)
    REORDERED          (tasks)
    VIEW_COMPUTED      (results)        every query()
    VIEW_INVALIDATED   (tasks)          collection reloaded from storage
    SAVE_FAILED        (tasks)          store refused a write; in-memory state kept
    """

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    COMPLETION_CHANGED = "completion_changed"
    REORDERED = "reordered"
    VIEW_COMPUTED = "view_computed"
    VIEW_INVALIDATED = "view_invalidated"
    SAVE_FAILED = "save_failed"


class EventBus:
    """One subscriber list per event kind, delivered in subscription order."""

    def __init__(self) -> None:
        self._subscribers: dict[EventKind, list[Subscriber]] = {kind: [] for kind in EventKind}

    def subscribe(self, kind: EventKind | str, callback: Subscriber) -> Callable[[], None]:
        """Register callback for kind. Returns a function that unsubscribes it."""
        event = EventKind(kind)
        self._subscribers[event].append(callback)

        def _unsubscribe() -> None:
            self.unsubscribe(event, callback)

        return _unsubscribe

    def unsubscribe(self, kind: EventKind | str, callback: Subscriber) -> bool:
        subs = self._subscribers[EventKind(kind)]
        if callback in subs:
            subs.remove(callback)
            return True
        return False

    def subscriber_count(self, kind: EventKind | str) -> int:
        return len(self._subscribers[EventKind(kind)])

    def emit(self, kind: EventKind, *payload: Any) -> None:
        # Copy: a subscriber may unsubscribe itself while we iterate.
        for callback in list(self._subscribers[kind]):
            try:
                callback(*payload)
            except Exception:
                logger.exception("Subscriber %r failed on %s", callback, kind.value)
