# src/todu/core/state.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..storage.kv_backend import SQLiteKeyValueBackend
from ..storage.record_store import RecordStore
from ..tasks.task_engine import TaskEngine


@dataclass
class AppState:
    # Store Settings on the state for easy access in other modules later.
    settings: Any

    backend: SQLiteKeyValueBackend
    store: RecordStore
    engine: TaskEngine

    # Last filter used by /list, so a bare "/list" repeats it.
    last_filters: dict[str, str] = field(default_factory=dict)
    # Row number shown by /list -> task id (commands accept either).
    last_listing: list[str] = field(default_factory=list)
