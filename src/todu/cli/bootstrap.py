# src/todu/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires backend -> record store -> task engine into AppState,
- applies stored housekeeping preferences (auto-delete of old completed tasks).
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from ..config import get_settings
from ..core.state import AppState
from ..storage.kv_backend import SQLiteKeyValueBackend
from ..storage.record_store import RecordStore
from ..tasks.task_engine import TaskEngine

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.store_path.parent.mkdir(parents=True, exist_ok=True)


def apply_auto_delete(state: AppState) -> int:
    """Purge completed tasks per the stored autoDeleteCompleted/autoDeleteCompletedDays preferences."""
    prefs = state.store.load_settings()
    if not prefs.get("autoDeleteCompleted"):
        return 0
    try:
        days = int(prefs.get("autoDeleteCompletedDays", 30))
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid autoDeleteCompletedDays=%r", prefs.get("autoDeleteCompletedDays"))
        return 0
    return len(state.engine.purge_completed(days))


def create_initial_state(*, settings=None) -> AppState:
    """
    Create AppState from the provided settings.

    Keeping settings injectable makes the app easier to test and avoids hidden global config reads.
    If settings is None, falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    backend = SQLiteKeyValueBackend(settings.store_path, quota_bytes=settings.storage_quota_bytes)
    store = RecordStore(backend)
    engine = TaskEngine(store)

    state = AppState(settings=settings, backend=backend, store=store, engine=engine)

    if getattr(settings, "auto_purge_on_start", False):
        purged = apply_auto_delete(state)
        if purged:
            logger.info("Auto-deleted %d old completed tasks on start", purged)

    return state


def write_export(state: AppState, path: str | Path) -> Path:
    """Write the export document to `path` (atomic replace). Raises OSError on failure."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(state.store.export_data(), ensure_ascii=False, indent=2), "utf-8")
    os.replace(tmp, path)
    logger.info("Exported data to %s", path)
    return path


def read_import(state: AppState, path: str | Path) -> bool:
    """
    Import an export document from `path` and reload the engine.

    Returns False when the file is missing/unreadable or not a JSON object.
    """
    path = Path(path)
    try:
        data: Any = json.loads(path.read_text("utf-8"))
    except (OSError, ValueError):
        logger.exception("Failed to read import file %s", path)
        return False

    ok = state.store.import_data(data)
    if ok:
        # Local writes don't come back as external changes; refresh explicitly.
        state.engine.reload()
    return ok
