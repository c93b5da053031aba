# tests/test_bootstrap.py

from __future__ import annotations

import json

from todu.cli.bootstrap import create_initial_state, read_import
from todu.storage.kv_backend import SQLiteKeyValueBackend
from todu.storage.record_store import TASKS_KEY, RecordStore


def _seed(settings, *, auto_delete: bool) -> None:
    settings.store_path.parent.mkdir(parents=True, exist_ok=True)
    backend = SQLiteKeyValueBackend(settings.store_path)
    backend.set(
        TASKS_KEY,
        json.dumps(
            {
                "tasks": [
                    {
                        "id": "old",
                        "text": "finished long ago",
                        "completed": True,
                        "createdAt": "2020-01-01T00:00:00.000Z",
                        "completedAt": "2020-01-02T00:00:00.000Z",
                    },
                    {"id": "open", "text": "still open", "createdAt": "2020-01-01T00:00:00.000Z"},
                ],
                "version": "2.0",
            }
        ),
    )
    RecordStore(backend).save_settings({"autoDeleteCompleted": auto_delete, "autoDeleteCompletedDays": 7})


def test_auto_purge_on_start_honours_stored_preference(settings) -> None:
    _seed(settings, auto_delete=True)
    settings.auto_purge_on_start = True

    state = create_initial_state(settings=settings)
    assert [t.id for t in state.engine.tasks()] == ["open"]
    assert [t.id for t in state.store.load_tasks()] == ["open"]


def test_no_purge_when_preference_is_off(settings) -> None:
    _seed(settings, auto_delete=False)
    settings.auto_purge_on_start = True

    state = create_initial_state(settings=settings)
    assert len(state.engine) == 2


def test_read_import_rejects_non_object(state, tmp_path) -> None:
    path = tmp_path / "list.json"
    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert read_import(state, path) is False

    path.write_text("{oops", encoding="utf-8")
    assert read_import(state, path) is False
