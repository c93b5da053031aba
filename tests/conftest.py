# tests/conftest.py

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from types import SimpleNamespace

import pytest

from todu.cli.bootstrap import create_initial_state
from todu.core.state import AppState
from todu.storage.kv_backend import SQLiteKeyValueBackend
from todu.storage.record_store import RecordStore
from todu.tasks.task_engine import TaskEngine

from .fakes import FakeClock


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC))


@pytest.fixture()
def store_path(tmp_path: Path) -> Path:
    return tmp_path / "store.sqlite3"


@pytest.fixture()
def backend(store_path: Path) -> SQLiteKeyValueBackend:
    return SQLiteKeyValueBackend(store_path)


@pytest.fixture()
def store(backend: SQLiteKeyValueBackend, clock: FakeClock) -> RecordStore:
    return RecordStore(backend, clock=clock)


@pytest.fixture()
def engine(store: RecordStore, clock: FakeClock) -> TaskEngine:
    return TaskEngine(store, clock=clock)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with bootstrap.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="todu-test",
        log_level="DEBUG",
        data_dir=tmp_path / "data",
        store_path=tmp_path / "data" / "store.sqlite3",
        storage_quota_bytes=0,
        sync_interval_seconds=0.01,
        auto_purge_on_start=False,
    )


@pytest.fixture()
def state(settings: SimpleNamespace) -> AppState:
    """AppState wired with a real SQLite store under tmp_path."""
    return create_initial_state(settings=settings)
