# src/todu/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The engine depends on Protocols instead of concrete implementations.
This keeps the storage backend swappable and makes testing easier.
"""

from collections.abc import Callable, Sequence
from typing import Any, Protocol

ExternalChangeCallback = Callable[[str, Any, Any], None]
# (key, old_value, new_value); values are decoded JSON or None.


class KeyChangeLike(Protocol):
    key: str
    value: str | None
    revision: int
    writer: str


class KeyValueBackend(Protocol):
    """
    Raw string key/value storage shared by every instance opened on the same location.

    Writes may raise StorageError (e.g. StorageQuotaExceeded); the record store
    turns those into boolean results.
    """

    instance_id: str

    def get(self, key: str) -> str | None: ...
    def set(self, key: str, value: str) -> None: ...
    def remove(self, key: str) -> None: ...
    def keys(self) -> list[str]: ...
    def size_of(self, key: str) -> int: ...

    # Cross-instance change feed
    def current_revision(self) -> int: ...
    def changes_since(self, revision: int) -> Sequence[KeyChangeLike]: ...


class TaskRepo(Protocol):
    """What the task engine needs from the record store."""

    tasks_key: str

    def load_tasks(self) -> list[Any]: ...
    def save_tasks(self, tasks: Sequence[Any]) -> bool: ...
    def generate_id(self) -> str: ...
    def subscribe_to_external_change(self, callback: ExternalChangeCallback) -> Callable[[], None]: ...
