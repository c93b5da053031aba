# src/todu/storage/record_store.py

from __future__ import annotations

import json
import logging
import secrets
import string
import threading
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any

from ..core.ports import ExternalChangeCallback, KeyValueBackend
from ..tasks.task_models import DEFAULT_CATEGORY, Priority, Task, format_ts, utcnow
from .kv_backend import StorageError

logger = logging.getLogger(__name__)

TASKS_KEY = "todo-tasks-v2"
SETTINGS_KEY = "todo-settings-v2"
DARK_MODE_KEY = "todo-dark-mode"
CATEGORIES_KEY = "todo-categories"
STORAGE_KEYS = (TASKS_KEY, SETTINGS_KEY, DARK_MODE_KEY, CATEGORIES_KEY)

FORMAT_VERSION = "2.0"

DEFAULT_SETTINGS: dict[str, Any] = {
    "theme": "system",  # light | dark | system
    "defaultPriority": "medium",
    "defaultCategory": DEFAULT_CATEGORY,
    "sortBy": "createdAt",  # createdAt | dueDate | priority | alphabetical | category
    "sortOrder": "desc",  # asc | desc
    "showCompletedTasks": True,
    "autoDeleteCompleted": False,
    "autoDeleteCompletedDays": 30,
    "enableNotifications": True,
    "enableSounds": False,
    "compactView": False,
}

DEFAULT_CATEGORIES = ("General", "Work", "Personal")

_PROBE_KEY = "storage-test"
_PROBE_CHUNK = "0" * 1024
_PROBE_MAX_KB = 5 * 1024
_AVAILABILITY_KEY = "__storage_test__"

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(n: int) -> str:
    if n <= 0:
        return "0"
    out = []
    while n:
        n, r = divmod(n, 36)
        out.append(_BASE36[r])
    return "".join(reversed(out))


# ---- payload sniffing ----


@dataclass(frozen=True, slots=True)
class CurrentEnvelope:
    """{ tasks: [...], lastModified, version }"""

    records: list[Any]
    version: str | None
    last_modified: str | None


@dataclass(frozen=True, slots=True)
class LegacyArray:
    """Bare list of task-like objects, possibly without ids/timestamps."""

    records: list[Any]


TasksPayload = CurrentEnvelope | LegacyArray


def sniff_tasks_payload(data: Any) -> TasksPayload:
    """Classify decoded JSON stored under the tasks key. Raises ValueError for unknown shapes."""
    if isinstance(data, list):
        return LegacyArray(records=data)
    if isinstance(data, dict):
        records = data.get("tasks")
        if records is None:
            records = []
        if not isinstance(records, list):
            raise ValueError(f"tasks envelope has non-list 'tasks' ({type(records).__name__})")
        version = data.get("version")
        last_modified = data.get("lastModified")
        return CurrentEnvelope(
            records=records,
            version=str(version) if version is not None else None,
            last_modified=str(last_modified) if last_modified is not None else None,
        )
    raise ValueError(f"unrecognized tasks payload ({type(data).__name__})")


@dataclass(frozen=True, slots=True)
class StorageInfo:
    tasks_size: int
    settings_size: int
    dark_mode_size: int
    categories_size: int
    total_size: int
    available_size: int
    usage_percentage: float


class RecordStore:
    """
    Persistence adapter between the task engine and a raw key/value backend.

    Every save reports success as a bool and never raises; every load falls
    back to an empty/default value when stored data is missing or unreadable.
    """

    tasks_key = TASKS_KEY

    def __init__(self, backend: KeyValueBackend, *, clock: Callable[[], Any] = utcnow) -> None:
        self._backend = backend
        self._clock = clock
        self._subscribers: list[ExternalChangeCallback] = []
        # The console and the background watcher may both poll.
        self._poll_lock = threading.Lock()

        # Raw values as this instance last saw them; old_value for change callbacks.
        self._known: dict[str, str | None] = {}
        self._last_revision = 0
        try:
            self._last_revision = backend.current_revision()
            for key in STORAGE_KEYS:
                self._known[key] = backend.get(key)
        except StorageError:
            logger.exception("RecordStore could not read initial backend state")

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    # ---- low-level helpers ----

    def _read_json(self, key: str) -> Any:
        """Decoded JSON for key, or None when absent. Raises on unreadable data."""
        raw = self._backend.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    def _write_json(self, key: str, value: Any) -> bool:
        try:
            raw = json.dumps(value, ensure_ascii=False)
            self._backend.set(key, raw)
        except (StorageError, TypeError, ValueError):
            logger.exception("Failed to save key=%s", key)
            return False
        self._known[key] = raw
        return True

    def _remove(self, key: str) -> bool:
        try:
            self._backend.remove(key)
        except StorageError:
            logger.exception("Failed to remove key=%s", key)
            return False
        self._known[key] = None
        return True

    @staticmethod
    def _decode_lenient(raw: str | None) -> Any:
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            return raw

    def _decode_records(self, records: Iterable[Any]) -> tuple[list[Task], int]:
        """
        Decode stored records, skipping malformed ones.

        Ids must be unique: a repeated id gets a fresh one. Returns (tasks, reassigned).
        """
        out: list[Task] = []
        seen: set[str] = set()
        reassigned = 0
        for item in records:
            if not isinstance(item, dict):
                logger.warning("Skipping non-object task record: %r", item)
                continue
            try:
                task = Task.from_dict(item)
            except (ValueError, TypeError):
                logger.warning("Skipping malformed task record id=%r", item.get("id"), exc_info=True)
                continue
            if task.id in seen:
                new_id = self.generate_id()
                logger.warning("Duplicate task id=%s; reassigned to %s", task.id, new_id)
                task = replace(task, id=new_id)
                reassigned += 1
            seen.add(task.id)
            out.append(task)
        return out, reassigned

    def _upgrade_records(self, records: Iterable[Any]) -> list[Task]:
        """Fill in what pre-envelope records lack: id, timestamps, category, priority."""
        now = format_ts(self._clock())
        upgraded: list[dict[str, Any]] = []
        for item in records:
            if not isinstance(item, dict):
                logger.warning("Skipping non-object legacy record: %r", item)
                continue
            created_at = item.get("createdAt") or now
            upgraded.append(
                {
                    **item,
                    "id": item.get("id") or self.generate_id(),
                    "createdAt": created_at,
                    "updatedAt": item.get("updatedAt") or created_at,
                    "category": item.get("category") or DEFAULT_CATEGORY,
                    "priority": item.get("priority") or Priority.MEDIUM.value,
                }
            )
        tasks, _ = self._decode_records(upgraded)
        return tasks

    # ---- tasks ----

    def save_tasks(self, tasks: Sequence[Task]) -> bool:
        envelope = {
            "tasks": [t.to_dict() for t in tasks],
            "lastModified": format_ts(self._clock()),
            "version": FORMAT_VERSION,
        }
        ok = self._write_json(TASKS_KEY, envelope)
        if ok:
            logger.debug("Saved %d tasks", len(tasks))
        return ok

    def load_tasks(self) -> list[Task]:
        try:
            data = self._read_json(TASKS_KEY)
            if data is None:
                return []
            payload = sniff_tasks_payload(data)
        except (StorageError, ValueError):
            logger.exception("Failed to load tasks; starting with an empty list")
            return []

        match payload:
            case LegacyArray(records=records):
                tasks = self._upgrade_records(records)
                logger.info("Migrated %d legacy task records to format %s", len(tasks), FORMAT_VERSION)
                self.save_tasks(tasks)
                return tasks
            case CurrentEnvelope(records=records):
                tasks, reassigned = self._decode_records(records)
                if reassigned:
                    self.save_tasks(tasks)
                return tasks

    # ---- settings ----

    def save_settings(self, settings: dict[str, Any]) -> bool:
        return self._write_json(SETTINGS_KEY, {**settings, "lastModified": format_ts(self._clock())})

    def load_settings(self) -> dict[str, Any]:
        try:
            saved = self._read_json(SETTINGS_KEY)
        except (StorageError, ValueError):
            logger.exception("Failed to load settings; using defaults")
            return dict(DEFAULT_SETTINGS)
        if not isinstance(saved, dict):
            return dict(DEFAULT_SETTINGS)
        saved.pop("lastModified", None)
        return {**DEFAULT_SETTINGS, **saved}

    # ---- dark mode ----

    def save_dark_mode(self, is_dark_mode: bool) -> bool:
        return self._write_json(DARK_MODE_KEY, bool(is_dark_mode))

    def load_dark_mode(self) -> bool | None:
        """True/False for an explicit choice; None means "follow the system"."""
        try:
            value = self._read_json(DARK_MODE_KEY)
        except (StorageError, ValueError):
            logger.exception("Failed to load dark mode preference")
            return None
        return value if isinstance(value, bool) else None

    # ---- categories ----

    @staticmethod
    def _clean_categories(categories: Iterable[Any]) -> list[str]:
        seen: dict[str, None] = {}
        for c in categories:
            if isinstance(c, str) and c.strip():
                seen.setdefault(c.strip(), None)
        return list(seen)

    def save_categories(self, categories: Iterable[str]) -> bool:
        return self._write_json(
            CATEGORIES_KEY,
            {
                "categories": self._clean_categories(categories),
                "lastModified": format_ts(self._clock()),
            },
        )

    def load_categories(self) -> list[str]:
        try:
            data = self._read_json(CATEGORIES_KEY)
        except (StorageError, ValueError):
            logger.exception("Failed to load categories; using defaults")
            return list(DEFAULT_CATEGORIES)
        if data is None:
            return list(DEFAULT_CATEGORIES)
        if isinstance(data, dict) and isinstance(data.get("categories"), list):
            return self._clean_categories(data["categories"])
        if isinstance(data, list):
            return self._clean_categories(data)
        logger.warning("Unrecognized categories payload; using defaults")
        return list(DEFAULT_CATEGORIES)

    # ---- export / import ----

    def export_data(self) -> dict[str, Any]:
        return {
            "version": FORMAT_VERSION,
            "exportDate": format_ts(self._clock()),
            "tasks": [t.to_dict() for t in self.load_tasks()],
            "settings": self.load_settings(),
            "categories": self.load_categories(),
            "darkMode": self.load_dark_mode(),
        }

    def import_data(self, data: Any) -> bool:
        """
        Apply an export document field by field.

        Each field is validated on its own; malformed fields are skipped, not fatal.
        Returns False only if `data` is not a mapping at all.
        """
        if not isinstance(data, dict):
            logger.warning("Import rejected: document is %s, not an object", type(data).__name__)
            return False

        applied: list[str] = []
        skipped: list[str] = []

        tasks = data.get("tasks")
        if isinstance(tasks, list):
            if self.save_tasks(self._upgrade_records(tasks)):
                applied.append("tasks")
        elif "tasks" in data:
            skipped.append("tasks")

        settings = data.get("settings")
        if isinstance(settings, dict):
            if self.save_settings(settings):
                applied.append("settings")
        elif "settings" in data:
            skipped.append("settings")

        categories = data.get("categories")
        if isinstance(categories, list) and self._clean_categories(categories):
            if self.save_categories(categories):
                applied.append("categories")
        elif "categories" in data:
            skipped.append("categories")

        if "darkMode" in data:
            dark_mode = data["darkMode"]
            if isinstance(dark_mode, bool):
                if self.save_dark_mode(dark_mode):
                    applied.append("darkMode")
            elif dark_mode is None:
                if self._remove(DARK_MODE_KEY):
                    applied.append("darkMode")
            else:
                skipped.append("darkMode")

        logger.info("Import applied=%s skipped=%s", applied, skipped)
        return True

    # ---- storage diagnostics ----

    def _probe_available_bytes(self) -> int:
        """Binary search (1 KiB steps, up to 5 MiB) for the largest value the backend accepts."""
        low, high = 0, _PROBE_MAX_KB
        available = 0
        while low <= high:
            mid = (low + high) // 2
            try:
                self._backend.set(_PROBE_KEY, _PROBE_CHUNK * mid)
                self._backend.remove(_PROBE_KEY)
            except StorageError:
                high = mid - 1
                continue
            available = mid * 1024
            low = mid + 1
        return available

    def storage_info(self) -> StorageInfo | None:
        try:
            tasks_size = self._backend.size_of(TASKS_KEY)
            settings_size = self._backend.size_of(SETTINGS_KEY)
            dark_mode_size = self._backend.size_of(DARK_MODE_KEY)
            categories_size = self._backend.size_of(CATEGORIES_KEY)
            available = self._probe_available_bytes()
        except StorageError:
            logger.exception("Failed to compute storage info")
            return None

        total = tasks_size + settings_size + dark_mode_size + categories_size
        usage = (total / (total + available)) * 100 if total > 0 else 0.0
        return StorageInfo(
            tasks_size=tasks_size,
            settings_size=settings_size,
            dark_mode_size=dark_mode_size,
            categories_size=categories_size,
            total_size=total,
            available_size=available,
            usage_percentage=usage,
        )

    def is_available(self) -> bool:
        try:
            self._backend.set(_AVAILABILITY_KEY, _AVAILABILITY_KEY)
            self._backend.remove(_AVAILABILITY_KEY)
        except StorageError:
            return False
        return True

    def clear_all(self) -> bool:
        ok = True
        for key in STORAGE_KEYS:
            ok = self._remove(key) and ok
        if ok:
            logger.info("Cleared all stored data")
        return ok

    # ---- ids ----

    @staticmethod
    def generate_id() -> str:
        """Millisecond timestamp (base36) + 64 random bits."""
        return _to_base36(int(time.time() * 1000)) + secrets.token_hex(8)

    # ---- cross-instance sync ----

    def subscribe_to_external_change(self, callback: ExternalChangeCallback) -> Callable[[], None]:
        """
        Register callback(key, old_value, new_value) for changes another instance
        makes to one of the known keys. Returns an unsubscribe function.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def poll_external_changes(self) -> int:
        """
        Look for writes made by other instances since the last poll and notify subscribers.

        Returns the number of external changes delivered.
        """
        with self._poll_lock:
            return self._deliver_external_changes()

    def _deliver_external_changes(self) -> int:
        try:
            changes = self._backend.changes_since(self._last_revision)
        except StorageError:
            logger.exception("Failed to poll for external changes")
            return 0

        delivered = 0
        for change in changes:
            self._last_revision = max(self._last_revision, change.revision)
            if change.key not in STORAGE_KEYS:
                continue

            old_raw = self._known.get(change.key)
            self._known[change.key] = change.value
            if change.writer == self._backend.instance_id or old_raw == change.value:
                continue

            logger.info("External change detected key=%s revision=%s", change.key, change.revision)
            old_value = self._decode_lenient(old_raw)
            new_value = self._decode_lenient(change.value)
            for callback in list(self._subscribers):
                try:
                    callback(change.key, old_value, new_value)
                except Exception:
                    logger.exception("External change subscriber failed key=%s", change.key)
            delivered += 1
        return delivered
