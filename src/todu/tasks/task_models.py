# src/todu/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any

DEFAULT_CATEGORY = "General"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Total order used for sorting: high > medium > low."""
        return _PRIORITY_RANK[self]

    @classmethod
    def parse(cls, raw: Any) -> Priority | None:
        """Strict parse for caller input. Unknown values -> None."""
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str):
            return None
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None

    @classmethod
    def from_stored(cls, raw: Any) -> Priority:
        """Lenient parse for persisted data. Missing/unknown -> MEDIUM."""
        return cls.parse(raw) or cls.MEDIUM


_PRIORITY_RANK = {Priority.LOW: 1, Priority.MEDIUM: 2, Priority.HIGH: 3}


def utcnow() -> datetime:
    return datetime.now(UTC)


def format_ts(ts: datetime) -> str:
    """ISO-8601 UTC with millisecond precision and a trailing 'Z'."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_ts(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, str) and raw.strip():
        dt = datetime.fromisoformat(raw.strip())
    else:
        raise ValueError(f"not a timestamp: {raw!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def parse_due_date(raw: Any) -> date | None:
    """
    Accepts None/"" (no due date), a date, a datetime or an ISO string.
    Raises ValueError for anything else.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return None
        if len(s) == 10:
            return date.fromisoformat(s)
        return datetime.fromisoformat(s).date()
    raise ValueError(f"not a due date: {raw!r}")


def clean_category(raw: Any) -> str:
    if not isinstance(raw, str):
        return DEFAULT_CATEGORY
    return raw.strip() or DEFAULT_CATEGORY


@dataclass(frozen=True, slots=True)
class Task:
    """
    One to-do record.

    Instances are immutable; the engine swaps whole records on mutation,
    so a Task handed to a caller never changes under its feet.
    """

    id: str
    text: str
    completed: bool
    due_date: date | None
    priority: Priority
    category: str
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Persisted (camelCase) shape."""
        return {
            "id": self.id,
            "text": self.text,
            "completed": self.completed,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
            "priority": self.priority.value,
            "category": self.category,
            "createdAt": format_ts(self.created_at),
            "updatedAt": format_ts(self.updated_at),
            "completedAt": format_ts(self.completed_at) if self.completed_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """
        Build a Task from its persisted shape.

        Raises ValueError/TypeError when a required field is missing or malformed;
        optional fields fall back to their defaults.
        """
        task_id = data.get("id")
        if not isinstance(task_id, str) or not task_id:
            raise ValueError("task id is required")

        text = data.get("text")
        if not isinstance(text, str) or not text.strip():
            raise ValueError(f"task {task_id} has no text")

        created_at = parse_ts(data.get("createdAt"))
        raw_updated = data.get("updatedAt")
        updated_at = parse_ts(raw_updated) if raw_updated else created_at

        completed = bool(data.get("completed", False))
        raw_completed_at = data.get("completedAt")
        completed_at = parse_ts(raw_completed_at) if (completed and raw_completed_at) else None

        try:
            due_date = parse_due_date(data.get("dueDate"))
        except ValueError:
            due_date = None  # unreadable date -> treat as "no due date"

        return cls(
            id=task_id,
            text=text.strip(),
            completed=completed,
            due_date=due_date,
            priority=Priority.from_stored(data.get("priority")),
            category=clean_category(data.get("category")),
            created_at=created_at,
            updated_at=updated_at,
            completed_at=completed_at,
        )
