# src/todu/storage/kv_backend.py

from __future__ import annotations

import contextlib
import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """The backend could not complete a read or write."""


class StorageQuotaExceeded(StorageError):
    """A write would push the stored values over the configured byte quota."""


@dataclass(frozen=True, slots=True)
class KeyChange:
    key: str
    value: str | None  # None = key removed
    revision: int
    writer: str


class SQLiteKeyValueBackend:
    """
    String key/value store in a single SQLite file.

    Several instances (processes, or objects in one process) may open the same
    file; that is how "another tab" is modelled. Every write:
    - bumps a file-wide monotonic revision
    - records the writer's instance_id
    Removals keep a tombstone row (value NULL) so other instances can observe them
    through changes_since().

    Thread-safety:
    - each method opens its own SQLite connection
    """

    def __init__(self, db_path: str | Path = "store.sqlite3", *, quota_bytes: int | None = None) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._quota_bytes = quota_bytes if quota_bytes and quota_bytes > 0 else None
        self.instance_id = uuid.uuid4().hex
        self._ensure_schema()
        logger.info(
            "KeyValueBackend ready db=%s instance=%s quota=%s",
            self._db_path,
            self.instance_id,
            self._quota_bytes,
        )

    @property
    def quota_bytes(self) -> int | None:
        return self._quota_bytes

    def close(self) -> None:
        """Compatibility hook for shutdown (no persistent connections to close)."""
        return

    # ---- low-level helpers ----

    def _get_conn(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self._db_path), timeout=30.0)
        except sqlite3.Error as e:
            raise StorageError(f"cannot open {self._db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        self._configure_conn(conn)
        return conn

    @staticmethod
    def _configure_conn(conn: sqlite3.Connection) -> None:
        with contextlib.suppress(Exception):
            conn.execute("PRAGMA journal_mode=WAL")

    def _ensure_schema(self) -> None:
        conn = self._get_conn()
        try:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS kv (
                    key        TEXT PRIMARY KEY,
                    value      TEXT,
                    revision   INTEGER NOT NULL,
                    writer     TEXT NOT NULL DEFAULT '',
                    updated_at REAL NOT NULL
                )
                """
            )
            cur.execute("CREATE INDEX IF NOT EXISTS idx_kv_revision ON kv(revision)")
            conn.commit()
        finally:
            conn.close()

    def _write(self, key: str, value: str | None) -> None:
        conn = self._get_conn()
        try:
            if value is not None and self._quota_bytes is not None:
                cur = conn.execute(
                    """
                    SELECT COALESCE(SUM(LENGTH(CAST(value AS BLOB))), 0)
                    FROM kv
                    WHERE key != ? AND value IS NOT NULL
                    """,
                    (key,),
                )
                (used,) = cur.fetchone()
                needed = int(used) + len(value.encode("utf-8"))
                if needed > self._quota_bytes:
                    raise StorageQuotaExceeded(
                        f"writing {key!r} needs {needed} bytes, quota is {self._quota_bytes}"
                    )

            # Single statement: the revision bump is atomic across processes.
            conn.execute(
                """
                INSERT INTO kv(key, value, revision, writer, updated_at)
                VALUES (?, ?, (SELECT COALESCE(MAX(revision), 0) + 1 FROM kv), ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    revision = excluded.revision,
                    writer = excluded.writer,
                    updated_at = excluded.updated_at
                """,
                (key, value, self.instance_id, time.time()),
            )
            conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"write of {key!r} failed: {e}") from e
        finally:
            conn.close()

    # ---- public API ----

    def get(self, key: str) -> str | None:
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cur.fetchone()
            return row["value"] if row else None
        except sqlite3.Error as e:
            raise StorageError(f"read of {key!r} failed: {e}") from e
        finally:
            conn.close()

    def set(self, key: str, value: str) -> None:
        self._write(key, value)
        logger.debug("kv set key=%s bytes=%d", key, len(value.encode("utf-8")))

    def remove(self, key: str) -> None:
        if self.get(key) is None:
            return
        self._write(key, None)
        logger.debug("kv remove key=%s", key)

    def keys(self) -> list[str]:
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT key FROM kv WHERE value IS NOT NULL ORDER BY key")
            return [str(r["key"]) for r in cur.fetchall()]
        except sqlite3.Error as e:
            raise StorageError(f"listing keys failed: {e}") from e
        finally:
            conn.close()

    def size_of(self, key: str) -> int:
        """Stored size of one value in UTF-8 bytes (0 if absent)."""
        value = self.get(key)
        return len(value.encode("utf-8")) if value is not None else 0

    def current_revision(self) -> int:
        conn = self._get_conn()
        try:
            cur = conn.execute("SELECT COALESCE(MAX(revision), 0) FROM kv")
            (rev,) = cur.fetchone()
            return int(rev)
        except sqlite3.Error as e:
            raise StorageError(f"reading current revision failed: {e}") from e
        finally:
            conn.close()

    def changes_since(self, revision: int) -> list[KeyChange]:
        """All writes (by any instance) with a revision greater than `revision`, oldest first."""
        conn = self._get_conn()
        try:
            cur = conn.execute(
                """
                SELECT key, value, revision, writer
                FROM kv
                WHERE revision > ?
                ORDER BY revision ASC
                """,
                (int(revision),),
            )
            return [
                KeyChange(
                    key=str(r["key"]),
                    value=r["value"],
                    revision=int(r["revision"]),
                    writer=str(r["writer"] or ""),
                )
                for r in cur.fetchall()
            ]
        except sqlite3.Error as e:
            raise StorageError(f"reading changes since revision {revision} failed: {e}") from e
        finally:
            conn.close()
