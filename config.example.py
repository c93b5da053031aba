# config.example.py

"""
Documentation-only module (safe to commit).

The real configuration is loaded from environment variables (optionally via a local .env file).
Every variable is optional. Use:
- .env (local, gitignored)

User-facing preferences (theme, default sort, auto-delete of completed tasks...) are not
environment variables: they are stored next to the tasks and travel with export/import.

This file exists to make the repo self-documenting even without opening .env.
"""

ENV_VARS = {
    # App / logging
    "TODU_APP_NAME": "App display name (default: todu).",
    "TODU_LOG_LEVEL": "Console logging level (default: INFO). The log file always records DEBUG.",
    # Paths (gitignored)
    "TODU_DATA_DIR": "Local data directory (default: .local/todu). Logs go here too.",
    "TODU_STORE_PATH": "SQLite key/value store path (default: <data_dir>/store.sqlite3).",
    # Storage
    "TODU_STORAGE_QUOTA_BYTES": (
        "Byte budget for stored values (default: 5242880). 0 or negative disables the check."
    ),
    "TODU_SYNC_INTERVAL_SECONDS": (
        "How often to look for writes from other instances (default: 2.0). 0 disables the watcher."
    ),
    # Housekeeping
    "TODU_AUTO_PURGE_ON_START": (
        "Apply the stored autoDeleteCompleted preference at startup (true/false, default: true)."
    ),
}
