"""
Storage subsystem.

Components:
- kv_backend.py: SQLite-file key/value backend with a cross-instance change feed
- record_store.py: tasks/settings/categories/theme persistence on top of a backend
- sync_watcher.py: asyncio loop polling the store for external changes (+ background thread runner)
"""
