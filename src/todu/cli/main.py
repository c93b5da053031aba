# src/todu/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the sync watcher in a background thread (picks up writes from other instances),
- the console REPL in the main thread.
"""

from __future__ import annotations

import locale
import logging

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging
from ..storage.sync_watcher import SyncBackgroundRunner, start_sync_in_background

logger = logging.getLogger(__name__)


def _init_collation() -> bool:
    """Alphabetical and category sorts collate with the user's locale (LC_COLLATE only)."""
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error:
        logger.warning("System locale unavailable; text sorts fall back to code-point order.")
        return False
    return True


def _shutdown(state, sync_runner: SyncBackgroundRunner | None) -> None:
    """Best-effort shutdown (no exceptions should escape)."""
    if sync_runner is not None:
        sync_runner.stop()
        sync_runner.join(timeout=5.0)

    try:
        state.engine.close()
    except Exception:
        logger.debug("Engine close failed.", exc_info=True)

    # The backend uses short-lived sqlite connections per call; close() is a no-op hook.
    try:
        state.backend.close()
    except Exception:
        logger.debug("Backend close failed.", exc_info=True)


def main() -> None:
    settings = get_settings()

    # choose console log level from settings.log_level
    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)

    setup_logging(log_dir=settings.data_dir, console_level=console_level)

    logger.info("Starting %s...", settings.app_name)
    _init_collation()

    state = create_initial_state(settings=settings)

    if not state.store.is_available():
        logger.warning("Storage at %s is not writable; changes will not persist.", settings.store_path)

    sync_runner = start_sync_in_background(state.store, interval_seconds=settings.sync_interval_seconds)

    try:
        run_console_loop(state)
    finally:
        _shutdown(state, sync_runner)
        logger.info("Bye.")


if __name__ == "__main__":
    main()
