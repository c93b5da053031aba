# src/todu/connectors/console_connector.py

from __future__ import annotations

import logging
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.events import EventKind
from ..core.state import AppState
from ..tasks.task_models import Task

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}")


def _attach_notices(state: AppState) -> list:
    """Console feedback for things the user did not directly ask for."""

    def on_invalidated(tasks: tuple[Task, ...]) -> None:
        _print_ts(f"[SYNC] Task list reloaded from storage; {len(tasks)} task(s).")

    def on_save_failed(tasks: tuple[Task, ...]) -> None:
        _print_ts("[WARN] Could not save tasks (storage full or unavailable). Changes are kept in memory only.")

    return [
        state.engine.on(EventKind.VIEW_INVALIDATED, on_invalidated),
        state.engine.on(EventKind.SAVE_FAILED, on_save_failed),
    ]


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started (tasks=%d).", len(state.engine))
    _print_ts("[CONSOLE] Use /help for commands. Use /exit to quit.\n")

    unsubscribers = _attach_notices(state)

    def emit(text: str) -> None:
        # Immediate user-visible feedback for long operations (e.g. storage probe)
        print(f"[{_ts_local()}] {text}", flush=True)

    try:
        while True:
            try:
                user_input = input("todu> ").strip()
            except EOFError:
                logger.info("Console EOF received, exiting.")
                break
            except KeyboardInterrupt:
                logger.info("Console KeyboardInterrupt, exiting.")
                print()
                break

            # Pick up writes from other instances before acting on possibly stale state.
            state.store.poll_external_changes()

            if not user_input:
                continue

            if user_input.lower() in ("/exit", "/quit"):
                logger.info("Console exit command received.")
                break

            if not user_input.startswith("/"):
                # Bare text is the most common action: add it as a task.
                user_input = "/add " + user_input

            try:
                cmd_response = command_registry.handle(state, user_input, emit=emit)
            except Exception:
                logger.exception("Command handler crashed.")
                cmd_response = "Internal error while handling a command."

            if cmd_response is not None:
                print(cmd_response)
    finally:
        for unsubscribe in unsubscribers:
            unsubscribe()

    logger.info("Console connector finished.")
