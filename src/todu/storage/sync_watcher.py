# src/todu/storage/sync_watcher.py

from __future__ import annotations

"""
Cross-instance sync watcher.

A small polling loop: it asks the record store to look for writes made by
other instances; the store then notifies its subscribers (the task engine
reloads on a tasks change).

The console REPL blocks on input(), so the CLI runs the loop on its own
event loop in a daemon thread (start_sync_in_background).
"""

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)


class ExternalChangePoller(Protocol):
    def poll_external_changes(self) -> int: ...


async def run_sync_watcher(
        store: ExternalChangePoller,
        *,
        interval_seconds: float = 2.0,
) -> None:
    """
    Every interval_seconds, poll the store for external changes.

    Poll failures are logged and the loop keeps going.
    To stop the watcher, cancel the coroutine/task.
    """
    sleep_s = max(0.01, float(interval_seconds))
    logger.info("Sync watcher started (interval=%.2fs)", sleep_s)

    while True:
        try:
            delivered = store.poll_external_changes()
            if delivered:
                logger.debug("Sync watcher delivered %d external change(s)", delivered)
        except Exception:
            logger.exception("poll_external_changes failed")

        await asyncio.sleep(sleep_s)


async def _run_until_stopped(
        store: ExternalChangePoller,
        interval_seconds: float,
        stop_event: asyncio.Event,
) -> None:
    watcher = asyncio.create_task(run_sync_watcher(store, interval_seconds=interval_seconds))
    try:
        await stop_event.wait()
    finally:
        watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await watcher
    logger.info("Sync watcher stopped")


@dataclass(slots=True)
class SyncBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            logger.debug("Sync loop already closed.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_sync_in_background(
        store: ExternalChangePoller,
        *,
        interval_seconds: float,
) -> SyncBackgroundRunner | None:
    """
    Run the watcher in a daemon thread with its own event loop.

    Returns None when interval_seconds <= 0 (sync disabled) or the thread failed to start.
    """
    if interval_seconds <= 0:
        logger.info("Sync watcher disabled.")
        return None

    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(_run_until_stopped(store, interval_seconds, stop_event))
        finally:
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="todu-sync", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Sync thread did not initialize properly.")
        return None

    logger.info("Sync background thread started.")
    return SyncBackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
