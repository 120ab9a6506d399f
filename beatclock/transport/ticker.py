"""Periodic tick drivers for the transport clock."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Callable

logger = logging.getLogger(__name__)


def _guarded(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        logger.exception("Tick callback failed")


class ThreadTicker:
    """Runs the callback on a daemon thread every interval."""

    def __init__(self) -> None:
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self, callback: Callable[[], None], interval_seconds: float) -> None:
        self.stop()
        self._stop_event = threading.Event()
        stop_event = self._stop_event

        def _loop() -> None:
            while not stop_event.wait(interval_seconds):
                _guarded(callback)

        self._thread = threading.Thread(target=_loop, name="transport-ticker", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        thread, self._thread = self._thread, None
        # A callback that stops the clock runs on this thread; it cannot join itself.
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()


class AsyncioTicker:
    """Runs the callback from an asyncio task on the current event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._task: asyncio.Task | None = None

    def start(self, callback: Callable[[], None], interval_seconds: float) -> None:
        self.stop()
        loop = self._loop or asyncio.get_running_loop()

        async def _loop() -> None:
            while True:
                await asyncio.sleep(interval_seconds)
                _guarded(callback)

        self._task = loop.create_task(_loop())

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


class ManualTicker:
    """Ticks only when told to. For tests and offline rendering."""

    def __init__(self) -> None:
        self._callback: Callable[[], None] | None = None
        self.interval_seconds: float | None = None

    def start(self, callback: Callable[[], None], interval_seconds: float) -> None:
        self._callback = callback
        self.interval_seconds = interval_seconds

    def stop(self) -> None:
        self._callback = None

    def fire(self) -> None:
        if self._callback is not None:
            self._callback()

    @property
    def running(self) -> bool:
        return self._callback is not None
