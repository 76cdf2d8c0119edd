"""
BufferedFlusher - coalesces bursts of arrivals into periodic renders.

A recurring task, independent of ingestion: every `interval` seconds it
flushes if something new arrived since the last flush and at least
`min_interval` seconds have passed since it. Stopping is synchronous so
a torn-down view never receives a late flush.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class BufferedFlusher:
    """
    Periodic flush with a minimum gap between flushes.

    Usage:
        flusher = BufferedFlusher(
            flush=lambda: render(store.get_events(view_id)),
            interval=0.5,
            min_interval=0.5,
        )
        flusher.start()
        flusher.mark_pending()   # on every accepted event
        ...
        flusher.stop()
    """

    def __init__(
        self,
        flush: Callable[[], None],
        interval: float = 0.5,
        min_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        name: str = "buffer_flush",
    ):
        self._flush = flush
        self._interval = interval
        self._min_interval = min_interval
        self._clock = clock
        self._name = name

        self._pending = 0
        self._last_flush: Optional[float] = None
        self._flush_count = 0
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        """Arrivals since the last flush."""
        return self._pending

    @property
    def flush_count(self) -> int:
        return self._flush_count

    def mark_pending(self, count: int = 1) -> None:
        self._pending += count

    def start(self) -> None:
        if self.is_running:
            logger.warning(f"{self._name} already running")
            return
        self._task = asyncio.get_running_loop().create_task(
            self._loop(),
            name=self._name,
        )

    def stop(self) -> None:
        """Cancel the recurring task. Safe to call when not running."""
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    def flush_if_due(self) -> bool:
        """
        Flush now if there is something pending and the gap allows it.

        Returns:
            True if a flush happened
        """
        if self._pending <= 0:
            return False

        now = self._clock()
        if self._last_flush is not None and now - self._last_flush < self._min_interval:
            return False

        self._pending = 0
        self._last_flush = now
        self._flush_count += 1
        try:
            self._flush()
        except Exception as e:
            logger.error(f"Error in {self._name}: {e}")
        return True

    async def _loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                self.flush_if_due()
        except asyncio.CancelledError:
            logger.debug(f"{self._name} cancelled")
            raise
