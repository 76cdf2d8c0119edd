"""
Reference resolution cache with single-flight fetches.

Bursty batches can ask for the same event's reference dozens of times in
one tick. Concurrent get_or_fetch() calls for an id share one in-flight
task; a resolved (non-None) reference is cached, a failure resolves to
None and is not retried automatically.

Also holds the rendered-artifact cache (one rendered component per
reference id) used by the rendering layer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from zapview.ingestion.models import ReceiptEvent

from .bounded import BoundedCache

logger = logging.getLogger(__name__)

FetchFn = Callable[[], Awaitable[Optional[ReceiptEvent]]]


class ReferenceCache:
    """
    Memoizes asynchronous reference lookups per event id.

    Usage:
        cache = ReferenceCache(max_size=1000)
        reference = await cache.get_or_fetch(event.id, lambda: fetch(event))
    """

    def __init__(self, max_size: int = 1000):
        self._resolved: BoundedCache[str, ReceiptEvent] = BoundedCache(max_size)
        self._components: BoundedCache[str, Any] = BoundedCache(max_size)
        self._pending: dict[str, asyncio.Task] = {}

    @property
    def pending_count(self) -> int:
        """Number of fetches currently in flight."""
        return len(self._pending)

    def get(self, event_id: str) -> Optional[ReceiptEvent]:
        return self._resolved.get(event_id, None)

    def set(self, event_id: str, reference: ReceiptEvent) -> ReceiptEvent:
        return self._resolved.set(event_id, reference)

    def is_pending(self, event_id: str) -> bool:
        return event_id in self._pending

    async def get_or_fetch(self, event_id: str, fetch_fn: FetchFn) -> Optional[ReceiptEvent]:
        """
        Return the cached reference, join an in-flight fetch, or start one.

        Never raises for fetch failures; those resolve to None.
        """
        cached = self._resolved.get(event_id, None)
        if cached is not None:
            return cached

        task = self._pending.get(event_id)
        if task is None:
            task = asyncio.ensure_future(self._run_fetch(event_id, fetch_fn))
            self._pending[event_id] = task

        # Shielded so one cancelled caller does not cancel the shared fetch
        return await asyncio.shield(task)

    async def _run_fetch(self, event_id: str, fetch_fn: FetchFn) -> Optional[ReceiptEvent]:
        current = asyncio.current_task()
        try:
            reference = await fetch_fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Reference fetch failed for {event_id[:12]}: {e}")
            return None
        finally:
            if self._pending.get(event_id) is current:
                del self._pending[event_id]

        if reference is not None:
            self._resolved.set(event_id, reference)
        return reference

    def clear_pending(self) -> None:
        """Forget in-flight fetches (they still complete, but are not joined)."""
        self._pending.clear()

    # Rendered-artifact cache

    def set_component(self, reference_id: str, component: Any) -> None:
        self._components.set(reference_id, component)

    def get_component(self, reference_id: str) -> Optional[Any]:
        return self._components.get(reference_id, None)

    def clear_components(self) -> None:
        self._components.clear()

    def clear(self) -> None:
        self._resolved.clear()
        self.clear_pending()
        self.clear_components()
