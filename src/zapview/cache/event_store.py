"""
Per-view ordered store of receipt events.

Each view id owns one slice: a list of events sorted by created_at
descending. Two dedup rules guard every insert:
    - same event id
    - same (kind, pubkey, content, created_at), which catches relays that
      re-serialize an event under a different id

Slices live in a BoundedCache keyed by view id, so the least recently
touched views are dropped once the configured number of views is exceeded.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from zapview.ingestion.models import ReceiptEvent

from .bounded import BoundedCache

logger = logging.getLogger(__name__)


def _sort_descending(events: list[ReceiptEvent]) -> None:
    events.sort(key=lambda e: e.created_at, reverse=True)


class EventStore:
    """
    Ordered, de-duplicated receipt events per view.

    Usage:
        store = EventStore(max_views=100)
        if store.add_event("view-0", event):
            # newly accepted
            ...
        events = store.get_events("view-0")  # newest first
    """

    def __init__(self, max_views: int = 100):
        self._slices: BoundedCache[str, list[ReceiptEvent]] = BoundedCache(max_views)

    def _slice(self, view_id: str) -> list[ReceiptEvent]:
        return self._slices.get(view_id, None) or []

    @staticmethod
    def _is_duplicate(events: Iterable[ReceiptEvent], event: ReceiptEvent) -> bool:
        key = event.dedup_key
        return any(e.id == event.id or e.dedup_key == key for e in events)

    def add_event(self, view_id: str, event: Optional[ReceiptEvent]) -> bool:
        """
        Insert one event into a view.

        Returns:
            True if newly accepted, False if rejected as a duplicate (or empty)
        """
        if event is None or not event.id:
            return False

        events = list(self._slice(view_id))
        if self._is_duplicate(events, event):
            logger.debug(f"Duplicate event {event.id[:12]} for view {view_id}")
            return False

        events.append(event)
        _sort_descending(events)
        self._slices.set(view_id, events)
        return True

    def get_events(self, view_id: str) -> list[ReceiptEvent]:
        """Events for a view, newest first (empty if the view is unknown)."""
        return list(self._slice(view_id))

    def set_events(
        self,
        view_id: str,
        events: Iterable[ReceiptEvent],
        maintain_order: bool = False,
    ) -> None:
        """
        Bulk replace a view's events.

        With maintain_order, existing events whose id is not in the new set
        are kept and unioned with it, so incremental merges never drop data.
        For ids present in both, the incoming event wins.
        """
        incoming: dict[str, ReceiptEvent] = {}
        for event in events:
            if event is not None and event.id:
                incoming[event.id] = event

        current = self._slice(view_id) if maintain_order else []
        merged = [e for e in current if e.id not in incoming]
        merged.extend(incoming.values())
        _sort_descending(merged)
        self._slices.set(view_id, merged)

    def attach_reference(
        self,
        view_id: str,
        event_id: str,
        reference: ReceiptEvent,
    ) -> Optional[ReceiptEvent]:
        """
        Replace a stored event with a copy carrying its resolved reference.

        Returns:
            The updated event, or None if the event is not in the view
        """
        events = list(self._slice(view_id))
        for index, event in enumerate(events):
            if event.id == event_id:
                updated = event.with_reference(reference)
                events[index] = updated
                self._slices.set(view_id, events)
                return updated
        return None

    def oldest_created_at(self, view_id: str) -> Optional[int]:
        """created_at of the oldest stored event, or None if empty."""
        events = self._slice(view_id)
        return events[-1].created_at if events else None

    def count(self, view_id: str) -> int:
        return len(self._slice(view_id))

    def has_view(self, view_id: str) -> bool:
        return self._slices.has(view_id)

    def clear(self) -> None:
        self._slices.clear()
