"""
Per-view pagination state.

State machine:
    FRESH -> BACKFILLING -> STEADY <-> PAGINATING
                              |
                              v
                          EXHAUSTED

Pagination may only start from STEADY. Finishing a page, successfully or
not, always clears is_loading; a flag left set would disable pagination
for the view for good. The cursor (last_event_time) only ever moves back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional

from .bounded import BoundedCache

logger = logging.getLogger(__name__)


class LoadPhase(str, Enum):
    """Derived pagination phase of a view."""
    FRESH = "fresh"
    BACKFILLING = "backfilling"
    STEADY = "steady"
    PAGINATING = "paginating"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class ViewLoadState:
    """
    Snapshot of a view's load state.

    Attributes:
        is_initial_fetch_complete: Backfill reached end-of-stream
        last_event_time: Cursor, the minimum created_at seen (None before any event)
        is_loading: A pagination batch is in flight
        current_count: Total events loaded by pagination
        is_exhausted: The last pagination batch returned nothing
        backfill_started: A backfill has been started for this view
    """
    is_initial_fetch_complete: bool = False
    last_event_time: Optional[int] = None
    is_loading: bool = False
    current_count: int = 0
    is_exhausted: bool = False
    backfill_started: bool = False

    @property
    def phase(self) -> LoadPhase:
        if not self.backfill_started:
            return LoadPhase.FRESH
        if not self.is_initial_fetch_complete:
            return LoadPhase.BACKFILLING
        if self.is_loading:
            return LoadPhase.PAGINATING
        if self.is_exhausted:
            return LoadPhase.EXHAUSTED
        return LoadPhase.STEADY

    @property
    def can_load_more(self) -> bool:
        return (
            self.phase == LoadPhase.STEADY
            and self.last_event_time is not None
        )


def _min_cursor(current: Optional[int], candidate: Optional[int]) -> Optional[int]:
    if candidate is None:
        return current
    if current is None:
        return candidate
    return min(current, candidate)


class LoadStateTracker:
    """
    Owns the ViewLoadState of every view.

    States are created lazily on first access and replaced wholesale on
    each transition; callers only ever see immutable snapshots.
    """

    def __init__(self, max_views: int = 100):
        self._states: BoundedCache[str, ViewLoadState] = BoundedCache(max_views)

    def get(self, view_id: str) -> ViewLoadState:
        """Current state for a view, initializing it if unknown."""
        state = self._states.get(view_id, None)
        if state is None:
            state = self._states.set(view_id, ViewLoadState())
        return state

    def has(self, view_id: str) -> bool:
        return self._states.has(view_id)

    def _update(self, view_id: str, **changes) -> ViewLoadState:
        return self._states.set(view_id, replace(self.get(view_id), **changes))

    def begin_backfill(self, view_id: str, seed_cursor: Optional[int] = None) -> ViewLoadState:
        """
        Enter BACKFILLING.

        seed_cursor carries the oldest event already cached for the view,
        so a reopened view keeps paginating from where it left off.
        """
        return self._states.set(
            view_id,
            ViewLoadState(
                backfill_started=True,
                last_event_time=seed_cursor,
            ),
        )

    def advance_cursor(self, view_id: str, created_at: int) -> ViewLoadState:
        """Move the cursor back to created_at if it is older."""
        state = self.get(view_id)
        cursor = _min_cursor(state.last_event_time, created_at)
        if cursor == state.last_event_time:
            return state
        return self._update(view_id, last_event_time=cursor)

    def complete_backfill(
        self,
        view_id: str,
        last_event_time: Optional[int] = None,
    ) -> ViewLoadState:
        """Enter STEADY after the initial end-of-stream."""
        state = self.get(view_id)
        return self._update(
            view_id,
            backfill_started=True,
            is_initial_fetch_complete=True,
            last_event_time=_min_cursor(state.last_event_time, last_event_time),
        )

    def can_load_more(self, view_id: str) -> bool:
        return self.get(view_id).can_load_more

    def begin_pagination(self, view_id: str) -> bool:
        """
        Enter PAGINATING if the guard allows it.

        Returns:
            True if the caller now owns the in-flight page
        """
        state = self.get(view_id)
        if not state.can_load_more:
            logger.debug(
                f"Pagination refused for {view_id}: phase={state.phase.value}, "
                f"cursor={state.last_event_time}"
            )
            return False
        self._update(view_id, is_loading=True)
        return True

    def finish_pagination(self, view_id: str, loaded_count: int) -> Optional[ViewLoadState]:
        """
        Leave PAGINATING. A zero count marks the view exhausted.

        A view discarded while its page was in flight stays discarded.
        """
        if not self._states.has(view_id):
            return None
        state = self.get(view_id)
        return self._update(
            view_id,
            is_loading=False,
            current_count=state.current_count + max(loaded_count, 0),
            is_exhausted=state.is_exhausted or loaded_count <= 0,
        )

    def discard(self, view_id: str) -> None:
        """Drop a view's state (view torn down)."""
        self._states.delete(view_id)

    def clear(self) -> None:
        self._states.clear()
