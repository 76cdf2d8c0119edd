"""
CacheStore - the session's cache registry.

Constructed once at process start and passed to every component that
needs it. Each view's slice is only mutated by its owner:
    - events:       EventStore
    - load_states:  LoadStateTracker
    - references:   ReferenceCache
Everything else reads through their accessors.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from zapview.config import ZapViewSettings

from .bounded import BoundedCache
from .event_store import EventStore
from .load_state import LoadStateTracker
from .profiles import ProfileCache
from .references import ReferenceCache

logger = logging.getLogger(__name__)


class CacheStore:
    """
    All memory-resident caches for one client session.

    Usage:
        caches = CacheStore(settings)
        coordinator = SubscriptionCoordinator(transport, caches)

        # In tests
        caches.clear_all()
    """

    def __init__(self, settings: Optional[ZapViewSettings] = None):
        settings = settings or ZapViewSettings()
        self.events = EventStore(max_views=settings.event_cache_views)
        self.load_states = LoadStateTracker(max_views=settings.load_state_views)
        self.references = ReferenceCache(max_size=settings.reference_cache_size)
        self.profiles = ProfileCache(max_size=settings.profile_cache_size)
        self.zap_info: BoundedCache[str, Any] = BoundedCache(settings.zap_info_cache_size)
        self.decoded: BoundedCache[str, Any] = BoundedCache(settings.decoded_cache_size)

    def has_enough_cached_events(self, view_id: str, threshold: int) -> bool:
        """Whether the view already holds at least `threshold` events."""
        return self.events.count(view_id) >= threshold

    def clear_all(self) -> None:
        """Drop every cached entry, subscription and in-flight marker."""
        self.events.clear()
        self.load_states.clear()
        self.references.clear()
        self.profiles.clear()
        self.profiles.clear_subscriptions()
        self.zap_info.clear()
        self.decoded.clear()
        logger.debug("All caches cleared")
