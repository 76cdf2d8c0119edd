"""
Cache Layer - memory-resident, bounded, per-session state.

    - BoundedCache: generic LRU map every other cache composes
    - EventStore: per-view ordered, de-duplicated receipt events
    - LoadStateTracker: per-view pagination cursor and in-flight flag
    - ReferenceCache: single-flight reference resolution
    - ProfileCache: newest-wins profile metadata
    - CacheStore: the registry passed to every component
"""

from .bounded import MISSING, BoundedCache
from .event_store import EventStore
from .load_state import LoadPhase, LoadStateTracker, ViewLoadState
from .profiles import ProfileCache
from .references import ReferenceCache
from .store import CacheStore

__all__ = [
    "MISSING",
    "BoundedCache",
    "CacheStore",
    "EventStore",
    "LoadPhase",
    "LoadStateTracker",
    "ProfileCache",
    "ReferenceCache",
    "ViewLoadState",
]
