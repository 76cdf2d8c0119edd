"""
Core Layer - per-view orchestration.

    - SubscriptionCoordinator: backfill, live stream and pagination per view
    - BufferedFlusher: timer-driven coalescing of render signals
    - ReferenceResolver / ProfileResolver: background enrichment
"""

from .buffer import BufferedFlusher
from .coordinator import CoordinatorStats, SubscriptionCoordinator
from .enrichment import ProfileResolver, ReferenceResolver, reference_filter

__all__ = [
    "BufferedFlusher",
    "CoordinatorStats",
    "ProfileResolver",
    "ReferenceResolver",
    "SubscriptionCoordinator",
    "reference_filter",
]
