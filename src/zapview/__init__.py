"""
zapview - client-side engine for streaming zap receipts.

Ingests receipt events from unreliable relays, merges the historical
backfill with the live stream without duplication, paginates backwards
from the oldest event seen and coalesces arrivals into batched render
signals for a list view.

Usage:
    from zapview import CacheStore, SubscriptionCoordinator, ViewerConfig
    from zapview.ingestion import RelayPool

    caches = CacheStore()
    coordinator = SubscriptionCoordinator(transport=RelayPool(), caches=caches)
    coordinator.set_renderer(my_renderer)

    config = ViewerConfig(relay_urls=("wss://relay.damus.io",), identifier="npub1...")
    await coordinator.open_view("view-0", config)
    count = await coordinator.handle_scroll_proximity("view-0")

    coordinator.unsubscribe("view-0")
"""

from .cache import CacheStore
from .config import ViewerConfig, ZapViewSettings
from .core import SubscriptionCoordinator
from .errors import (
    ConfigError,
    DecodeError,
    ProfileFetchError,
    ReferenceResolutionError,
    TransportError,
    TransportTimeout,
    ZapViewError,
)

__version__ = "0.1.0"

__all__ = [
    "CacheStore",
    "ConfigError",
    "DecodeError",
    "ProfileFetchError",
    "ReferenceResolutionError",
    "SubscriptionCoordinator",
    "TransportError",
    "TransportTimeout",
    "ViewerConfig",
    "ZapViewError",
    "ZapViewSettings",
]
