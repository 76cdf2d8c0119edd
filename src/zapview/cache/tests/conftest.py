"""
Test fixtures for the cache layer.

Cache tests are pure in-memory; the only async code is the single-flight
reference fetch, driven with AsyncMock / hand-written coroutines.
"""

import hashlib

import pytest

from zapview.cache import (
    BoundedCache,
    CacheStore,
    EventStore,
    LoadStateTracker,
    ProfileCache,
    ReferenceCache,
)
from zapview.config import ZapViewSettings
from zapview.ingestion.models import ZAP_RECEIPT_KIND, Profile, ReceiptEvent


SENDER = "a" * 64
RECIPIENT = "b" * 64


def _hex_id(seed: str) -> str:
    return hashlib.sha256(seed.encode()).hexdigest()


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def make_event():
    """Factory for receipt events with a deterministic id per seed."""

    def _make(created_at, seed=None, content=None, pubkey=SENDER, kind=ZAP_RECEIPT_KIND):
        seed = seed if seed is not None else f"event-{created_at}"
        return ReceiptEvent(
            id=_hex_id(seed),
            created_at=created_at,
            kind=kind,
            pubkey=pubkey,
            content=content if content is not None else seed,
            tags=(("p", RECIPIENT),),
        )

    return _make


@pytest.fixture
def make_profile():
    """Factory for profiles."""

    def _make(pubkey=SENDER, name="alice", created_at=100):
        return Profile(pubkey=pubkey, name=name, created_at=created_at)

    return _make


# =============================================================================
# Cache Fixtures
# =============================================================================


@pytest.fixture
def small_cache():
    """BoundedCache with capacity 2."""
    return BoundedCache(max_size=2)


@pytest.fixture
def event_store():
    return EventStore(max_views=10)


@pytest.fixture
def tracker():
    return LoadStateTracker(max_views=10)


@pytest.fixture
def reference_cache():
    return ReferenceCache(max_size=10)


@pytest.fixture
def profile_cache():
    return ProfileCache(max_size=10)


@pytest.fixture
def settings():
    """Settings with small capacities."""
    return ZapViewSettings(
        event_cache_views=3,
        load_state_views=3,
        reference_cache_size=5,
        profile_cache_size=5,
        zap_info_cache_size=5,
        decoded_cache_size=5,
    )


@pytest.fixture
def cache_store(settings):
    return CacheStore(settings)
