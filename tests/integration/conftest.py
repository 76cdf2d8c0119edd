"""
Integration test fixtures.

These fixtures wire the real components together: RelayPool over the
in-memory relay network, CacheStore, both resolvers and a console
renderer writing to a buffer.
"""

import io

import pytest

from zapview.cache import CacheStore
from zapview.core import ProfileResolver, ReferenceResolver, SubscriptionCoordinator
from zapview.ingestion import RelayPool, RelayProfileFetcher
from zapview.main import ConsoleRenderer

# Mark all tests in this directory as integration tests
pytestmark = pytest.mark.integration


@pytest.fixture
async def pool(integration_settings, relay_network):
    """RelayPool over the in-memory network, closed after the test."""
    pool = RelayPool(integration_settings, connect=relay_network.connect)
    yield pool
    await pool.close()


@pytest.fixture
def caches(integration_settings):
    return CacheStore(integration_settings)


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
async def coordinator(pool, caches, integration_settings, output):
    """Fully wired coordinator, closed after the test."""
    coordinator = SubscriptionCoordinator(
        transport=pool,
        caches=caches,
        reference_resolver=ReferenceResolver(
            fetcher=pool,
            cache=caches.references,
            timeout=integration_settings.fetch_timeout_seconds,
        ),
        profile_resolver=ProfileResolver(
            fetcher=RelayProfileFetcher(
                pool,
                integration_settings.profile_relays,
                timeout=integration_settings.fetch_timeout_seconds,
            ),
            cache=caches.profiles,
        ),
        settings=integration_settings,
    )
    coordinator.set_renderer(ConsoleRenderer(coordinator, caches, stream=output))
    yield coordinator
    await coordinator.close()
