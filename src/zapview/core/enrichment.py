"""
Background enrichment of receipt events.

Two resolvers run beside the ingestion pipeline:
    - ReferenceResolver: fetches the event a receipt points at ("a" or "e"
      tag), single-flight through the ReferenceCache
    - ProfileResolver: fetches sender profiles in batches, through the
      ProfileCache

Neither ever raises into the caller. A reference that cannot be fetched
leaves the receipt without one; a profile that cannot be fetched shows
the sender as anonymous.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from zapview.cache import ProfileCache, ReferenceCache
from zapview.errors import ReferenceResolutionError
from zapview.ingestion.models import Profile, ReceiptEvent, SubscriptionFilter, is_hex64
from zapview.ingestion.ports import EventFetcherPort, ProfileFetcherPort

logger = logging.getLogger(__name__)


def reference_filter(event: ReceiptEvent) -> Optional[SubscriptionFilter]:
    """
    Lookup filter for the event a receipt references, or None.

    An "a" tag (kind:pubkey:d) takes precedence over an "e" tag.
    """
    address = event.tag_value("a")
    if address:
        parts = address.split(":", 2)
        if len(parts) == 3 and parts[0].isdigit() and is_hex64(parts[1]):
            return SubscriptionFilter.build(
                kinds=[int(parts[0])],
                authors=[parts[1]],
                tags={"d": [parts[2]]},
            )
        logger.debug(f"Ignoring malformed a tag on {event.id[:12]}: {address}")

    event_id = event.tag_value("e")
    if is_hex64(event_id):
        return SubscriptionFilter.build(ids=[event_id])
    return None


class ReferenceResolver:
    """
    Resolves the secondary event a receipt references.

    Usage:
        resolver = ReferenceResolver(fetcher=relay_pool, cache=caches.references)
        reference = await resolver.resolve(event, relay_urls)
    """

    def __init__(
        self,
        fetcher: EventFetcherPort,
        cache: ReferenceCache,
        timeout: Optional[float] = None,
    ):
        self._fetcher = fetcher
        self._cache = cache
        self._timeout = timeout

    async def resolve(
        self,
        event: ReceiptEvent,
        relay_urls: Sequence[str],
    ) -> Optional[ReceiptEvent]:
        """Referenced event, or None if there is none or it cannot be fetched."""
        event_filter = reference_filter(event)
        if event_filter is None:
            return None

        async def fetch() -> Optional[ReceiptEvent]:
            try:
                return await self._fetcher.fetch_event(
                    relay_urls,
                    event_filter,
                    timeout=self._timeout,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise ReferenceResolutionError(
                    f"Could not fetch reference for {event.id[:12]}: {e}"
                ) from e

        return await self._cache.get_or_fetch(event.id, fetch)

    async def resolve_batch(
        self,
        events: Sequence[ReceiptEvent],
        relay_urls: Sequence[str],
    ) -> dict[str, ReceiptEvent]:
        """Resolve references for several events concurrently."""
        pending = [e for e in events if e.reference is None]
        if not pending:
            return {}

        results = await asyncio.gather(
            *(self.resolve(e, relay_urls) for e in pending),
            return_exceptions=True,
        )

        resolved: dict[str, ReceiptEvent] = {}
        for event, result in zip(pending, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning(f"Reference resolution failed for {event.id[:12]}: {result}")
                continue
            if result is not None:
                resolved[event.id] = result
        return resolved


class ProfileResolver:
    """
    Batch profile lookup backed by the profile cache.

    Usage:
        resolver = ProfileResolver(fetcher=RelayProfileFetcher(pool, relays), cache=caches.profiles)
        profiles = await resolver.resolve_batch(pubkeys)   # pubkey -> Profile | None
    """

    def __init__(self, fetcher: ProfileFetcherPort, cache: ProfileCache):
        self._fetcher = fetcher
        self._cache = cache

    async def resolve_batch(self, pubkeys: Sequence[str]) -> dict[str, Optional[Profile]]:
        profiles: dict[str, Optional[Profile]] = {}
        missing: list[str] = []

        for pubkey in dict.fromkeys(p for p in pubkeys if p):
            cached = self._cache.get_profile(pubkey)
            if cached is not None:
                profiles[pubkey] = cached
            else:
                missing.append(pubkey)

        if not missing:
            return profiles

        try:
            fetched = await self._fetcher.fetch_profiles(missing)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Profile fetch failed for {len(missing)} pubkeys: {e}")
            fetched = {}

        for pubkey in missing:
            profile = fetched.get(pubkey)
            if profile is not None:
                self._cache.set_profile(pubkey, profile)
                profiles[pubkey] = self._cache.get_profile(pubkey)
            else:
                profiles[pubkey] = None
        return profiles
