"""Profile metadata cache with update notifications."""

from __future__ import annotations

import itertools
import logging
from typing import Callable, Optional

from zapview.ingestion.models import Profile

from .bounded import BoundedCache

logger = logging.getLogger(__name__)

ProfileCallback = Callable[[str, Profile], None]


class ProfileCache:
    """
    Newest-wins profile cache keyed by pubkey.

    A profile replaces the cached one only if either lacks a created_at or
    the new one is strictly newer. Subscribers are told about every
    accepted replacement.
    """

    def __init__(self, max_size: int = 1000):
        self._profiles: BoundedCache[str, Profile] = BoundedCache(max_size)
        self._callbacks: dict[int, ProfileCallback] = {}
        self._ids = itertools.count(1)

    def get_profile(self, pubkey: str) -> Optional[Profile]:
        return self._profiles.get(pubkey, None)

    def has_profile(self, pubkey: str) -> bool:
        return self._profiles.has(pubkey)

    def set_profile(self, pubkey: str, profile: Optional[Profile]) -> bool:
        """
        Store a profile if it is newer than the cached one.

        Returns:
            True if the cache was updated
        """
        if not pubkey or profile is None:
            return False

        current = self._profiles.get(pubkey, None)
        if (
            current is None
            or current.created_at is None
            or profile.created_at is None
            or profile.created_at > current.created_at
        ):
            self._profiles.set(pubkey, profile)
            self._notify(pubkey, profile)
            return True
        return False

    def _notify(self, pubkey: str, profile: Profile) -> None:
        for callback in list(self._callbacks.values()):
            try:
                callback(pubkey, profile)
            except Exception as e:
                logger.error(f"Error in profile update callback: {e}")

    def subscribe(self, callback: ProfileCallback) -> Callable[[], None]:
        """Register an update callback. Returns an unsubscribe function."""
        subscription_id = next(self._ids)
        self._callbacks[subscription_id] = callback

        def unsubscribe() -> None:
            self._callbacks.pop(subscription_id, None)

        return unsubscribe

    def clear_subscriptions(self) -> None:
        self._callbacks.clear()

    def clear(self) -> None:
        self._profiles.clear()
