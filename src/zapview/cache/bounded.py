"""
Bounded key/value cache with LRU eviction.

Every purpose-specific cache in zapview holds one of these rather than
inheriting from it. Reads count as touches: a get() moves the key to the
most-recently-used end, so eviction removes the entry least recently
touched, not the one least recently inserted.
"""

from __future__ import annotations

from collections import OrderedDict
from typing import Any, Generic, Hashable, Iterator, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _Missing:
    """Sentinel type for an absent cache entry."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class BoundedCache(Generic[K, V]):
    """
    In-memory LRU cache with a fixed capacity.

    Usage:
        cache = BoundedCache(max_size=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")        # touches "a"
        cache.set("c", 3)     # evicts "b"

        if cache.get("b") is MISSING:
            ...
    """

    def __init__(self, max_size: int = 1000):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._max_size = max_size
        self._entries: OrderedDict[K, V] = OrderedDict()
        self._evictions = 0

    @property
    def max_size(self) -> int:
        """Configured capacity."""
        return self._max_size

    @property
    def evictions(self) -> int:
        """Number of entries evicted since creation."""
        return self._evictions

    def set(self, key: K, value: V) -> V:
        """Insert or overwrite a key and mark it most recently used."""
        if key not in self._entries and len(self._entries) >= self._max_size:
            self._entries.popitem(last=False)
            self._evictions += 1

        self._entries[key] = value
        self._entries.move_to_end(key)
        return value

    def get(self, key: K, default: Any = MISSING) -> Any:
        """Return the stored value (touching it) or `default`."""
        if key not in self._entries:
            return default
        self._entries.move_to_end(key)
        return self._entries[key]

    def has(self, key: K) -> bool:
        return key in self._entries

    def delete(self, key: K) -> bool:
        """Remove a key. Returns whether it was present."""
        return self._entries.pop(key, MISSING) is not MISSING

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list[K]:
        """Keys from least to most recently used (does not touch)."""
        return list(self._entries.keys())

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._entries.keys()))
