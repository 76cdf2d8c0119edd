"""
Data models for the ingestion layer.

These models represent:
- Receipt events as delivered by relays (NIP-01 event shape)
- Subscription filters sent to relays
- Profile metadata (kind 0)

Events are immutable. A resolved reference is attached by creating a new
instance (with_reference), never by mutating the stored one.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

ZAP_RECEIPT_KIND = 9735
PROFILE_KIND = 0

_HEX64 = re.compile(r"^[0-9a-f]{64}$")


def is_hex64(value: Any) -> bool:
    """Whether value is a lowercase 64-character hex string."""
    return isinstance(value, str) and bool(_HEX64.match(value))


def _normalize_tags(tags: Any) -> tuple[tuple[str, ...], ...]:
    if tags is None:
        return ()
    if not isinstance(tags, (list, tuple)):
        raise ValueError(f"tags must be a list, got {type(tags).__name__}")
    normalized = []
    for tag in tags:
        if not isinstance(tag, (list, tuple)):
            raise ValueError(f"tag must be a list, got {type(tag).__name__}")
        normalized.append(tuple(str(part) for part in tag))
    return tuple(normalized)


@dataclass(frozen=True)
class ReceiptEvent:
    """
    Immutable receipt event.

    Attributes:
        id: Content-addressed event id (64 hex)
        created_at: Unix seconds
        kind: Event-type tag
        pubkey: Issuer public key (hex)
        content: Opaque payload
        tags: Ordered annotations, each a sequence of strings
        reference: Linked secondary event, attached after resolution
        is_real_time: Arrived via the live stream (vs backfill)
    """
    id: str
    created_at: int
    kind: int
    pubkey: str
    content: str = ""
    tags: tuple[tuple[str, ...], ...] = ()
    sig: str = field(default="", repr=False, compare=False)
    reference: Optional["ReceiptEvent"] = field(default=None, compare=False)
    is_real_time: bool = field(default=False, compare=False)

    def __post_init__(self):
        if not self.id:
            raise ValueError("Event id is required")
        if isinstance(self.created_at, bool) or not isinstance(self.created_at, int):
            raise ValueError(f"created_at must be an integer, got {self.created_at!r}")
        if self.created_at < 0:
            raise ValueError(f"created_at must be >= 0, got {self.created_at}")
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", _normalize_tags(self.tags))

    @property
    def dedup_key(self) -> tuple[int, str, str, int]:
        """Secondary identity: same (kind, pubkey, content, created_at) is the same receipt."""
        return (self.kind, self.pubkey, self.content, self.created_at)

    def first_tag(self, name: str) -> Optional[tuple[str, ...]]:
        """First tag whose key is `name`, or None."""
        for tag in self.tags:
            if tag and tag[0] == name:
                return tag
        return None

    def tag_value(self, name: str) -> Optional[str]:
        """Value (second element) of the first `name` tag, or None."""
        tag = self.first_tag(name)
        if tag is None or len(tag) < 2:
            return None
        return tag[1]

    def with_reference(self, reference: Optional["ReceiptEvent"]) -> "ReceiptEvent":
        return replace(self, reference=reference)

    @classmethod
    def from_dict(cls, data: dict, is_real_time: bool = False) -> "ReceiptEvent":
        """
        Build an event from its wire (NIP-01 JSON) form.

        Raises:
            ValueError: If any required field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ValueError(f"Event must be an object, got {type(data).__name__}")

        event_id = data.get("id")
        pubkey = data.get("pubkey")
        if not is_hex64(event_id):
            raise ValueError(f"Invalid event id: {event_id!r}")
        if not is_hex64(pubkey):
            raise ValueError(f"Invalid pubkey: {pubkey!r}")

        kind = data.get("kind")
        if isinstance(kind, bool) or not isinstance(kind, int):
            raise ValueError(f"Invalid kind: {kind!r}")

        content = data.get("content", "")
        if not isinstance(content, str):
            raise ValueError("content must be a string")

        return cls(
            id=event_id,
            created_at=data.get("created_at"),
            kind=kind,
            pubkey=pubkey,
            content=content,
            tags=_normalize_tags(data.get("tags", [])),
            sig=data.get("sig") or "",
            is_real_time=is_real_time,
        )

    def to_dict(self) -> dict:
        """Wire (NIP-01 JSON) form, without provenance or reference."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }


@dataclass(frozen=True)
class SubscriptionFilter:
    """
    Relay subscription filter.

    Tag filters are keyed by single-letter tag name ("e", "p", "a", "d")
    and serialized as "#e", "#p", ... on the wire.
    """
    kinds: tuple[int, ...] = ()
    authors: tuple[str, ...] = ()
    ids: tuple[str, ...] = ()
    tags: tuple[tuple[str, tuple[str, ...]], ...] = ()
    since: Optional[int] = None
    until: Optional[int] = None
    limit: Optional[int] = None

    @classmethod
    def build(
        cls,
        kinds: Sequence[int] = (),
        authors: Sequence[str] = (),
        ids: Sequence[str] = (),
        tags: Optional[dict[str, Sequence[str]]] = None,
        since: Optional[int] = None,
        until: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> "SubscriptionFilter":
        tag_items = tuple(
            (name, tuple(values)) for name, values in sorted((tags or {}).items())
        )
        return cls(
            kinds=tuple(kinds),
            authors=tuple(authors),
            ids=tuple(ids),
            tags=tag_items,
            since=since,
            until=until,
            limit=limit,
        )

    def with_until(self, until: Optional[int]) -> "SubscriptionFilter":
        return replace(self, until=until)

    def with_limit(self, limit: Optional[int]) -> "SubscriptionFilter":
        return replace(self, limit=limit)

    def tag_values(self, name: str) -> tuple[str, ...]:
        for tag_name, values in self.tags:
            if tag_name == name:
                return values
        return ()

    def matches(self, event: ReceiptEvent) -> bool:
        """Whether a relay applying this filter would return `event`."""
        if self.kinds and event.kind not in self.kinds:
            return False
        if self.authors and event.pubkey not in self.authors:
            return False
        if self.ids and event.id not in self.ids:
            return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.until is not None and event.created_at > self.until:
            return False
        for name, values in self.tags:
            event_values = {tag[1] for tag in event.tags if len(tag) >= 2 and tag[0] == name}
            if not event_values.intersection(values):
                return False
        return True

    def to_dict(self) -> dict:
        """Wire (NIP-01 JSON) form."""
        data: dict[str, Any] = {}
        if self.ids:
            data["ids"] = list(self.ids)
        if self.authors:
            data["authors"] = list(self.authors)
        if self.kinds:
            data["kinds"] = list(self.kinds)
        for name, values in self.tags:
            data[f"#{name}"] = list(values)
        if self.since is not None:
            data["since"] = self.since
        if self.until is not None:
            data["until"] = self.until
        if self.limit is not None:
            data["limit"] = self.limit
        return data


@dataclass(frozen=True)
class Profile:
    """Profile metadata (kind 0 content)."""
    pubkey: str
    name: Optional[str] = None
    display_name: Optional[str] = None
    picture: Optional[str] = None
    nip05: Optional[str] = None
    lud16: Optional[str] = None
    created_at: Optional[int] = None

    @property
    def label(self) -> Optional[str]:
        """Best human-readable name, if any."""
        return self.display_name or self.name

    @classmethod
    def from_event(cls, event: ReceiptEvent) -> "Profile":
        """
        Parse a kind-0 event.

        Raises:
            ValueError: If the event is not a profile or content is not a JSON object
        """
        if event.kind != PROFILE_KIND:
            raise ValueError(f"Not a profile event: kind {event.kind}")
        try:
            data = json.loads(event.content)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid profile content: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("Profile content must be a JSON object")

        def _text(key: str) -> Optional[str]:
            value = data.get(key)
            return value if isinstance(value, str) and value else None

        return cls(
            pubkey=event.pubkey,
            name=_text("name"),
            display_name=_text("display_name") or _text("displayName"),
            picture=_text("picture"),
            nip05=_text("nip05"),
            lud16=_text("lud16"),
            created_at=event.created_at,
        )
