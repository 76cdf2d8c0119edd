"""
Target identifier decoding (NIP-19).

A view targets one of:
    - a profile (npub / nprofile): receipts tagged "#p"
    - a note (note / nevent): receipts tagged "#e"
    - an addressable event (naddr): receipts tagged "#a" kind:pubkey:d

TLV entities (nprofile, nevent, naddr) routinely exceed the 90-character
BIP-173 limit, so decoding uses the bech32 primitives directly rather than
bech32_decode(), which enforces it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from bech32 import CHARSET, bech32_hrp_expand, bech32_polymod, convertbits

from zapview.errors import DecodeError

from .models import ZAP_RECEIPT_KIND, SubscriptionFilter

logger = logging.getLogger(__name__)

MAX_ENTITY_LENGTH = 5000

PROFILE_TYPES = ("npub", "nprofile")
EVENT_TYPES = ("note", "nevent")
ADDRESS_TYPES = ("naddr",)

# TLV record types
TLV_SPECIAL = 0
TLV_RELAY = 1
TLV_AUTHOR = 2
TLV_KIND = 3


@dataclass(frozen=True)
class DecodedTarget:
    """
    Decoded view target.

    Attributes:
        type: Entity prefix (npub, nprofile, note, nevent, naddr)
        pubkey: Target or author public key (hex), when known
        event_id: Target event id (hex), for note/nevent
        kind: Event kind, for naddr (and nevent when present)
        d_tag: Addressable event identifier, for naddr
        relays: Relay hints embedded in the entity
    """
    type: str
    pubkey: Optional[str] = None
    event_id: Optional[str] = None
    kind: Optional[int] = None
    d_tag: Optional[str] = None
    relays: tuple[str, ...] = ()

    @property
    def is_event(self) -> bool:
        return self.type in EVENT_TYPES

    @property
    def address(self) -> Optional[str]:
        """kind:pubkey:d coordinate for addressable targets."""
        if self.type not in ADDRESS_TYPES:
            return None
        return f"{self.kind}:{self.pubkey}:{self.d_tag}"

    def to_receipt_filter(
        self,
        until: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> SubscriptionFilter:
        """Filter selecting receipts for this target."""
        if self.type in PROFILE_TYPES:
            tags = {"p": [self.pubkey]}
        elif self.type in EVENT_TYPES:
            tags = {"e": [self.event_id]}
        else:
            tags = {"a": [self.address]}
        return SubscriptionFilter.build(
            kinds=[ZAP_RECEIPT_KIND],
            tags=tags,
            until=until,
            limit=limit,
        )


def _bech32_to_bytes(value: str) -> tuple[str, bytes]:
    if value.lower() != value and value.upper() != value:
        raise DecodeError("Mixed-case bech32 string", value)
    value = value.lower()

    if any(ord(ch) < 33 or ord(ch) > 126 for ch in value):
        raise DecodeError("Invalid characters in identifier", value)

    pos = value.rfind("1")
    if pos < 1 or pos + 7 > len(value) or len(value) > MAX_ENTITY_LENGTH:
        raise DecodeError("Malformed bech32 string", value)

    hrp = value[:pos]
    try:
        data = [CHARSET.index(ch) for ch in value[pos + 1:]]
    except ValueError:
        raise DecodeError("Invalid bech32 character", value) from None

    if bech32_polymod(bech32_hrp_expand(hrp) + data) != 1:
        raise DecodeError("Invalid bech32 checksum", value)

    decoded = convertbits(data[:-6], 5, 8, False)
    if decoded is None:
        raise DecodeError("Invalid bech32 padding", value)
    return hrp, bytes(decoded)


def _bytes_to_bech32(hrp: str, payload: bytes) -> str:
    data = convertbits(list(payload), 8, 5, True)
    polymod = bech32_polymod(bech32_hrp_expand(hrp) + data + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(CHARSET[d] for d in data + checksum)


def _parse_tlv(payload: bytes, identifier: str) -> dict[int, list[bytes]]:
    records: dict[int, list[bytes]] = {}
    offset = 0
    while offset < len(payload):
        if offset + 2 > len(payload):
            raise DecodeError("Truncated TLV record", identifier)
        record_type = payload[offset]
        length = payload[offset + 1]
        value = payload[offset + 2:offset + 2 + length]
        if len(value) != length:
            raise DecodeError("Truncated TLV value", identifier)
        records.setdefault(record_type, []).append(value)
        offset += 2 + length
    return records


def _hex32(value: bytes, what: str, identifier: str) -> str:
    if len(value) != 32:
        raise DecodeError(f"{what} must be 32 bytes, got {len(value)}", identifier)
    return value.hex()


def decode_identifier(identifier: str) -> DecodedTarget:
    """
    Decode a NIP-19 entity into a view target.

    Raises:
        DecodeError: On any malformed input
    """
    if not isinstance(identifier, str) or not identifier.strip():
        raise DecodeError("Empty identifier", str(identifier))

    value = identifier.strip()
    if value.lower().startswith("nostr:"):
        value = value[len("nostr:"):]

    hrp, payload = _bech32_to_bytes(value)

    if hrp == "npub":
        return DecodedTarget(type=hrp, pubkey=_hex32(payload, "pubkey", identifier))

    if hrp == "note":
        return DecodedTarget(type=hrp, event_id=_hex32(payload, "event id", identifier))

    if hrp not in ("nprofile", "nevent", "naddr"):
        raise DecodeError(f"Unsupported identifier type: {hrp}", identifier)

    tlv = _parse_tlv(payload, identifier)
    special = tlv.get(TLV_SPECIAL)
    if not special:
        raise DecodeError(f"{hrp} is missing its special record", identifier)

    relays = tuple(
        raw.decode("utf-8", errors="replace") for raw in tlv.get(TLV_RELAY, [])
    )
    author = tlv.get(TLV_AUTHOR)
    kind_raw = tlv.get(TLV_KIND)
    kind = None
    if kind_raw:
        if len(kind_raw[0]) != 4:
            raise DecodeError("kind must be 4 bytes", identifier)
        kind = int.from_bytes(kind_raw[0], "big")

    if hrp == "nprofile":
        return DecodedTarget(
            type=hrp,
            pubkey=_hex32(special[0], "pubkey", identifier),
            relays=relays,
        )

    if hrp == "nevent":
        return DecodedTarget(
            type=hrp,
            event_id=_hex32(special[0], "event id", identifier),
            pubkey=_hex32(author[0], "author", identifier) if author else None,
            kind=kind,
            relays=relays,
        )

    if not author:
        raise DecodeError("naddr is missing its author", identifier)
    if kind is None:
        raise DecodeError("naddr is missing its kind", identifier)
    return DecodedTarget(
        type=hrp,
        d_tag=special[0].decode("utf-8", errors="replace"),
        pubkey=_hex32(author[0], "author", identifier),
        kind=kind,
        relays=relays,
    )


def is_event_identifier(identifier: str) -> bool:
    """Whether the identifier targets a single note (note / nevent)."""
    try:
        return decode_identifier(identifier).is_event
    except DecodeError:
        return False


def encode_npub(pubkey: str) -> str:
    """Encode a hex public key as npub."""
    try:
        raw = bytes.fromhex(pubkey)
    except ValueError:
        raise DecodeError("Public key is not hex", pubkey) from None
    if len(raw) != 32:
        raise DecodeError("Public key must be 32 bytes", pubkey)
    return _bytes_to_bech32("npub", raw)


def encode_note(event_id: str) -> str:
    """Encode a hex event id as note."""
    raw = bytes.fromhex(event_id)
    if len(raw) != 32:
        raise DecodeError("Event id must be 32 bytes", event_id)
    return _bytes_to_bech32("note", raw)


def encode_tlv(hrp: str, records: list[tuple[int, bytes]]) -> str:
    """Encode TLV records as a bech32 entity (nprofile / nevent / naddr)."""
    payload = bytearray()
    for record_type, value in records:
        payload.append(record_type)
        payload.append(len(value))
        payload.extend(value)
    return _bytes_to_bech32(hrp, bytes(payload))


def format_identifier(identifier: str, head: int = 8, tail: int = 4) -> str:
    """Shorten an identifier for display (npub1abcd...wxyz)."""
    if len(identifier) <= head + tail + 3:
        return identifier
    return f"{identifier[:head]}...{identifier[-tail:]}"
