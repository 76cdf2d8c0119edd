"""
Ingestion Layer - relay transport, wire models and decoding.

    - Models for receipt events, subscription filters and profiles
    - NIP-19 target identifier decoding
    - Receipt payload extraction (sender, comment, amount)
    - Collaborator ports (transport, fetchers, rendering)
    - WebSocket relay pool implementing the transport

Usage:
    from zapview.ingestion import RelayPool, decode_identifier

    target = decode_identifier("npub1...")
    pool = RelayPool()
    cancel = await pool.subscribe(
        ["wss://relay.damus.io"],
        [target.to_receipt_filter(limit=15)],
        on_event=print,
        on_end_of_stream=lambda: print("EOSE"),
    )
"""

# Models
from .models import (
    PROFILE_KIND,
    ZAP_RECEIPT_KIND,
    Profile,
    ReceiptEvent,
    SubscriptionFilter,
    is_hex64,
)

# Identifier decoding
from .identifier import (
    DecodedTarget,
    decode_identifier,
    encode_note,
    encode_npub,
    encode_tlv,
    format_identifier,
    is_event_identifier,
)

# Receipt extraction
from .receipts import (
    DEFAULT_AMOUNT_CLASS,
    DISABLED_AMOUNT_CLASS,
    ZapInfo,
    amount_color_class,
    extract_zap_info,
    parse_bolt11_sats,
)

# Ports
from .ports import (
    EventFetcherPort,
    ProfileFetcherPort,
    RenderSink,
    TransportPort,
)

# Relay transport
from .relay import (
    RelayPool,
    RelayProfileFetcher,
    RelayState,
    RelaySubscription,
)

__all__ = [
    # Models
    "PROFILE_KIND",
    "ZAP_RECEIPT_KIND",
    "Profile",
    "ReceiptEvent",
    "SubscriptionFilter",
    "is_hex64",
    # Identifier
    "DecodedTarget",
    "decode_identifier",
    "encode_note",
    "encode_npub",
    "encode_tlv",
    "format_identifier",
    "is_event_identifier",
    # Receipts
    "DEFAULT_AMOUNT_CLASS",
    "DISABLED_AMOUNT_CLASS",
    "ZapInfo",
    "amount_color_class",
    "extract_zap_info",
    "parse_bolt11_sats",
    # Ports
    "EventFetcherPort",
    "ProfileFetcherPort",
    "RenderSink",
    "TransportPort",
    # Relay
    "RelayPool",
    "RelayProfileFetcher",
    "RelayState",
    "RelaySubscription",
]
