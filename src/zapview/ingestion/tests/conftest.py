"""
Test fixtures for the ingestion layer.

IMPORTANT: No test opens a real relay connection. The relay transport is
exercised by feeding raw protocol frames or through a fake connect().
"""

import hashlib
import json

import pytest

from zapview.config import ZapViewSettings
from zapview.ingestion.models import ZAP_RECEIPT_KIND, ReceiptEvent, SubscriptionFilter


SENDER = "a" * 64
RECIPIENT = "b" * 64
RECEIPT_ISSUER = "c" * 64

# NIP-19 reference vector
NPUB = "npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg"
NPUB_HEX = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"


def _hex_id(seed: str) -> str:
    return hashlib.sha256(seed.encode()).hexdigest()


# =============================================================================
# Wire Fixtures
# =============================================================================


@pytest.fixture
def wire_event():
    """Factory for NIP-01 event dicts as relays send them."""

    def _make(created_at=1000, seed=None, kind=ZAP_RECEIPT_KIND, tags=None, content=""):
        seed = seed if seed is not None else f"event-{created_at}"
        return {
            "id": _hex_id(seed),
            "pubkey": RECEIPT_ISSUER,
            "created_at": created_at,
            "kind": kind,
            "tags": tags if tags is not None else [["p", RECIPIENT]],
            "content": content,
            "sig": "0" * 128,
        }

    return _make


@pytest.fixture
def zap_request():
    """Factory for the JSON zap request embedded in a receipt's description tag."""

    def _make(sender=SENDER, comment="great post", amount_msats=21000):
        tags = [["p", RECIPIENT], ["relays", "wss://relay.example"]]
        if amount_msats is not None:
            tags.append(["amount", str(amount_msats)])
        return json.dumps({
            "kind": 9734,
            "pubkey": sender,
            "content": comment,
            "created_at": 999,
            "tags": tags,
        })

    return _make


@pytest.fixture
def make_receipt(zap_request):
    """Factory for receipt events with description and bolt11 tags."""

    def _make(
        created_at=1000,
        seed=None,
        description=None,
        bolt11="lnbc210n1pjexample",
        extra_tags=(),
    ):
        tags = [("p", RECIPIENT)]
        if bolt11 is not None:
            tags.append(("bolt11", bolt11))
        tags.append(("description", description if description is not None else zap_request()))
        tags.extend(extra_tags)
        return ReceiptEvent(
            id=_hex_id(seed or f"receipt-{created_at}"),
            created_at=created_at,
            kind=ZAP_RECEIPT_KIND,
            pubkey=RECEIPT_ISSUER,
            tags=tuple(tags),
        )

    return _make


@pytest.fixture
def receipt_filter():
    """Receipts addressed to RECIPIENT."""
    return SubscriptionFilter.build(kinds=[ZAP_RECEIPT_KIND], tags={"p": [RECIPIENT]})


@pytest.fixture
def settings():
    """Settings with short timeouts for relay tests."""
    return ZapViewSettings(
        eose_timeout_seconds=0.5,
        fetch_timeout_seconds=0.5,
        connect_timeout_seconds=0.5,
        initial_reconnect_delay=0.01,
        max_reconnect_delay=0.05,
    )
