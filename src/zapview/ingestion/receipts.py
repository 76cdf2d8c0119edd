"""
Zap receipt payload extraction.

A receipt (kind 9735) carries:
    - "description": the JSON-serialized zap request (kind 9734), whose
      pubkey is the sender, content the comment and "amount" tag the
      amount in millisats
    - "bolt11": the paid invoice, whose human-readable part encodes the
      amount when the request omits it

Extraction never raises: an unparseable receipt yields an anonymous,
zero-amount ZapInfo.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from .models import ReceiptEvent, is_hex64

logger = logging.getLogger(__name__)

_BOLT11_AMOUNT = re.compile(r"^ln(?:bcrt|bc|tbs|tb|sb)(\d+)([munp]?)1", re.IGNORECASE)

_BOLT11_MULTIPLIERS = {
    "": Decimal("1"),
    "m": Decimal("0.001"),
    "u": Decimal("0.000001"),
    "n": Decimal("0.000000001"),
    "p": Decimal("0.000000000001"),
}

SATS_PER_BTC = Decimal("100000000")

# (minimum sats, css class), highest first
AMOUNT_TIERS: tuple[tuple[int, str], ...] = (
    (10000, "zap-amount-10k"),
    (5000, "zap-amount-5k"),
    (2000, "zap-amount-2k"),
    (1000, "zap-amount-1k"),
    (500, "zap-amount-500"),
    (200, "zap-amount-200"),
)
DEFAULT_AMOUNT_CLASS = "zap-amount-default"
DISABLED_AMOUNT_CLASS = "zap-amount-disabled"


@dataclass(frozen=True)
class ZapInfo:
    """Display-ready facts extracted from one receipt."""
    event_id: str
    sats_amount: int
    comment: str
    sender_pubkey: Optional[str]
    created_at: int
    reference: Optional[ReceiptEvent] = None

    @property
    def is_anonymous(self) -> bool:
        return self.sender_pubkey is None

    @property
    def sats_text(self) -> str:
        return f"{self.sats_amount:,} sats"


def parse_bolt11_sats(invoice: str) -> Optional[int]:
    """Amount in sats encoded in a bolt11 invoice, or None if absent/invalid."""
    if not invoice:
        return None
    match = _BOLT11_AMOUNT.match(invoice.strip())
    if not match:
        return None
    amount, multiplier = match.group(1), match.group(2).lower()
    btc = Decimal(amount) * _BOLT11_MULTIPLIERS[multiplier]
    return int(btc * SATS_PER_BTC)


def _parse_zap_request(event: ReceiptEvent) -> Optional[dict]:
    description = event.tag_value("description")
    if not description:
        return None
    try:
        request = json.loads(description)
    except json.JSONDecodeError as e:
        logger.debug(f"Receipt {event.id[:12]} has invalid description: {e}")
        return None
    return request if isinstance(request, dict) else None


def _request_amount_sats(request: dict) -> Optional[int]:
    for tag in request.get("tags") or []:
        if isinstance(tag, list) and len(tag) >= 2 and tag[0] == "amount":
            try:
                return int(Decimal(str(tag[1])) / 1000)
            except (InvalidOperation, ValueError):
                return None
    return None


def extract_zap_info(event: ReceiptEvent) -> ZapInfo:
    """Extract sender, comment and amount from a receipt."""
    request = _parse_zap_request(event) or {}

    sender = request.get("pubkey")
    sender_pubkey = sender if is_hex64(sender) else None

    comment = request.get("content")
    if not isinstance(comment, str):
        comment = ""

    sats = _request_amount_sats(request)
    if sats is None:
        sats = parse_bolt11_sats(event.tag_value("bolt11") or "")

    return ZapInfo(
        event_id=event.id,
        sats_amount=sats or 0,
        comment=comment,
        sender_pubkey=sender_pubkey,
        created_at=event.created_at,
        reference=event.reference,
    )


def amount_color_class(amount: int, enabled: bool = True) -> str:
    """Display tier for an amount."""
    if not enabled:
        return DISABLED_AMOUNT_CLASS
    for threshold, class_name in AMOUNT_TIERS:
        if amount >= threshold:
            return class_name
    return DEFAULT_AMOUNT_CLASS
