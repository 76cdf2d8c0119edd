"""
Tests for receipt payload extraction.

extract_zap_info must never raise; bad receipts become anonymous and
zero-amount.
"""

import pytest

from zapview.ingestion.receipts import (
    DEFAULT_AMOUNT_CLASS,
    DISABLED_AMOUNT_CLASS,
    amount_color_class,
    extract_zap_info,
    parse_bolt11_sats,
)


SENDER = "a" * 64


class TestParseBolt11:
    """Tests for bolt11 human-readable amounts."""

    @pytest.mark.parametrize("invoice,sats", [
        ("lnbc210n1pjexample", 21),
        ("lnbc1u1pjexample", 100),
        ("lnbc2500u1pjexample", 250000),
        ("lnbc1m1pjexample", 100000),
        ("lnbc10p1pjexample", 0),
        ("lntb50u1pjexample", 5000),
        ("LNBC210N1PJEXAMPLE", 21),
    ])
    def test_amounts(self, invoice, sats):
        assert parse_bolt11_sats(invoice) == sats

    @pytest.mark.parametrize("invoice", ["", "lnbc1pjexample", "not an invoice"])
    def test_no_amount(self, invoice):
        assert parse_bolt11_sats(invoice) is None


class TestExtractZapInfo:
    """Tests for extract_zap_info."""

    def test_reads_zap_request(self, make_receipt):
        info = extract_zap_info(make_receipt())

        assert info.sender_pubkey == SENDER
        assert info.comment == "great post"
        assert info.sats_amount == 21
        assert info.created_at == 1000
        assert not info.is_anonymous
        assert info.sats_text == "21 sats"

    def test_request_amount_wins_over_bolt11(self, make_receipt, zap_request):
        receipt = make_receipt(
            description=zap_request(amount_msats=5_000_000),
            bolt11="lnbc210n1pjexample",
        )
        assert extract_zap_info(receipt).sats_amount == 5000

    def test_falls_back_to_bolt11(self, make_receipt, zap_request):
        receipt = make_receipt(
            description=zap_request(amount_msats=None),
            bolt11="lnbc2500u1pjexample",
        )
        info = extract_zap_info(receipt)
        assert info.sats_amount == 250000
        assert info.sats_text == "250,000 sats"

    def test_invalid_description_is_anonymous(self, make_receipt):
        info = extract_zap_info(make_receipt(description="{not json"))

        assert info.is_anonymous
        assert info.comment == ""
        assert info.sats_amount == 21

    def test_invalid_sender_is_anonymous(self, make_receipt, zap_request):
        info = extract_zap_info(make_receipt(description=zap_request(sender="nope")))
        assert info.is_anonymous

    def test_nothing_parseable(self, make_receipt):
        info = extract_zap_info(make_receipt(description="", bolt11=None))

        assert info.is_anonymous
        assert info.sats_amount == 0

    def test_carries_reference(self, make_receipt):
        target = make_receipt(created_at=1, seed="target")
        receipt = make_receipt().with_reference(target)
        assert extract_zap_info(receipt).reference == target


class TestAmountColorClass:
    """Tests for amount tiers."""

    @pytest.mark.parametrize("amount,expected", [
        (10000, "zap-amount-10k"),
        (25000, "zap-amount-10k"),
        (5000, "zap-amount-5k"),
        (1999, "zap-amount-1k"),
        (200, "zap-amount-200"),
        (199, DEFAULT_AMOUNT_CLASS),
        (0, DEFAULT_AMOUNT_CLASS),
    ])
    def test_tiers(self, amount, expected):
        assert amount_color_class(amount) == expected

    def test_disabled(self):
        assert amount_color_class(50000, enabled=False) == DISABLED_AMOUNT_CLASS
