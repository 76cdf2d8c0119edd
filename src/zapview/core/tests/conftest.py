"""
Core layer test fixtures.

Core tests verify orchestration logic, so the transport is a scripted
in-memory fake and the renderer records every call.
"""

import asyncio
import hashlib
import json

import pytest

from zapview.cache import CacheStore
from zapview.config import ViewerConfig, ZapViewSettings
from zapview.core import SubscriptionCoordinator
from zapview.ingestion.models import ZAP_RECEIPT_KIND, ReceiptEvent


SENDER = "a" * 64
RECEIPT_ISSUER = "c" * 64
NPUB = "npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg"
NPUB_HEX = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"
RELAY = "wss://relay.example"


def _hex_id(seed: str) -> str:
    return hashlib.sha256(seed.encode()).hexdigest()


# =============================================================================
# Fake Transport
# =============================================================================


class FakeSubscription:
    """One subscribe() call: its filters and handlers."""

    def __init__(self, relay_urls, filters, on_event, on_end_of_stream):
        self.relay_urls = list(relay_urls)
        self.filters = list(filters)
        self._on_event = on_event
        self._on_end_of_stream = on_end_of_stream
        self.cancelled = False
        self.ended = False

    def deliver(self, event):
        if not self.cancelled:
            self._on_event(event)

    def end(self):
        if not self.cancelled and not self.ended:
            self.ended = True
            self._on_end_of_stream()

    def cancel(self):
        self.cancelled = True


class FakeTransport:
    """
    Scripted transport.

    Each subscribe() consumes the next script, if any, and replays its
    events (then end-of-stream) on the next loop iterations.
    """

    def __init__(self):
        self.subscriptions = []
        self._scripts = []
        self.fail_next = None

    def script(self, events=(), eose=True):
        self._scripts.append((list(events), eose))

    async def subscribe(self, relay_urls, filters, *, on_event, on_end_of_stream):
        if self.fail_next is not None:
            error, self.fail_next = self.fail_next, None
            raise error

        subscription = FakeSubscription(relay_urls, filters, on_event, on_end_of_stream)
        self.subscriptions.append(subscription)

        if self._scripts:
            events, eose = self._scripts.pop(0)
            loop = asyncio.get_running_loop()
            for event in events:
                loop.call_soon(subscription.deliver, event)
            if eose:
                loop.call_soon(subscription.end)
        return subscription.cancel

    @property
    def last(self):
        return self.subscriptions[-1]


# =============================================================================
# Recording Renderers
# =============================================================================


class RecordingRenderer:
    """Synchronous renderer that records every call."""

    def __init__(self):
        self.calls = []

    def _record(self, method, view_id, *args, **kwargs):
        self.calls.append((method, view_id, args, kwargs))

    def prepend_zap(self, view_id, event):
        self._record("prepend_zap", view_id, event)

    def batch_update(self, view_id, events, *, full_update=False, buffer_update=False):
        self._record(
            "batch_update",
            view_id,
            list(events),
            full_update=full_update,
            buffer_update=buffer_update,
        )

    def show_no_zaps_message(self, view_id):
        self._record("show_no_zaps_message", view_id)

    def update_zap_reference(self, view_id, event):
        self._record("update_zap_reference", view_id, event)

    def set_scroll_observer(self, view_id, active):
        self._record("set_scroll_observer", view_id, active)

    def of(self, method):
        return [call for call in self.calls if call[0] == method]

    def full_updates(self):
        return [call[2][0] for call in self.of("batch_update") if call[3]["full_update"]]

    def buffer_updates(self):
        return [call[2][0] for call in self.of("batch_update") if call[3]["buffer_update"]]

    def pages(self):
        return [
            call[2][0] for call in self.of("batch_update")
            if not call[3]["full_update"] and not call[3]["buffer_update"]
        ]

    def scroll_states(self):
        return [call[2][0] for call in self.of("set_scroll_observer")]


class AsyncRecordingRenderer(RecordingRenderer):
    """Renderer whose methods are coroutines."""

    async def prepend_zap(self, view_id, event):
        await asyncio.sleep(0)
        self._record("prepend_zap", view_id, event)

    async def show_no_zaps_message(self, view_id):
        raise RuntimeError("render failed")


# =============================================================================
# Event Fixtures
# =============================================================================


@pytest.fixture
def make_receipt():
    """Factory for receipt events addressed to NPUB_HEX."""

    def _make(created_at, seed=None, real_time=False, sender=SENDER, e_tag=None):
        seed = seed if seed is not None else f"receipt-{created_at}"
        request = json.dumps({
            "kind": 9734,
            "pubkey": sender,
            "content": f"comment {seed}",
            "tags": [["amount", "21000"]],
        })
        tags = [("p", NPUB_HEX), ("description", request)]
        if e_tag:
            tags.append(("e", e_tag))
        return ReceiptEvent(
            id=_hex_id(seed),
            created_at=created_at,
            kind=ZAP_RECEIPT_KIND,
            pubkey=RECEIPT_ISSUER,
            content="",
            tags=tuple(tags),
            is_real_time=real_time,
        )

    return _make


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def settings():
    """Small counts and short timers for fast tests."""
    return ZapViewSettings(
        buffer_interval_seconds=0.01,
        buffer_min_interval_seconds=0.01,
        initial_load_count=3,
        additional_load_count=5,
        load_timeout_seconds=0.2,
        eose_timeout_seconds=0.1,
        fetch_timeout_seconds=0.2,
    )


@pytest.fixture
def caches(settings):
    return CacheStore(settings)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def renderer():
    return RecordingRenderer()


@pytest.fixture
def config():
    return ViewerConfig(relay_urls=(RELAY,), identifier=NPUB)


@pytest.fixture
def coordinator(transport, caches, renderer, settings):
    return SubscriptionCoordinator(
        transport=transport,
        caches=caches,
        renderer=renderer,
        settings=settings,
    )


@pytest.fixture
def async_renderer():
    return AsyncRecordingRenderer()
