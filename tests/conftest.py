"""
Shared test fixtures for integration tests.

These fixtures span multiple components, unlike the layer fixtures in
src/zapview/{layer}/tests/conftest.py. The relay network is in-memory:
RelayPool talks to it through its connect() hook, so the real NIP-01
framing, dedup and end-of-stream logic run unchanged.
"""

import asyncio
import hashlib
import json

import pytest

from zapview.config import ZapViewSettings


SENDER = "a" * 64
RECEIPT_ISSUER = "c" * 64
NPUB_HEX = "7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e"


def _hex_id(seed: str) -> str:
    return hashlib.sha256(seed.encode()).hexdigest()


def _matches(event, wire_filter):
    if "ids" in wire_filter and event["id"] not in wire_filter["ids"]:
        return False
    if "authors" in wire_filter and event["pubkey"] not in wire_filter["authors"]:
        return False
    if "kinds" in wire_filter and event["kind"] not in wire_filter["kinds"]:
        return False
    if "since" in wire_filter and event["created_at"] < wire_filter["since"]:
        return False
    if "until" in wire_filter and event["created_at"] > wire_filter["until"]:
        return False
    for key, values in wire_filter.items():
        if not key.startswith("#"):
            continue
        name = key[1:]
        if not any(len(tag) >= 2 and tag[0] == name and tag[1] in values for tag in event["tags"]):
            return False
    return True


# =============================================================================
# In-memory relay network
# =============================================================================


class FakeRelay:
    """One relay: stored events plus its open connections."""

    def __init__(self, url):
        self.url = url
        self.events = []
        self.requests = []
        self.connections = []

    def store(self, *events):
        self.events.extend(events)

    def query(self, filters):
        found = {}
        for wire_filter in filters:
            matching = sorted(
                (e for e in self.events if _matches(e, wire_filter)),
                key=lambda e: e["created_at"],
                reverse=True,
            )
            if "limit" in wire_filter:
                matching = matching[:wire_filter["limit"]]
            for event in matching:
                found[event["id"]] = event
        return list(found.values())

    def push(self, event):
        """Store an event and stream it to matching open subscriptions."""
        self.events.append(event)
        for connection in list(self.connections):
            connection.offer(event)


class FakeRelayConnection:
    """Websocket stand-in speaking NIP-01 for one FakeRelay."""

    def __init__(self, relay):
        self._relay = relay
        self._queue = asyncio.Queue()
        self._subscriptions = {}

    async def __aenter__(self):
        self._relay.connections.append(self)
        return self

    async def __aexit__(self, *exc):
        self._relay.connections.remove(self)
        return False

    async def send(self, message):
        frame = json.loads(message)
        if frame[0] == "REQ":
            sub_id, filters = frame[1], frame[2:]
            self._subscriptions[sub_id] = filters
            self._relay.requests.append(filters)
            for event in self._relay.query(filters):
                self._queue.put_nowait(json.dumps(["EVENT", sub_id, event]))
            self._queue.put_nowait(json.dumps(["EOSE", sub_id]))
        elif frame[0] == "CLOSE":
            self._subscriptions.pop(frame[1], None)

    def offer(self, event):
        for sub_id, filters in self._subscriptions.items():
            if any(_matches(event, f) for f in filters):
                self._queue.put_nowait(json.dumps(["EVENT", sub_id, event]))

    def __aiter__(self):
        return self

    async def __anext__(self):
        return await self._queue.get()


class FakeRelayNetwork:
    """Routes connect(url) to an in-memory relay, creating it on first use."""

    def __init__(self):
        self.relays = {}
        self.unreachable = set()

    def relay(self, url):
        if url not in self.relays:
            self.relays[url] = FakeRelay(url)
        return self.relays[url]

    def connect(self, url, **kwargs):
        if url in self.unreachable:
            raise OSError(f"connection refused: {url}")
        return FakeRelayConnection(self.relay(url))


@pytest.fixture
def relay_network():
    return FakeRelayNetwork()


# =============================================================================
# Wire event factories
# =============================================================================


@pytest.fixture
def wire_receipt():
    """Factory for kind-9735 receipts (wire form) addressed to NPUB_HEX."""

    def _make(created_at, seed=None, sender=SENDER, comment="", amount_msats=21000, e_tag=None):
        seed = seed if seed is not None else f"receipt-{created_at}"
        request = json.dumps({
            "kind": 9734,
            "pubkey": sender,
            "content": comment,
            "tags": [["p", NPUB_HEX], ["amount", str(amount_msats)]],
        })
        tags = [["p", NPUB_HEX], ["description", request]]
        if e_tag:
            tags.append(["e", e_tag])
        return {
            "id": _hex_id(seed),
            "pubkey": RECEIPT_ISSUER,
            "created_at": created_at,
            "kind": 9735,
            "tags": tags,
            "content": "",
            "sig": "0" * 128,
        }

    return _make


@pytest.fixture
def wire_note():
    """Factory for kind-1 notes (reference targets)."""

    def _make(seed, created_at=500, content="hello"):
        return {
            "id": _hex_id(seed),
            "pubkey": SENDER,
            "created_at": created_at,
            "kind": 1,
            "tags": [],
            "content": content,
            "sig": "0" * 128,
        }

    return _make


@pytest.fixture
def wire_profile():
    """Factory for kind-0 profile events."""

    def _make(pubkey=SENDER, name="alice", created_at=10):
        return {
            "id": _hex_id(f"profile-{pubkey}-{created_at}"),
            "pubkey": pubkey,
            "created_at": created_at,
            "kind": 0,
            "tags": [],
            "content": json.dumps({"name": name}),
            "sig": "0" * 128,
        }

    return _make


@pytest.fixture
def integration_settings():
    """
    Settings for end-to-end runs.

    The buffer interval is long so renders only happen at finalization.
    """
    return ZapViewSettings(
        buffer_interval_seconds=5.0,
        buffer_min_interval_seconds=5.0,
        initial_load_count=10,
        additional_load_count=10,
        load_timeout_seconds=1.0,
        eose_timeout_seconds=0.5,
        fetch_timeout_seconds=1.0,
        connect_timeout_seconds=1.0,
        profile_relays=["wss://profiles.example"],
    )
