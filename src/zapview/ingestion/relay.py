"""
WebSocket relay transport (NIP-01).

Features:
    - One subscription fans out to every relay
    - Cross-relay dedup by event id within a subscription
    - Events after a relay's EOSE are flagged real-time
    - End-of-stream fires once: every relay sent EOSE, closed or failed,
      or the end-of-stream wait elapsed
    - Live subscriptions reconnect with exponential backoff once a relay
      that had reached EOSE drops

Wire format:
    client -> relay: ["REQ", sub_id, filter...], ["CLOSE", sub_id]
    relay -> client: ["EVENT", sub_id, event], ["EOSE", sub_id],
                     ["CLOSED", sub_id, reason], ["NOTICE", message]
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Mapping, Optional, Sequence

import websockets
from websockets.exceptions import ConnectionClosed, InvalidURI

from zapview.config import ZapViewSettings
from zapview.errors import ProfileFetchError, TransportError, TransportTimeout

from .models import PROFILE_KIND, Profile, ReceiptEvent, SubscriptionFilter
from .ports import CancelFn, EndOfStreamHandler, EventHandler

logger = logging.getLogger(__name__)

_subscription_ids = itertools.count(1)


class RelayState(str, Enum):
    """Per-relay state within one subscription."""
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LIVE = "live"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"
    FAILED = "failed"


class RelaySubscription:
    """
    One REQ sent to several relays.

    Usage:
        sub = RelaySubscription(
            relay_urls=["wss://relay.damus.io"],
            filters=[receipt_filter],
            on_event=handle_event,
            on_end_of_stream=handle_eose,
        )
        sub.start()
        ...
        sub.cancel()
    """

    def __init__(
        self,
        relay_urls: Sequence[str],
        filters: Sequence[SubscriptionFilter],
        on_event: EventHandler,
        on_end_of_stream: EndOfStreamHandler,
        close_on_eose: bool = False,
        eose_timeout: float = 8.0,
        connect_timeout: float = 5.0,
        initial_reconnect_delay: float = 1.0,
        max_reconnect_delay: float = 60.0,
        reconnect_multiplier: float = 2.0,
        max_seen: int = 10000,
        connect: Optional[Callable[..., Any]] = None,
    ):
        """
        Initialize the subscription.

        Args:
            relay_urls: Relays to query (duplicates ignored)
            filters: Filters sent in the REQ
            on_event: Called once per new event id
            on_end_of_stream: Called once when all relays are exhausted
            close_on_eose: One-shot lookup; close each relay after its EOSE
            eose_timeout: Seconds before end-of-stream is forced
            connect_timeout: Seconds allowed for the websocket handshake
            initial_reconnect_delay: First delay before reconnecting a live relay
            max_reconnect_delay: Maximum delay between reconnect attempts
            reconnect_multiplier: Multiplier for exponential backoff
            max_seen: Event ids remembered for dedup; oldest are forgotten first
            connect: websockets.connect replacement (tests)
        """
        self.id = f"zv{next(_subscription_ids)}"
        self._relay_urls = list(dict.fromkeys(relay_urls))
        self._filters = list(filters)
        self._on_event = on_event
        self._on_end_of_stream = on_end_of_stream
        self._close_on_eose = close_on_eose
        self._eose_timeout = eose_timeout
        self._connect_timeout = connect_timeout
        self._initial_reconnect_delay = initial_reconnect_delay
        self._max_reconnect_delay = max_reconnect_delay
        self._reconnect_multiplier = reconnect_multiplier
        self._connect = connect or websockets.connect

        self._states: dict[str, RelayState] = {
            url: RelayState.CONNECTING for url in self._relay_urls
        }
        self._max_seen = max_seen
        self._seen: OrderedDict[str, None] = OrderedDict()
        self._eose_relays: set[str] = set()
        self._done_relays: set[str] = set()
        self._terminated: set[str] = set()
        self._tasks: dict[str, asyncio.Task] = {}
        self._eose_timer: Optional[asyncio.TimerHandle] = None
        self._eose_fired = False
        self._closed = False

    @property
    def relay_states(self) -> dict[str, RelayState]:
        return dict(self._states)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def start(self) -> None:
        """Open a connection task per relay and arm the end-of-stream timer."""
        loop = asyncio.get_running_loop()
        if not self._relay_urls:
            self._fire_end_of_stream("no relays")
            return

        for url in self._relay_urls:
            self._tasks[url] = loop.create_task(
                self._run_relay(url),
                name=f"relay:{self.id}:{url}",
            )
        self._eose_timer = loop.call_later(
            self._eose_timeout,
            self._fire_end_of_stream,
            "timeout",
        )
        logger.debug(f"Subscription {self.id} opened on {len(self._relay_urls)} relays")

    def cancel(self) -> None:
        """Close the subscription on every relay. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._eose_timer:
            self._eose_timer.cancel()
            self._eose_timer = None
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        logger.debug(f"Subscription {self.id} cancelled")

    def _request_message(self) -> str:
        return json.dumps(["REQ", self.id, *[f.to_dict() for f in self._filters]])

    async def _run_relay(self, url: str) -> None:
        """Connection loop for one relay."""
        delay = self._initial_reconnect_delay

        while not self._closed:
            try:
                async with self._connect(
                    url,
                    open_timeout=self._connect_timeout,
                    close_timeout=5,
                ) as ws:
                    self._states[url] = RelayState.CONNECTED
                    delay = self._initial_reconnect_delay
                    await ws.send(self._request_message())

                    async for raw in ws:
                        if not self._handle_message(url, raw):
                            await self._send_close(ws)
                            break

            except asyncio.CancelledError:
                raise

            except ConnectionClosed as e:
                logger.warning(f"Relay {url} connection closed: {e}")

            except (OSError, InvalidURI, asyncio.TimeoutError) as e:
                logger.warning(f"Relay {url} connection failed: {e}")

            except Exception as e:
                logger.error(f"Unexpected error on relay {url}: {e}")

            if self._closed:
                break

            # Relays that never reached EOSE are given up on, not retried
            if (
                url not in self._eose_relays
                or self._close_on_eose
                or url in self._terminated
            ):
                break

            self._states[url] = RelayState.RECONNECTING
            logger.info(f"Reconnecting to {url} in {delay:.1f}s")
            await asyncio.sleep(delay)
            delay = min(delay * self._reconnect_multiplier, self._max_reconnect_delay)

        if self._states.get(url) != RelayState.CLOSED:
            self._states[url] = (
                RelayState.CLOSED if url in self._eose_relays else RelayState.FAILED
            )
        self._mark_done(url)

    async def _send_close(self, ws: Any) -> None:
        try:
            await ws.send(json.dumps(["CLOSE", self.id]))
        except Exception as e:
            logger.debug(f"Error sending CLOSE for {self.id}: {e}")

    def _handle_message(self, url: str, raw: Any) -> bool:
        """
        Handle one relay frame.

        Returns:
            False when this relay's part of the subscription is finished
        """
        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Failed to parse message from {url}: {e}")
            return True

        if not isinstance(message, list) or not message:
            logger.debug(f"Ignoring malformed frame from {url}: {str(raw)[:200]}")
            return True

        msg_type = message[0]

        if msg_type == "EVENT":
            if len(message) >= 3 and message[1] == self.id:
                self._handle_event(url, message[2])

        elif msg_type == "EOSE":
            if len(message) >= 2 and message[1] == self.id:
                self._eose_relays.add(url)
                self._states[url] = RelayState.LIVE
                logger.debug(f"EOSE from {url} for {self.id}")
                self._mark_done(url)
                return not self._close_on_eose

        elif msg_type == "CLOSED":
            if len(message) >= 2 and message[1] == self.id:
                reason = message[2] if len(message) >= 3 else ""
                logger.warning(f"Relay {url} closed subscription {self.id}: {reason}")
                self._terminated.add(url)
                self._states[url] = RelayState.CLOSED
                self._mark_done(url)
                return False

        elif msg_type == "NOTICE":
            logger.info(f"Notice from {url}: {message[1] if len(message) > 1 else ''}")

        else:
            logger.debug(f"Unknown message type '{msg_type}' from {url}")

        return True

    def _handle_event(self, url: str, data: Any) -> None:
        if self._closed:
            return

        try:
            event = ReceiptEvent.from_dict(data, is_real_time=url in self._eose_relays)
        except ValueError as e:
            logger.debug(f"Dropping malformed event from {url}: {e}")
            return

        if event.id in self._seen:
            return

        if self._filters and not any(f.matches(event) for f in self._filters):
            logger.debug(f"Event {event.id[:12]} from {url} does not match filters")
            return

        self._seen[event.id] = None
        if len(self._seen) > self._max_seen:
            self._seen.popitem(last=False)
        try:
            self._on_event(event)
        except Exception as e:
            logger.error(f"Error in event callback: {e}")

    def _mark_done(self, url: str) -> None:
        self._done_relays.add(url)
        if len(self._done_relays) >= len(self._relay_urls):
            self._fire_end_of_stream("all relays done")

    def _fire_end_of_stream(self, reason: str) -> None:
        if self._eose_fired or self._closed:
            return
        self._eose_fired = True
        if self._eose_timer:
            self._eose_timer.cancel()
            self._eose_timer = None
        logger.debug(f"End of stream for {self.id} ({reason})")
        try:
            self._on_end_of_stream()
        except Exception as e:
            logger.error(f"Error in end-of-stream callback: {e}")


class RelayPool:
    """
    Transport and secondary-fetch collaborator backed by relay websockets.

    Usage:
        pool = RelayPool(settings)
        cancel = await pool.subscribe(
            relay_urls, [receipt_filter],
            on_event=handle_event, on_end_of_stream=handle_eose,
        )
        reference = await pool.fetch_event(relay_urls, SubscriptionFilter.build(ids=[event_id]))
        cancel()
        await pool.close()
    """

    def __init__(
        self,
        settings: Optional[ZapViewSettings] = None,
        connect: Optional[Callable[..., Any]] = None,
    ):
        self._settings = settings or ZapViewSettings()
        self._connect = connect
        self._subscriptions: dict[str, RelaySubscription] = {}

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        relay_urls: Sequence[str],
        filters: Sequence[SubscriptionFilter],
        *,
        on_event: EventHandler,
        on_end_of_stream: EndOfStreamHandler,
        close_on_eose: bool = False,
        eose_timeout: Optional[float] = None,
    ) -> CancelFn:
        """
        Open a subscription on every relay.

        Raises:
            TransportError: If no relay URL is given
        """
        if not relay_urls:
            raise TransportError("No relay URLs to subscribe to")

        settings = self._settings
        subscription = RelaySubscription(
            relay_urls=relay_urls,
            filters=filters,
            on_event=on_event,
            on_end_of_stream=on_end_of_stream,
            close_on_eose=close_on_eose,
            eose_timeout=eose_timeout or settings.eose_timeout_seconds,
            connect_timeout=settings.connect_timeout_seconds,
            initial_reconnect_delay=settings.initial_reconnect_delay,
            max_reconnect_delay=settings.max_reconnect_delay,
            reconnect_multiplier=settings.reconnect_multiplier,
            max_seen=settings.seen_ids_per_subscription,
            connect=self._connect,
        )
        self._subscriptions[subscription.id] = subscription
        subscription.start()

        def cancel() -> None:
            subscription.cancel()
            self._subscriptions.pop(subscription.id, None)

        return cancel

    async def fetch_events(
        self,
        relay_urls: Sequence[str],
        event_filter: SubscriptionFilter,
        timeout: Optional[float] = None,
    ) -> list[ReceiptEvent]:
        """
        One-shot lookup: collect events until end-of-stream.

        Raises:
            TransportTimeout: If the relays never signal end-of-stream
        """
        timeout = timeout or self._settings.fetch_timeout_seconds
        events: list[ReceiptEvent] = []
        done = asyncio.Event()

        cancel = await self.subscribe(
            relay_urls,
            [event_filter],
            on_event=events.append,
            on_end_of_stream=done.set,
            close_on_eose=True,
            eose_timeout=timeout,
        )
        try:
            # The subscription forces end-of-stream at `timeout`; the extra
            # second only catches a transport that never reports at all.
            await asyncio.wait_for(done.wait(), timeout=timeout + 1.0)
        except asyncio.TimeoutError:
            raise TransportTimeout(f"No end-of-stream within {timeout}s") from None
        finally:
            cancel()
        return events

    async def fetch_event(
        self,
        relay_urls: Sequence[str],
        event_filter: SubscriptionFilter,
        timeout: Optional[float] = None,
    ) -> Optional[ReceiptEvent]:
        """Newest event matching the filter, or None."""
        events = await self.fetch_events(relay_urls, event_filter.with_limit(1), timeout)
        if not events:
            return None
        return max(events, key=lambda e: e.created_at)

    async def close(self) -> None:
        """Cancel every open subscription."""
        for subscription in list(self._subscriptions.values()):
            subscription.cancel()
        self._subscriptions.clear()


class RelayProfileFetcher:
    """Profile collaborator backed by kind-0 lookups on profile relays."""

    def __init__(
        self,
        pool: RelayPool,
        relay_urls: Sequence[str],
        timeout: Optional[float] = None,
    ):
        self._pool = pool
        self._relay_urls = list(relay_urls)
        self._timeout = timeout

    async def fetch_profiles(self, pubkeys: Sequence[str]) -> Mapping[str, Optional[Profile]]:
        """
        Newest profile per pubkey.

        Raises:
            ProfileFetchError: If the relays cannot be queried
        """
        unique = list(dict.fromkeys(pubkeys))
        if not unique:
            return {}

        try:
            events = await self._pool.fetch_events(
                self._relay_urls,
                SubscriptionFilter.build(kinds=[PROFILE_KIND], authors=unique),
                self._timeout,
            )
        except TransportError as e:
            raise ProfileFetchError(f"Profile lookup failed: {e}") from e

        newest: dict[str, ReceiptEvent] = {}
        for event in events:
            current = newest.get(event.pubkey)
            if current is None or event.created_at > current.created_at:
                newest[event.pubkey] = event

        profiles: dict[str, Optional[Profile]] = {}
        for pubkey in unique:
            event = newest.get(pubkey)
            if event is None:
                profiles[pubkey] = None
                continue
            try:
                profiles[pubkey] = Profile.from_event(event)
            except ValueError as e:
                logger.debug(f"Invalid profile for {pubkey[:12]}: {e}")
                profiles[pubkey] = None
        return profiles
