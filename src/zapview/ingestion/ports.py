"""
Ports (interfaces) for zapview's collaborators.

The coordinator only depends on these contracts, so relays, profile
sources and the rendering layer can be swapped without touching it.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional, Protocol, Sequence

from .models import Profile, ReceiptEvent, SubscriptionFilter

EventHandler = Callable[[ReceiptEvent], None]
EndOfStreamHandler = Callable[[], None]
CancelFn = Callable[[], None]


class TransportPort(Protocol):
    """
    Publish/subscribe event retrieval.

    on_event receives one decoded event at a time in arrival order (not
    timestamp order). on_end_of_stream fires once per subscription, when
    all relays report exhaustion. The returned function cancels the
    subscription synchronously.
    """

    async def subscribe(
        self,
        relay_urls: Sequence[str],
        filters: Sequence[SubscriptionFilter],
        *,
        on_event: EventHandler,
        on_end_of_stream: EndOfStreamHandler,
    ) -> CancelFn:
        ...


class EventFetcherPort(Protocol):
    """Single-event lookup by id or author/kind filter."""

    async def fetch_event(
        self,
        relay_urls: Sequence[str],
        event_filter: SubscriptionFilter,
        timeout: Optional[float] = None,
    ) -> Optional[ReceiptEvent]:
        ...


class ProfileFetcherPort(Protocol):
    """Batch profile lookup. Missing profiles map to None."""

    async def fetch_profiles(self, pubkeys: Sequence[str]) -> Mapping[str, Optional[Profile]]:
        ...


class RenderSink(Protocol):
    """
    Rendering collaborator.

    All calls are fire-and-forget and may be sync or async. Re-delivery of
    the same event id must be harmless.

    batch_update flags:
        full_update: events is the view's complete list
        buffer_update: periodic flush of the complete list during backfill
        neither: events is a page to append
    """

    def prepend_zap(self, view_id: str, event: ReceiptEvent) -> Any:
        ...

    def batch_update(
        self,
        view_id: str,
        events: Sequence[ReceiptEvent],
        *,
        full_update: bool = False,
        buffer_update: bool = False,
    ) -> Any:
        ...

    def show_no_zaps_message(self, view_id: str) -> Any:
        ...

    def update_zap_reference(self, view_id: str, event: ReceiptEvent) -> Any:
        ...

    def set_scroll_observer(self, view_id: str, active: bool) -> Any:
        ...
