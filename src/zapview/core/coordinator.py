"""
Subscription Coordinator - the per-view control loop.

Phases per view:
1. Initial collection: one live subscription for the view's target. Every
   event goes through EventStore dedup; accepted events move the cursor,
   real-time ones are rendered immediately and a BufferedFlusher renders
   the full list periodically while the backfill streams in.
2. Finalization (on end-of-stream): mark the backfill complete, show the
   empty state or arm infinite scroll.
3. Backward pagination: on scroll proximity, a bounded subscription below
   the cursor collects one batch, merges it and reports how many events
   were accepted. Zero means exhausted.

Error policy:
    - ConfigError / DecodeError at start are raised to the caller before
      any subscription opens
    - a failed pagination batch (timeout, transport error) is logged and
      counts as zero loaded
    - enrichment and renderer failures are logged, never propagated

Teardown (unsubscribe) is synchronous: the live subscription, flusher,
in-flight page and background tasks are cancelled and scroll is disarmed.
Cached events are kept so reopening a view is instant.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Coroutine, Optional, Sequence

from zapview.cache import CacheStore, LoadPhase
from zapview.config import ViewerConfig, ZapViewSettings
from zapview.errors import ConfigError, TransportTimeout
from zapview.ingestion.identifier import DecodedTarget, decode_identifier
from zapview.ingestion.models import ReceiptEvent
from zapview.ingestion.ports import CancelFn, RenderSink, TransportPort
from zapview.ingestion.receipts import ZapInfo, extract_zap_info

from .buffer import BufferedFlusher
from .enrichment import ProfileResolver, ReferenceResolver

logger = logging.getLogger(__name__)


@dataclass
class CoordinatorStats:
    """Runtime statistics for the coordinator."""

    events_received: int = 0
    events_accepted: int = 0
    duplicates_rejected: int = 0
    real_time_events: int = 0
    buffer_flushes: int = 0
    pages_loaded: int = 0
    pagination_failures: int = 0
    render_errors: int = 0


@dataclass
class _ViewRuntime:
    """Live resources of one open view."""

    relay_urls: tuple[str, ...]
    target: DecodedTarget
    cancel: Optional[CancelFn] = None
    flusher: Optional[BufferedFlusher] = None
    batch: list[ReceiptEvent] = field(default_factory=list)
    end_of_stream: asyncio.Event = field(default_factory=asyncio.Event)
    pagination_task: Optional[asyncio.Task] = None
    page_cancel: Optional[CancelFn] = None
    page_done: Optional[asyncio.Event] = None
    closed: bool = False


class SubscriptionCoordinator:
    """
    Orchestrates backfill, live streaming and pagination for every view.

    Usage:
        coordinator = SubscriptionCoordinator(
            transport=RelayPool(settings),
            caches=CacheStore(settings),
            renderer=my_renderer,
        )

        await coordinator.open_view("view-0", config)   # returns after backfill
        count = await coordinator.handle_scroll_proximity("view-0")

        coordinator.unsubscribe("view-0")
        await coordinator.close()
    """

    def __init__(
        self,
        transport: TransportPort,
        caches: CacheStore,
        renderer: Optional[RenderSink] = None,
        reference_resolver: Optional[ReferenceResolver] = None,
        profile_resolver: Optional[ProfileResolver] = None,
        settings: Optional[ZapViewSettings] = None,
    ) -> None:
        """
        Initialize the coordinator.

        Args:
            transport: Subscription collaborator (RelayPool in production)
            caches: Session cache registry
            renderer: Rendering collaborator (can be set later)
            reference_resolver: Optional secondary-event enrichment
            profile_resolver: Optional sender profile enrichment
            settings: Tunables (defaults from environment)
        """
        self._transport = transport
        self._caches = caches
        self._renderer = renderer
        self._reference_resolver = reference_resolver
        self._profile_resolver = profile_resolver
        self._settings = settings or ZapViewSettings()

        self._configs: dict[str, ViewerConfig] = {}
        self._views: dict[str, _ViewRuntime] = {}
        self._tasks: dict[str, set[asyncio.Task]] = {}
        self._scroll_armed: set[str] = set()

        self.stats = CoordinatorStats()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_renderer(self, renderer: Optional[RenderSink]) -> None:
        self._renderer = renderer

    def set_view_config(self, view_id: str, config: ViewerConfig) -> None:
        self._configs[view_id] = config

    def get_view_config(self, view_id: str) -> Optional[ViewerConfig]:
        return self._configs.get(view_id)

    def is_active(self, view_id: str) -> bool:
        """Whether the view has a live subscription."""
        return view_id in self._views

    def _require_config(self, view_id: str) -> ViewerConfig:
        config = self._configs.get(view_id)
        if config is None:
            raise ConfigError(f"No configuration for view {view_id}")
        config.validate()
        return config

    def decode_target(self, identifier: str) -> DecodedTarget:
        """Decode (memoized) a target identifier. Raises DecodeError."""
        target = self._caches.decoded.get(identifier, None)
        if target is None:
            target = self._caches.decoded.set(identifier, decode_identifier(identifier))
        return target

    def zap_info(self, event: ReceiptEvent) -> ZapInfo:
        """Extracted receipt facts, memoized per event id."""
        info = self._caches.zap_info.get(event.id, None)
        if info is None or (info.reference is None and event.reference is not None):
            info = self._caches.zap_info.set(event.id, extract_zap_info(event))
        return info

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open_view(self, view_id: str, config: Optional[ViewerConfig] = None) -> None:
        """
        Show a view: render what is cached, then run the initial collection.

        Raises:
            ConfigError: If the view has no valid configuration
            DecodeError: If the target identifier is malformed
        """
        if config is not None:
            self.set_view_config(view_id, config)
        config = self._require_config(view_id)
        self.decode_target(config.identifier)

        if self.is_active(view_id):
            self.unsubscribe(view_id)

        cached = self._caches.events.get_events(view_id)
        if cached:
            logger.info(f"View {view_id}: warm start with {len(cached)} cached events")
            self._notify(view_id, "batch_update", cached, full_update=True)
            if self._profile_resolver is not None:
                self._spawn(view_id, self._resolve_profiles(view_id, cached))
            if self._caches.has_enough_cached_events(view_id, self._settings.initial_load_count):
                self.setup_infinite_scroll(view_id)

        await self.initialize_subscriptions(view_id)

    async def initialize_subscriptions(self, view_id: str) -> None:
        """
        Run the initial collection and finalize it.

        Returns once the transport signals end-of-stream (or the view is
        torn down meanwhile). The subscription stays open for live events.

        Raises:
            ConfigError: If the view has no valid configuration
            DecodeError: If the target identifier is malformed
        """
        config = self._require_config(view_id)
        target = self.decode_target(config.identifier)

        previous = self._views.pop(view_id, None)
        if previous is not None:
            self._close_runtime(previous)

        runtime = _ViewRuntime(relay_urls=tuple(config.relay_urls), target=target)
        self._views[view_id] = runtime

        self._caches.load_states.begin_backfill(
            view_id,
            seed_cursor=self._caches.events.oldest_created_at(view_id),
        )

        runtime.flusher = BufferedFlusher(
            flush=lambda: self._flush_buffer(view_id, runtime),
            interval=self._settings.buffer_interval_seconds,
            min_interval=self._settings.buffer_min_interval_seconds,
            name=f"buffer_flush:{view_id}",
        )
        runtime.flusher.start()

        receipt_filter = target.to_receipt_filter(limit=self._settings.initial_load_count)
        try:
            runtime.cancel = await self._transport.subscribe(
                runtime.relay_urls,
                [receipt_filter],
                on_event=lambda event: self._handle_event(view_id, runtime, event),
                on_end_of_stream=lambda: self._handle_end_of_stream(view_id, runtime),
            )
        except Exception as e:
            logger.error(f"View {view_id}: subscription failed: {e}")
            if self._views.get(view_id) is runtime:
                self.unsubscribe(view_id)
            else:
                self._close_runtime(runtime)
            raise

        if runtime.closed:
            # Torn down while the subscription was being set up
            runtime.cancel()
            return

        logger.info(
            f"View {view_id}: subscribed to {target.type} receipts "
            f"on {len(runtime.relay_urls)} relays"
        )

        await runtime.end_of_stream.wait()
        if runtime.closed:
            return
        await self.finalize_initialization(view_id)

    async def finalize_initialization(
        self,
        view_id: str,
        last_event_time: Optional[int] = None,
    ) -> None:
        """Complete the backfill: render the batch, then empty state or scroll."""
        runtime = self._views.get(view_id)
        if runtime is not None:
            batch, runtime.batch = runtime.batch, []
            if batch:
                await self._process_batch(view_id, runtime, batch)
            if runtime.closed:
                return

        state = self._caches.load_states.complete_backfill(view_id, last_event_time)
        count = self._caches.events.count(view_id)

        if count == 0:
            self._notify(view_id, "show_no_zaps_message")
        elif count >= self._settings.initial_load_count:
            self.setup_infinite_scroll(view_id)

        logger.info(
            f"View {view_id}: backfill complete, {count} events, "
            f"cursor={state.last_event_time}"
        )

    def unsubscribe(self, view_id: str) -> None:
        """Tear a view down. Cached events are kept."""
        runtime = self._views.pop(view_id, None)
        if runtime is not None:
            self._close_runtime(runtime)

        for task in self._tasks.pop(view_id, set()):
            if not task.done():
                task.cancel()

        self._cleanup_infinite_scroll(view_id)
        self._caches.load_states.discard(view_id)
        if runtime is not None:
            logger.info(f"View {view_id}: unsubscribed")

    async def close(self) -> None:
        """Tear down every view and wait for cancelled tasks to finish."""
        tasks = [t for group in self._tasks.values() for t in group]
        tasks.extend(
            runtime.pagination_task for runtime in self._views.values()
            if runtime.pagination_task is not None
        )
        for view_id in list(self._views) + list(self._tasks):
            self.unsubscribe(view_id)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Coordinator closed: {self.stats}")

    def _close_runtime(self, runtime: _ViewRuntime) -> None:
        runtime.closed = True
        if runtime.cancel is not None:
            runtime.cancel()
            runtime.cancel = None
        if runtime.flusher is not None:
            runtime.flusher.stop()
        if runtime.page_cancel is not None:
            runtime.page_cancel()
            runtime.page_cancel = None
        if runtime.page_done is not None:
            runtime.page_done.set()
        if runtime.pagination_task is not None and not runtime.pagination_task.done():
            runtime.pagination_task.cancel()
        runtime.end_of_stream.set()

    # -------------------------------------------------------------------------
    # Initial collection
    # -------------------------------------------------------------------------

    def _handle_event(self, view_id: str, runtime: _ViewRuntime, event: ReceiptEvent) -> None:
        """Ingest one event from the live subscription."""
        if runtime.closed:
            return
        self.stats.events_received += 1

        if not self._caches.events.add_event(view_id, event):
            self.stats.duplicates_rejected += 1
            return

        self.stats.events_accepted += 1
        self._caches.load_states.advance_cursor(view_id, event.created_at)
        self.zap_info(event)

        if not runtime.target.is_event and self._reference_resolver is not None:
            self._spawn(view_id, self._enrich_reference(view_id, runtime, event))

        if event.is_real_time:
            self.stats.real_time_events += 1
            self._notify(view_id, "prepend_zap", event)

        if not runtime.end_of_stream.is_set():
            runtime.batch.append(event)
            if runtime.flusher is not None:
                runtime.flusher.mark_pending()
        elif not event.is_real_time:
            # Stored event from a slow relay after the backfill finished
            self._notify(
                view_id,
                "batch_update",
                self._caches.events.get_events(view_id),
                full_update=True,
            )

    def _handle_end_of_stream(self, view_id: str, runtime: _ViewRuntime) -> None:
        if runtime.closed or runtime.end_of_stream.is_set():
            return
        if runtime.flusher is not None:
            runtime.flusher.stop()
        runtime.end_of_stream.set()
        logger.debug(f"View {view_id}: end of stream after {len(runtime.batch)} events")

    def _flush_buffer(self, view_id: str, runtime: _ViewRuntime) -> None:
        if runtime.closed:
            return
        self.stats.buffer_flushes += 1
        self._notify(
            view_id,
            "batch_update",
            self._caches.events.get_events(view_id),
            buffer_update=True,
        )

    async def _process_batch(
        self,
        view_id: str,
        runtime: _ViewRuntime,
        events: Sequence[ReceiptEvent],
    ) -> None:
        """Resolve sender profiles, then render the full list."""
        await self._resolve_profiles(view_id, events)
        if runtime.closed:
            return
        self._notify(
            view_id,
            "batch_update",
            self._caches.events.get_events(view_id),
            full_update=True,
        )

    # -------------------------------------------------------------------------
    # Infinite scroll
    # -------------------------------------------------------------------------

    def setup_infinite_scroll(self, view_id: str) -> bool:
        """
        Arm scroll observation for a view.

        Returns:
            False if the view is exhausted
        """
        load_states = self._caches.load_states
        if load_states.has(view_id) and load_states.get(view_id).is_exhausted:
            logger.debug(f"View {view_id}: exhausted, scroll not armed")
            return False
        if view_id in self._scroll_armed:
            return True
        self._scroll_armed.add(view_id)
        self._notify(view_id, "set_scroll_observer", True)
        return True

    def is_scroll_armed(self, view_id: str) -> bool:
        return view_id in self._scroll_armed

    def _cleanup_infinite_scroll(self, view_id: str) -> None:
        if view_id not in self._scroll_armed:
            return
        self._scroll_armed.discard(view_id)
        self._notify(view_id, "set_scroll_observer", False)

    async def handle_scroll_proximity(self, view_id: str) -> int:
        """
        Scroll-proximity trigger: load one page, disarm on exhaustion.

        A trigger while the backfill or a page is still running does not
        disarm observation.
        """
        count = await self.load_more(view_id)
        if count > 0:
            return count

        load_states = self._caches.load_states
        phase = load_states.get(view_id).phase if load_states.has(view_id) else None
        if phase not in (LoadPhase.BACKFILLING, LoadPhase.PAGINATING):
            self._cleanup_infinite_scroll(view_id)
        return count

    # -------------------------------------------------------------------------
    # Backward pagination
    # -------------------------------------------------------------------------

    async def load_more(self, view_id: str) -> int:
        """
        Load one page of older events.

        A call while a page is in flight waits for that page's result
        instead of opening a second subscription.

        Returns:
            Number of newly accepted events (0 = nothing more, or refused)
        """
        runtime = self._views.get(view_id)
        if runtime is None:
            logger.warning(f"Cannot load more for {view_id}: view not open")
            return 0

        if runtime.pagination_task is not None and not runtime.pagination_task.done():
            return await self._await_page(runtime.pagination_task)

        if not self._caches.load_states.begin_pagination(view_id):
            return 0

        config = self._configs[view_id]
        runtime.pagination_task = asyncio.get_running_loop().create_task(
            self._run_pagination(view_id, runtime, config),
            name=f"load_more:{view_id}",
        )
        return await self._await_page(runtime.pagination_task)

    async def _await_page(self, task: asyncio.Task) -> int:
        """Wait for a page without cancelling it; a torn-down page counts as 0."""
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return 0
            raise

    async def _run_pagination(
        self,
        view_id: str,
        runtime: _ViewRuntime,
        config: ViewerConfig,
    ) -> int:
        loaded = 0
        try:
            loaded = await self._execute_load_more(view_id, runtime, config)
        except asyncio.CancelledError:
            raise
        except TransportTimeout as e:
            self.stats.pagination_failures += 1
            logger.warning(f"View {view_id}: load more timed out: {e}")
        except Exception as e:
            self.stats.pagination_failures += 1
            logger.error(f"View {view_id}: load more failed: {e}")
        finally:
            if not runtime.closed:
                self._caches.load_states.finish_pagination(view_id, loaded)

        if runtime.closed:
            return 0

        if loaded:
            self.stats.pages_loaded += 1
        logger.info(f"View {view_id}: loaded {loaded} older events")
        return loaded

    async def _execute_load_more(
        self,
        view_id: str,
        runtime: _ViewRuntime,
        config: ViewerConfig,
    ) -> int:
        cursor = self._caches.load_states.get(view_id).last_event_time
        batch_size = self._settings.additional_load_count
        timeout = self._settings.load_timeout_seconds

        staged: list[ReceiptEvent] = []
        done = asyncio.Event()
        runtime.page_done = done

        def on_event(event: ReceiptEvent) -> None:
            if done.is_set() or event.created_at > cursor:
                return
            staged.append(event)
            if len(staged) >= batch_size:
                done.set()

        page_filter = runtime.target.to_receipt_filter(until=cursor, limit=batch_size)
        cancel = await self._transport.subscribe(
            runtime.relay_urls,
            [page_filter],
            on_event=on_event,
            on_end_of_stream=done.set,
        )
        runtime.page_cancel = cancel
        try:
            await asyncio.wait_for(done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise TransportTimeout(
                f"page below {cursor} incomplete after {timeout}s "
                f"({len(staged)} events discarded)"
            ) from None
        finally:
            cancel()
            runtime.page_cancel = None
            runtime.page_done = None

        if runtime.closed:
            return 0

        accepted: list[ReceiptEvent] = []
        for event in staged:
            self.stats.events_received += 1
            if self._caches.events.add_event(view_id, event):
                self._caches.load_states.advance_cursor(view_id, event.created_at)
                self.zap_info(event)
                accepted.append(event)
            else:
                self.stats.duplicates_rejected += 1
        self.stats.events_accepted += len(accepted)

        if not accepted:
            return 0

        await self._resolve_profiles(view_id, accepted)
        if runtime.closed:
            return 0
        accepted.sort(key=lambda e: e.created_at, reverse=True)
        self._notify(view_id, "batch_update", accepted)

        if not runtime.target.is_event and self._reference_resolver is not None:
            resolved = await self._reference_resolver.resolve_batch(accepted, runtime.relay_urls)
            for event_id, reference in resolved.items():
                self._apply_reference(view_id, runtime, event_id, reference)

        return len(accepted)

    # -------------------------------------------------------------------------
    # Enrichment
    # -------------------------------------------------------------------------

    async def _enrich_reference(
        self,
        view_id: str,
        runtime: _ViewRuntime,
        event: ReceiptEvent,
    ) -> None:
        try:
            reference = await self._reference_resolver.resolve(event, runtime.relay_urls)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Reference enrichment failed for {event.id[:12]}: {e}")
            return
        if reference is not None:
            self._apply_reference(view_id, runtime, event.id, reference)

    def _apply_reference(
        self,
        view_id: str,
        runtime: _ViewRuntime,
        event_id: str,
        reference: ReceiptEvent,
    ) -> None:
        if runtime.closed:
            return
        updated = self._caches.events.attach_reference(view_id, event_id, reference)
        if updated is None:
            return
        self.zap_info(updated)
        self._notify(view_id, "update_zap_reference", updated)

    async def _resolve_profiles(self, view_id: str, events: Sequence[ReceiptEvent]) -> dict:
        if self._profile_resolver is None:
            return {}
        senders = [
            info.sender_pubkey
            for info in (self.zap_info(e) for e in events)
            if not info.is_anonymous
        ]
        if not senders:
            return {}
        try:
            return await self._profile_resolver.resolve_batch(senders)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"View {view_id}: profile resolution failed: {e}")
            return {}

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _notify(self, view_id: str, method: str, *args: Any, **kwargs: Any) -> None:
        """Fire-and-forget renderer call; sync or async renderers both work."""
        renderer = self._renderer
        if renderer is None:
            return
        try:
            result = getattr(renderer, method)(view_id, *args, **kwargs)
        except Exception as e:
            self.stats.render_errors += 1
            logger.error(f"Renderer {method} failed for {view_id}: {e}")
            return
        if inspect.isawaitable(result):
            self._spawn(view_id, self._await_render(view_id, method, result))

    async def _await_render(self, view_id: str, method: str, result: Any) -> None:
        try:
            await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.render_errors += 1
            logger.error(f"Renderer {method} failed for {view_id}: {e}")

    def _spawn(self, view_id: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        tasks = self._tasks.setdefault(view_id, set())
        tasks.add(task)
        task.add_done_callback(tasks.discard)
        return task

    async def wait_background(self, view_id: str) -> None:
        """Wait for a view's enrichment and render tasks to settle."""
        while True:
            pending = [t for t in self._tasks.get(view_id, set()) if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
