"""
zapview - command-line entry point.

Opens one view against live relays, prints the receipts it collects,
loads older pages and tears the view down.

Usage:
    python -m zapview.main --relay wss://relay.damus.io --identifier npub1...
    python -m zapview.main --relay wss://nos.lol --relay wss://relay.damus.io \\
        --identifier note1... --pages 3 --follow 30

Environment Variables:
    LOG_LEVEL                       Logging level (DEBUG/INFO/WARNING/ERROR)
    ZAPVIEW_INITIAL_LOAD_COUNT      Events requested by the backfill (default: 15)
    ZAPVIEW_ADDITIONAL_LOAD_COUNT   Events per older page (default: 20)
    ZAPVIEW_LOAD_TIMEOUT_SECONDS    Timeout per page (default: 10)
    ZAPVIEW_EOSE_TIMEOUT_SECONDS    End-of-stream wait per subscription (default: 8)
    ZAPVIEW_PROFILE_RELAYS          JSON list of relays queried for profiles

Exit status:
    0 on success, 1 on unexpected failure, 2 on invalid configuration or
    identifier.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence

from pydantic import ValidationError

from zapview.cache import CacheStore
from zapview.config import ViewerConfig, ZapViewSettings
from zapview.core import ProfileResolver, ReferenceResolver, SubscriptionCoordinator
from zapview.errors import ConfigError, DecodeError
from zapview.ingestion import (
    ReceiptEvent,
    RelayPool,
    RelayProfileFetcher,
    amount_color_class,
    encode_npub,
    format_identifier,
)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

VIEW_ID = "cli"


class ConsoleRenderer:
    """Renders view updates as lines on stdout."""

    def __init__(
        self,
        coordinator: SubscriptionCoordinator,
        caches: CacheStore,
        color_mode: bool = True,
        stream=None,
    ):
        self._coordinator = coordinator
        self._caches = caches
        self._color_mode = color_mode
        self._stream = stream or sys.stdout
        self._printed: set[str] = set()

    def _line(self, event: ReceiptEvent) -> str:
        info = self._coordinator.zap_info(event)
        when = datetime.fromtimestamp(event.created_at, tz=timezone.utc)

        if info.is_anonymous:
            sender = "anonymous"
        else:
            profile = self._caches.profiles.get_profile(info.sender_pubkey)
            sender = (profile.label if profile else None) or format_identifier(
                encode_npub(info.sender_pubkey)
            )

        tier = amount_color_class(info.sats_amount, self._color_mode)
        line = f"{when:%Y-%m-%d %H:%M:%S} {info.sats_text:>14} [{tier}] {sender}"
        if info.comment:
            line += f": {info.comment}"
        return line

    def _print(self, text: str) -> None:
        print(text, file=self._stream)

    def _print_new(self, events: Sequence[ReceiptEvent]) -> None:
        for event in events:
            if event.id in self._printed:
                continue
            self._printed.add(event.id)
            self._print(self._line(event))

    def prepend_zap(self, view_id: str, event: ReceiptEvent) -> None:
        if event.id in self._printed:
            return
        self._printed.add(event.id)
        self._print(f"LIVE {self._line(event)}")

    def batch_update(
        self,
        view_id: str,
        events: Sequence[ReceiptEvent],
        *,
        full_update: bool = False,
        buffer_update: bool = False,
    ) -> None:
        self._print_new(events)

    def show_no_zaps_message(self, view_id: str) -> None:
        self._print("No zaps yet.")

    def update_zap_reference(self, view_id: str, event: ReceiptEvent) -> None:
        if event.reference is not None:
            logger.debug(f"Receipt {event.id[:12]} references {event.reference.id[:12]}")

    def set_scroll_observer(self, view_id: str, active: bool) -> None:
        logger.debug(f"Scroll observer {'armed' if active else 'disarmed'} for {view_id}")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Stream zap receipts for a profile, note or addressable event",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--relay",
        dest="relays",
        action="append",
        default=[],
        help="Relay URL (repeatable)",
    )
    parser.add_argument(
        "--identifier",
        required=True,
        help="Target identifier (npub, nprofile, note, nevent, naddr)",
    )
    parser.add_argument(
        "--pages",
        type=int,
        default=0,
        help="Older pages to load after the backfill (default: 0)",
    )
    parser.add_argument(
        "--follow",
        type=float,
        default=0.0,
        help="Seconds to keep streaming live receipts (default: 0)",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable amount tiers",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level",
    )
    return parser.parse_args(argv)


async def main_async(args: argparse.Namespace) -> int:
    """Async main function."""
    try:
        settings = ZapViewSettings()
    except ValidationError as e:
        logger.error(f"Invalid settings: {e}")
        return 2

    config = ViewerConfig(
        relay_urls=tuple(args.relays),
        identifier=args.identifier,
        color_mode=not args.no_color,
    )

    caches = CacheStore(settings)
    pool = RelayPool(settings)
    coordinator = SubscriptionCoordinator(
        transport=pool,
        caches=caches,
        reference_resolver=ReferenceResolver(
            fetcher=pool,
            cache=caches.references,
            timeout=settings.fetch_timeout_seconds,
        ),
        profile_resolver=ProfileResolver(
            fetcher=RelayProfileFetcher(
                pool,
                settings.profile_relays,
                timeout=settings.fetch_timeout_seconds,
            ),
            cache=caches.profiles,
        ),
        settings=settings,
    )
    coordinator.set_renderer(ConsoleRenderer(coordinator, caches, config.color_mode))

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, shutdown.set)
    except NotImplementedError:
        # Windows doesn't support add_signal_handler
        pass

    try:
        await coordinator.open_view(VIEW_ID, config)

        for page in range(args.pages):
            if shutdown.is_set():
                break
            count = await coordinator.handle_scroll_proximity(VIEW_ID)
            logger.info(f"Page {page + 1}: {count} older receipts")
            if count == 0:
                break

        if args.follow > 0 and not shutdown.is_set():
            try:
                await asyncio.wait_for(shutdown.wait(), timeout=args.follow)
            except asyncio.TimeoutError:
                pass

        await coordinator.wait_background(VIEW_ID)
        logger.info(f"Total receipts: {caches.events.count(VIEW_ID)}")
        return 0
    except (ConfigError, DecodeError) as e:
        logger.error(str(e))
        return 2
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        coordinator.unsubscribe(VIEW_ID)
        await coordinator.close()
        await pool.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.log_level:
        logging.getLogger().setLevel(getattr(logging, args.log_level))

    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
