"""
Configuration for zapview.

Two layers:
    - ZapViewSettings: process-wide tunables, loaded from environment
      variables (ZAPVIEW_*) or a .env file
    - ViewerConfig: per-view configuration (relays + target identifier)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError

DEFAULT_PROFILE_RELAYS = [
    "wss://purplepag.es",
    "wss://relay.nostr.band",
    "wss://relay.damus.io",
]


class ZapViewSettings(BaseSettings):
    """Process-wide settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_prefix="ZAPVIEW_",
        env_file=".env",
        extra="ignore",
    )

    # Buffered flush during the initial collection
    buffer_interval_seconds: float = 0.5
    buffer_min_interval_seconds: float = 0.5

    # Pagination
    initial_load_count: int = 15
    additional_load_count: int = 20
    load_timeout_seconds: float = 10.0

    # Transport (eose_timeout_seconds must be below load_timeout_seconds)
    eose_timeout_seconds: float = 8.0
    fetch_timeout_seconds: float = 5.0
    connect_timeout_seconds: float = 5.0
    initial_reconnect_delay: float = 1.0
    max_reconnect_delay: float = 60.0
    reconnect_multiplier: float = 2.0
    seen_ids_per_subscription: int = 10000

    # Cache capacities
    event_cache_views: int = 100
    load_state_views: int = 100
    reference_cache_size: int = 1000
    profile_cache_size: int = 1000
    zap_info_cache_size: int = 1000
    decoded_cache_size: int = 100

    profile_relays: list[str] = DEFAULT_PROFILE_RELAYS

    @model_validator(mode="after")
    def check_timeouts(self) -> "ZapViewSettings":
        if self.eose_timeout_seconds >= self.load_timeout_seconds:
            raise ValueError(
                f"eose_timeout_seconds ({self.eose_timeout_seconds}) must be below "
                f"load_timeout_seconds ({self.load_timeout_seconds})"
            )
        return self


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("false", "0", "no", "off")


@dataclass(frozen=True)
class ViewerConfig:
    """
    Configuration for one view (one modal/list instance).

    Attributes:
        relay_urls: Relays to query, in priority order
        identifier: NIP-19 target identifier (npub, note, nevent, naddr, ...)
        color_mode: Whether amounts are tinted by tier
    """
    relay_urls: tuple[str, ...]
    identifier: str
    color_mode: bool = True
    title: Optional[str] = field(default=None, compare=False)

    def validate(self) -> None:
        """Raise ConfigError unless the config can open a subscription."""
        if not self.identifier or not str(self.identifier).strip():
            raise ConfigError("Target identifier is required")

        if not self.relay_urls:
            raise ConfigError("At least one relay URL is required")

        for url in self.relay_urls:
            if not isinstance(url, str) or not url.startswith(("ws://", "wss://")):
                raise ConfigError(f"Invalid relay URL: {url!r}")

    @classmethod
    def from_attributes(cls, attributes: Mapping[str, str]) -> "ViewerConfig":
        """
        Build a config from an embedding element's data attributes.

        Recognized keys: data-nzv-id, data-relay-urls (comma-separated),
        data-zap-color-mode, data-title.
        """
        raw_relays = attributes.get("data-relay-urls") or ""
        relay_urls = tuple(
            url.strip() for url in raw_relays.split(",") if url.strip()
        )
        return cls(
            relay_urls=relay_urls,
            identifier=(attributes.get("data-nzv-id") or "").strip(),
            color_mode=_parse_bool(attributes.get("data-zap-color-mode"), True),
            title=attributes.get("data-title"),
        )
