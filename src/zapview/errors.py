"""
Exception hierarchy for zapview.

Fatal (raised before a subscription opens):
    - ConfigError: missing/invalid relay list or target identifier
    - DecodeError: malformed target identifier

Recoverable:
    - TransportTimeout: degrades a pagination batch to zero results
    - ReferenceResolutionError: event rendered without its reference
    - ProfileFetchError: sender displayed as anonymous
"""

from __future__ import annotations


class ZapViewError(Exception):
    """Base exception for zapview errors."""
    pass


class ConfigError(ZapViewError):
    """Invalid or incomplete view configuration."""
    pass


class DecodeError(ZapViewError):
    """Target identifier could not be decoded."""

    def __init__(self, message: str, identifier: str = ""):
        super().__init__(message)
        self.identifier = identifier


class TransportError(ZapViewError):
    """Relay transport failure."""
    pass


class TransportTimeout(TransportError):
    """No response from relays within the configured window."""
    pass


class ReferenceResolutionError(ZapViewError):
    """Secondary (referenced) event could not be fetched."""
    pass


class ProfileFetchError(ZapViewError):
    """Profile metadata lookup failed."""
    pass
