"""
Distributor exception hierarchy.

Typed exceptions for upstream, persistence and relay failures so callers can
tell transient conditions (network, store) from ones that need operator action
(revoked credentials).
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class DistributorError(Exception):
    """Base exception for all distributor errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried on a later cycle
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Upstream Errors ====================


class UpstreamError(DistributorError):
    """Raised when a call to the Gotify server fails."""
    pass


class NetworkError(UpstreamError):
    """Raised when the upstream server is unreachable or a request times out.

    Always transient: the relay reconnects, the next poll retries.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details, recoverable=True)


class UpstreamProtocolError(UpstreamError):
    """Raised on an unexpected status code or response payload shape."""
    pass


class ServerError(UpstreamProtocolError):
    """Raised when the upstream server answers with a 5xx status."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details, recoverable=True)


class AuthError(UpstreamError):
    """Raised when the device credential is rejected (401/403).

    Never retried automatically. The login flow has to be run again.
    """
    pass


# ==================== Persistence Errors ====================


class StoreError(DistributorError):
    """Raised when the local registration store cannot complete an operation."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details, recoverable=True)


__all__ = [
    "DistributorError",
    "UpstreamError",
    "NetworkError",
    "UpstreamProtocolError",
    "ServerError",
    "AuthError",
    "StoreError",
]
