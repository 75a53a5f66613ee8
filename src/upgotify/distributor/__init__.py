"""
UnifiedPush distributor backed by a Gotify server.

Components:
- registration_store: SQLite mapping of subscriptions to Gotify applications, plus the watermark
- upstream_client: Gotify HTTP and WebSocket client
- bus: local IPC boundary (outbound notifications, inbound Register/Unregister)
- registration_service: Register/Unregister handling
- relay_engine: stream + catch-up poll relay with watermark deduplication
- reconciliation: periodic cleanup of registrations deleted on Gotify
- daemon: process wiring
"""

from upgotify.distributor.bus import (
    BusNotification,
    DistributorBus,
    DistributorInterface,
    InMemoryBus,
)
from upgotify.distributor.daemon import Distributor
from upgotify.distributor.reconciliation import ReconciliationLoop
from upgotify.distributor.registration_service import (
    NEW_ENDPOINT,
    REGISTRATION_FAILED,
    RegistrationResult,
    RegistrationService,
)
from upgotify.distributor.registration_store import Registration, RegistrationStore
from upgotify.distributor.relay_engine import ProcessOutcome, RelayEngine, RelayState
from upgotify.distributor.upstream_client import GotifyClient, Message, UpstreamApp

__all__ = [
    "BusNotification",
    "DistributorBus",
    "DistributorInterface",
    "InMemoryBus",
    "Distributor",
    "ReconciliationLoop",
    "NEW_ENDPOINT",
    "REGISTRATION_FAILED",
    "RegistrationResult",
    "RegistrationService",
    "Registration",
    "RegistrationStore",
    "ProcessOutcome",
    "RelayEngine",
    "RelayState",
    "GotifyClient",
    "Message",
    "UpstreamApp",
]
