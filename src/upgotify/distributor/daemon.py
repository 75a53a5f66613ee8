"""
Distributor process wiring.

Builds the store, Gotify client, bus, registration service, relay engine and
reconciliation loop from a ``DistributorConfig`` and runs the background
units as independent asyncio tasks.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from upgotify.core.config import DistributorConfig, LoginFile
from upgotify.distributor.bus import DistributorBus, DistributorInterface, InMemoryBus
from upgotify.distributor.reconciliation import ReconciliationLoop
from upgotify.distributor.registration_service import RegistrationService
from upgotify.distributor.registration_store import RegistrationStore
from upgotify.distributor.relay_engine import RelayEngine
from upgotify.distributor.upstream_client import GotifyClient

logger = logging.getLogger(__name__)


class Distributor:
    """A running distributor: one relay task, one reconciliation task."""

    def __init__(
        self,
        store: RegistrationStore,
        client: GotifyClient,
        bus: DistributorBus,
        reconnect_delay: float = 10.0,
        reconcile_interval: float = 120.0,
    ):
        self.store = store
        self.client = client
        self.bus = bus
        self.service = RegistrationService(store, client, bus)
        self.interface = DistributorInterface(self.service)
        self.relay = RelayEngine(store, client, bus, reconnect_delay=reconnect_delay)
        self.reconciliation = ReconciliationLoop(store, client, bus, interval=reconcile_interval)
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_config(
        cls,
        config: DistributorConfig,
        bus: Optional[DistributorBus] = None,
        login: Optional[LoginFile] = None,
    ) -> Distributor:
        """
        Build a distributor.

        Raises:
            ConfigurationError: If the login file is missing or invalid
            StoreError: If the registration store cannot be opened
        """
        login = login or config.load_login()
        client = GotifyClient(
            login.gotify_base_url,
            login.gotify_device_token,
            timeout=config.http_timeout,
            stream_idle_timeout=config.stream_idle_timeout,
        )
        store = RegistrationStore(config.db_path)
        return cls(
            store,
            client,
            bus or InMemoryBus(),
            reconnect_delay=config.reconnect_delay,
            reconcile_interval=config.reconcile_interval,
        )

    def start(self) -> list[asyncio.Task]:
        """Schedule the relay and reconciliation units on the running loop."""
        if not self._tasks:
            self._tasks = [
                asyncio.create_task(self.relay.run(), name="upgotify-relay"),
                asyncio.create_task(self.reconciliation.run(), name="upgotify-reconcile"),
            ]
            logger.info("Distributor started", extra={"event": "daemon.started"})
        return self._tasks

    async def run(self) -> None:
        """Run until cancelled."""
        tasks = self.start()
        try:
            await asyncio.gather(*tasks)
        finally:
            await self.stop()

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("Distributor stopped", extra={"event": "daemon.stopped"})
        self.store.close()
