"""Periodic removal of registrations whose Gotify application was deleted."""

from __future__ import annotations

import asyncio
import logging

from upgotify.core.exceptions import DistributorError, StoreError, UpstreamError
from upgotify.core.logging_config import mask_token
from upgotify.distributor.bus import DistributorBus
from upgotify.distributor.registration_store import Registration, RegistrationStore
from upgotify.distributor.upstream_client import GotifyClient

logger = logging.getLogger(__name__)


class ReconciliationLoop:
    """Diffs stored registrations against the live Gotify application list."""

    def __init__(
        self,
        store: RegistrationStore,
        client: GotifyClient,
        bus: DistributorBus,
        interval: float = 120.0,
    ):
        self.store = store
        self.client = client
        self.bus = bus
        self.interval = interval

    async def run(self) -> None:
        """Reconcile now, then every ``interval`` seconds, until cancelled."""
        while True:
            try:
                await self.reconcile_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - keeps the loop alive
                logger.exception(
                    "Unexpected reconciliation failure",
                    extra={"event": "reconcile.unexpected_error", "error": str(exc)},
                )
            await asyncio.sleep(self.interval)

    async def reconcile_once(self) -> list[Registration]:
        """
        Run one reconciliation tick.

        Returns:
            Registrations removed in this tick (empty if the tick aborted)
        """
        # Every judged row must predate the live application list.
        try:
            registrations = await self.store.all()
        except StoreError as exc:
            logger.warning(
                "Reading registrations failed, skipping reconciliation",
                extra={"event": "reconcile.aborted", "error": exc.message, "removed": 0},
            )
            return []

        try:
            live_apps = await self.client.list_apps()
        except UpstreamError as exc:
            logger.warning(
                "Fetching Gotify applications failed, skipping reconciliation",
                extra={"event": "reconcile.fetch_failed", "error": exc.message},
            )
            return []

        live_ids = {app.id for app in live_apps}
        removed: list[Registration] = []
        try:
            for registration in registrations:
                if registration.upstream_app_id in live_ids:
                    continue
                async with self.store.lock_for(registration.local_token):
                    deleted = await self.store.delete(
                        registration.local_token, registration.upstream_app_id
                    )
                if not deleted:
                    # Already gone, e.g. an unregister won the race.
                    continue
                removed.append(registration)
                await self._notify(registration)
        except DistributorError as exc:
            logger.warning(
                "Reconciliation aborted",
                extra={"event": "reconcile.aborted", "error": exc.message, "removed": len(removed)},
            )
            return removed

        if removed:
            logger.info(
                "Removed %d registrations deleted on Gotify",
                len(removed),
                extra={"event": "reconcile.removed", "count": len(removed)},
            )
        return removed

    async def _notify(self, registration: Registration) -> None:
        try:
            await self.bus.send_unregistered(registration.local_app_id, registration.local_token)
        except Exception as exc:
            logger.warning(
                "Sending Unregister failed: %s",
                registration.local_app_id,
                extra={
                    "event": "reconcile.notify_failed",
                    "app_id": registration.local_app_id,
                    "token": mask_token(registration.local_token),
                    "error": str(exc),
                },
            )
