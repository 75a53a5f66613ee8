"""
Registration handling for local subscribers.

Maps a UnifiedPush registration (application id + token) onto a Gotify
application, creating one only when no mapping exists yet, and announces
the resulting push endpoint on the bus.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from upgotify.core.exceptions import StoreError, UpstreamError
from upgotify.core.logging_config import mask_token
from upgotify.distributor.bus import DistributorBus
from upgotify.distributor.registration_store import Registration, RegistrationStore
from upgotify.distributor.upstream_client import GotifyClient

logger = logging.getLogger(__name__)

NEW_ENDPOINT = "NEW_ENDPOINT"
REGISTRATION_FAILED = "REGISTRATION_FAILED"


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of a Register call: status plus endpoint URL or failure reason."""

    status: str
    detail: str

    @property
    def ok(self) -> bool:
        return self.status == NEW_ENDPOINT


class RegistrationService:
    """Serves inbound Register/Unregister calls."""

    def __init__(self, store: RegistrationStore, client: GotifyClient, bus: DistributorBus):
        self.store = store
        self.client = client
        self.bus = bus

    async def register(self, local_app_id: str, local_token: str) -> RegistrationResult:
        """
        Register a subscriber, reusing the existing mapping when there is one.

        Args:
            local_app_id: Application id of the subscriber
            local_token: Subscription token chosen by the subscriber

        Returns:
            NEW_ENDPOINT with the endpoint URL, or REGISTRATION_FAILED with a reason
        """
        log_extra = {"app_id": local_app_id, "token": mask_token(local_token)}
        async with self.store.lock_for(local_token):
            try:
                registration = await self.store.find(local_app_id, local_token)
            except StoreError as exc:
                logger.error(
                    "Registration lookup failed",
                    extra={"event": "registration.store_failed", **log_extra, "error": exc.message},
                )
                return RegistrationResult(REGISTRATION_FAILED, f"Store error: {exc.message}")

            if registration is None:
                try:
                    app = await self.client.create_app(local_app_id)
                except UpstreamError as exc:
                    logger.error(
                        "Creating Gotify application failed",
                        extra={"event": "registration.upstream_failed", **log_extra, "error": exc.message},
                    )
                    return RegistrationResult(REGISTRATION_FAILED, f"Upstream error: {exc.message}")

                registration = Registration(
                    local_app_id=local_app_id,
                    local_token=local_token,
                    upstream_app_id=app.id,
                    upstream_app_token=app.token,
                )
                try:
                    await self.store.insert(registration)
                except StoreError as exc:
                    logger.error(
                        "Persisting registration failed, removing Gotify application",
                        extra={
                            "event": "registration.persist_failed",
                            **log_extra,
                            "upstream_app_id": app.id,
                            "error": exc.message,
                        },
                    )
                    await self._delete_upstream(app.id)
                    return RegistrationResult(REGISTRATION_FAILED, f"Store error: {exc.message}")
            else:
                logger.debug(
                    "Reusing existing registration",
                    extra={"event": "registration.reused", **log_extra},
                )

        endpoint = self.client.endpoint_for(registration.upstream_app_token)
        try:
            await self.bus.send_new_endpoint(local_app_id, local_token, endpoint)
        except Exception as exc:
            logger.warning(
                "Sending NewEndpoint failed",
                extra={"event": "registration.notify_failed", **log_extra, "error": str(exc)},
            )
        logger.info("REGISTER %s", local_app_id, extra={"event": "registration.registered", **log_extra})
        return RegistrationResult(NEW_ENDPOINT, endpoint)

    async def unregister(self, local_token: str) -> None:
        """
        Drop every registration for a token. Fire-and-forget: upstream
        failures never keep the local mapping alive, and nothing is raised.
        """
        log_extra = {"token": mask_token(local_token)}
        async with self.store.lock_for(local_token):
            try:
                registrations = await self.store.get(local_token)
            except StoreError as exc:
                logger.error(
                    "Unregister lookup failed",
                    extra={"event": "registration.store_failed", **log_extra, "error": exc.message},
                )
                return

            for registration in registrations:
                await self._delete_upstream(registration.upstream_app_id)

            try:
                await self.store.delete(local_token)
            except StoreError as exc:
                logger.error(
                    "Removing registration failed",
                    extra={"event": "registration.store_failed", **log_extra, "error": exc.message},
                )
                return

        logger.info(
            "UNREGISTER %s",
            mask_token(local_token),
            extra={"event": "registration.unregistered", **log_extra, "rows": len(registrations)},
        )

    async def _delete_upstream(self, upstream_app_id: int) -> None:
        try:
            await self.client.delete_app(upstream_app_id)
        except UpstreamError as exc:
            logger.warning(
                "Deleting Gotify application %s failed",
                upstream_app_id,
                extra={
                    "event": "registration.upstream_delete_failed",
                    "upstream_app_id": upstream_app_id,
                    "error": exc.message,
                },
            )
