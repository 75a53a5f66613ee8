"""
Local IPC boundary of the distributor.

``DistributorBus`` is the outbound side: messages, new endpoints and
unregistrations sent to local subscribers. ``DistributorInterface`` is the
inbound side: the UnifiedPush Register/Unregister calls, delegated to the
registration service.

The transport itself (D-Bus or otherwise) is provided by the embedding
process. ``InMemoryBus`` delivers to in-process handlers and keeps a history
of everything sent, which is what the CLI and the tests use.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from upgotify.core.logging_config import mask_token

if TYPE_CHECKING:
    from upgotify.distributor.registration_service import RegistrationService

logger = logging.getLogger(__name__)

MESSAGE = "Message"
NEW_ENDPOINT = "NewEndpoint"
UNREGISTER = "Unregister"


@dataclass(frozen=True)
class BusNotification:
    """One outbound notification addressed to a local application."""

    kind: str
    local_app_id: str
    local_token: str
    payload: str = ""


Handler = Callable[[BusNotification], Awaitable[None]]


class DistributorBus(ABC):
    """Outbound notifications to local subscribers."""

    @abstractmethod
    async def send_message(self, local_app_id: str, local_token: str, payload: str) -> bool:
        """Deliver a push message. Returns True when the subscriber accepted it."""

    @abstractmethod
    async def send_new_endpoint(self, local_app_id: str, local_token: str, endpoint: str) -> None:
        """Tell a subscriber where its push endpoint is."""

    @abstractmethod
    async def send_unregistered(self, local_app_id: str, local_token: str) -> None:
        """Tell a subscriber its registration no longer exists."""


class InMemoryBus(DistributorBus):
    """
    In-process bus.

    Handlers are attached per local application id. Notifications for an
    application without a handler are recorded but not delivered. A handler
    that raises also makes the delivery fail.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[Handler]] = defaultdict(list)
        self.sent: list[BusNotification] = []

    def subscribe(self, local_app_id: str, handler: Handler) -> Callable[[], None]:
        """Attach a handler. Returns a callable that detaches it."""
        self._handlers[local_app_id].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(local_app_id, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def history(self, kind: Optional[str] = None) -> list[BusNotification]:
        if kind is None:
            return list(self.sent)
        return [n for n in self.sent if n.kind == kind]

    async def _dispatch(self, notification: BusNotification) -> bool:
        self.sent.append(notification)
        handlers = list(self._handlers.get(notification.local_app_id, []))
        if not handlers:
            logger.debug(
                "No subscriber for %s",
                notification.local_app_id,
                extra={"event": "bus.no_subscriber", "app_id": notification.local_app_id, "kind": notification.kind},
            )
            return False
        for handler in handlers:
            try:
                await handler(notification)
            except Exception as exc:
                logger.warning(
                    "Subscriber handler failed for %s",
                    notification.local_app_id,
                    extra={
                        "event": "bus.handler_failed",
                        "app_id": notification.local_app_id,
                        "kind": notification.kind,
                        "error": str(exc),
                    },
                )
                return False
        return True

    async def send_message(self, local_app_id: str, local_token: str, payload: str) -> bool:
        delivered = await self._dispatch(BusNotification(MESSAGE, local_app_id, local_token, payload))
        if delivered:
            logger.info(
                "Push message: %s",
                local_app_id,
                extra={"event": "bus.message", "app_id": local_app_id, "token": mask_token(local_token)},
            )
        return delivered

    async def send_new_endpoint(self, local_app_id: str, local_token: str, endpoint: str) -> None:
        await self._dispatch(BusNotification(NEW_ENDPOINT, local_app_id, local_token, endpoint))

    async def send_unregistered(self, local_app_id: str, local_token: str) -> None:
        await self._dispatch(BusNotification(UNREGISTER, local_app_id, local_token))
        logger.info(
            "Unregistered from Gotify: %s",
            local_app_id,
            extra={"event": "bus.unregister", "app_id": local_app_id},
        )


class DistributorInterface:
    """Inbound UnifiedPush distributor calls (org.unifiedpush.Distributor1)."""

    def __init__(self, service: RegistrationService):
        self.service = service

    async def Register(self, local_app_id: str, local_token: str) -> tuple[str, str]:
        result = await self.service.register(local_app_id, local_token)
        return result.status, result.detail

    async def Unregister(self, local_token: str) -> None:
        await self.service.unregister(local_token)
