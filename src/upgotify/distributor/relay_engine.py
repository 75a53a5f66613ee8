"""
Relay of Gotify messages to local subscribers.

The engine keeps one WebSocket stream open for the lifetime of the process.
Before every (re)connect it runs a catch-up poll over the message list so
that anything published while the stream was down is still delivered. A
persisted watermark (highest processed message id) suppresses the
duplicates that the stream and the poll can both produce.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from upgotify.core.exceptions import DistributorError, StoreError, UpstreamError
from upgotify.core.logging_config import mask_token
from upgotify.distributor.bus import DistributorBus
from upgotify.distributor.registration_store import RegistrationStore
from upgotify.distributor.upstream_client import GotifyClient, Message

logger = logging.getLogger(__name__)


class RelayState(Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    BACKOFF = "reconnect_backoff"


class ProcessOutcome(Enum):
    """What happened to a single message."""

    DELIVERED = "delivered"
    ORPHANED = "orphaned"  # no registration owns the application
    DUPLICATE = "duplicate"  # at or below the watermark
    FAILED = "failed"  # delivery or store failure, left for the next poll


class RelayEngine:
    """Stream + poll ingestion with watermark-based deduplication."""

    def __init__(
        self,
        store: RegistrationStore,
        client: GotifyClient,
        bus: DistributorBus,
        reconnect_delay: float = 10.0,
    ):
        self.store = store
        self.client = client
        self.bus = bus
        self.reconnect_delay = reconnect_delay
        self.state = RelayState.CONNECTING
        self._process_lock = asyncio.Lock()

    async def run(self) -> None:
        """Relay forever. Only cancellation stops it."""
        logger.info(
            "Relay started: %s",
            self.client.base_url,
            extra={"event": "relay.started", "base_url": self.client.base_url},
        )
        while True:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - keeps the relay alive
                logger.exception(
                    "Unexpected relay failure",
                    extra={"event": "relay.unexpected_error", "error": str(exc)},
                )
                await asyncio.sleep(self.reconnect_delay)

    async def run_cycle(self) -> None:
        """
        One connection lifetime: catch up, stream until the connection ends,
        then wait out the reconnect delay.
        """
        self.state = RelayState.CONNECTING
        await self.catch_up()
        try:
            await self.stream()
        except UpstreamError as exc:
            logger.warning(
                "Failed to connect to Gotify, retrying in %.0f seconds",
                self.reconnect_delay,
                extra={"event": "relay.connect_failed", "error": exc.message},
            )
        self.state = RelayState.BACKOFF
        await asyncio.sleep(self.reconnect_delay)

    async def stream(self) -> None:
        """Process stream messages in arrival order until the stream ends."""
        async for message in self.client.stream_messages(on_connected=self._mark_streaming):
            await self.process_message(message)
        logger.info("Gotify stream ended", extra={"event": "relay.stream_ended"})

    def _mark_streaming(self) -> None:
        self.state = RelayState.STREAMING

    async def catch_up(self) -> list[ProcessOutcome]:
        """
        Poll for messages missed while disconnected.

        Skipped until a watermark exists. Messages are processed in ascending
        id order; errors abort the poll and are retried on the next cycle.
        """
        try:
            watermark = await self.store.get_watermark()
        except StoreError as exc:
            logger.warning(
                "Catch-up skipped, watermark unavailable",
                extra={"event": "relay.catch_up_failed", "error": exc.message},
            )
            return []
        if watermark is None:
            logger.debug("No watermark yet, nothing to catch up", extra={"event": "relay.catch_up_skipped"})
            return []

        logger.info("Checking for missed messages", extra={"event": "relay.catch_up", "watermark": watermark})
        try:
            messages = await self.client.list_messages()
        except UpstreamError as exc:
            logger.warning(
                "Catch-up poll failed",
                extra={"event": "relay.catch_up_failed", "error": exc.message},
            )
            return []

        outcomes = []
        for message in sorted(messages, key=lambda m: m.id):
            if message.id > watermark:
                outcomes.append(await self.process_message(message))
        return outcomes

    async def process_message(self, message: Message) -> ProcessOutcome:
        """
        Deliver or discard one message and advance the watermark.

        Never raises for store, upstream or bus failures: the message is
        left below the watermark so a later poll picks it up again.
        """
        async with self._process_lock:
            try:
                return await self._process(message)
            except DistributorError as exc:
                logger.warning(
                    "Processing message %d failed",
                    message.id,
                    extra={"event": "relay.process_failed", "message_id": message.id, "error": exc.message},
                )
                return ProcessOutcome.FAILED

    async def _process(self, message: Message) -> ProcessOutcome:
        watermark = await self.store.get_watermark()
        if watermark is not None and message.id <= watermark:
            logger.debug(
                "Discarding already processed message %d",
                message.id,
                extra={"event": "relay.duplicate", "message_id": message.id, "watermark": watermark},
            )
            return ProcessOutcome.DUPLICATE

        registration = await self.store.get_by_upstream_id(message.appid)
        if registration is None:
            # Not deleted upstream.
            await self.store.set_watermark(message.id)
            logger.info(
                "No registration for Gotify application %d, message %d not delivered",
                message.appid,
                message.id,
                extra={"event": "relay.orphan", "message_id": message.id, "upstream_app_id": message.appid},
            )
            return ProcessOutcome.ORPHANED

        try:
            delivered = await self.bus.send_message(
                registration.local_app_id, registration.local_token, message.message
            )
        except Exception as exc:
            logger.warning(
                "Bus delivery raised for message %d",
                message.id,
                extra={"event": "relay.delivery_error", "message_id": message.id, "error": str(exc)},
            )
            delivered = False
        if not delivered:
            logger.warning(
                "Sending Message failed: %s",
                registration.local_app_id,
                extra={
                    "event": "relay.delivery_failed",
                    "message_id": message.id,
                    "app_id": registration.local_app_id,
                    "token": mask_token(registration.local_token),
                },
            )
            return ProcessOutcome.FAILED

        try:
            await self.client.delete_message(message.id)
        except UpstreamError as exc:
            logger.warning(
                "Deleting delivered message %d failed",
                message.id,
                extra={"event": "relay.delete_failed", "message_id": message.id, "error": exc.message},
            )
        await self.store.set_watermark(message.id)
        logger.debug(
            "Delivered message %d to %s",
            message.id,
            registration.local_app_id,
            extra={"event": "relay.delivered", "message_id": message.id, "app_id": registration.local_app_id},
        )
        return ProcessOutcome.DELIVERED
