"""
Tests for the in-process bus and the inbound distributor interface.
"""

import pytest

from upgotify.distributor.bus import (
    MESSAGE,
    NEW_ENDPOINT,
    UNREGISTER,
    BusNotification,
    DistributorBus,
    DistributorInterface,
    InMemoryBus,
)
from upgotify.distributor.registration_service import RegistrationService


class TestInMemoryBus:
    """Test InMemoryBus delivery and history."""

    @pytest.mark.asyncio
    async def test_records_every_notification(self, bus):
        async def handler(notification):
            pass

        bus.subscribe("chat", handler)
        assert await bus.send_message("chat", "tok1", "hello") is True
        await bus.send_new_endpoint("chat", "tok1", "https://gotify.example.org/message?token=A")
        await bus.send_unregistered("chat", "tok1")

        assert [n.kind for n in bus.sent] == [MESSAGE, NEW_ENDPOINT, UNREGISTER]
        assert bus.history(MESSAGE) == [BusNotification(MESSAGE, "chat", "tok1", "hello")]

    @pytest.mark.asyncio
    async def test_no_subscriber_fails_delivery(self, bus):
        """Test a message for an application nobody listens to is recorded only."""
        assert await bus.send_message("chat", "tok1", "hello") is False
        assert bus.history(MESSAGE) == [BusNotification(MESSAGE, "chat", "tok1", "hello")]

    @pytest.mark.asyncio
    async def test_handlers_receive_their_app_only(self, bus):
        received = []

        async def handler(notification):
            received.append(notification)

        bus.subscribe("chat", handler)
        await bus.send_message("chat", "tok1", "for chat")
        await bus.send_message("mail", "tok2", "for mail")

        assert [n.payload for n in received] == ["for chat"]

    @pytest.mark.asyncio
    async def test_failing_handler_fails_delivery(self, bus):
        async def handler(notification):
            raise RuntimeError("crashed")

        bus.subscribe("chat", handler)

        assert await bus.send_message("chat", "tok1", "hello") is False

    @pytest.mark.asyncio
    async def test_unsubscribe(self, bus):
        received = []

        async def handler(notification):
            received.append(notification)

        unsubscribe = bus.subscribe("chat", handler)
        unsubscribe()
        assert await bus.send_message("chat", "tok1", "hello") is False

        assert received == []

    def test_bus_is_abstract(self):
        with pytest.raises(TypeError):
            DistributorBus()


class TestDistributorInterface:
    """Test inbound Register/Unregister calls."""

    @pytest.mark.asyncio
    async def test_register_returns_status_and_endpoint(self, store, client, bus):
        interface = DistributorInterface(RegistrationService(store, client, bus))

        status, detail = await interface.Register("chat", "tok1")

        assert status == "NEW_ENDPOINT"
        assert detail.startswith("https://gotify.example.org/message?token=")

    @pytest.mark.asyncio
    async def test_register_failure(self, store, client, bus):
        from upgotify.core.exceptions import NetworkError

        client.fail["create_app"] = NetworkError("unreachable")
        interface = DistributorInterface(RegistrationService(store, client, bus))

        status, detail = await interface.Register("chat", "tok1")

        assert status == "REGISTRATION_FAILED"
        assert "unreachable" in detail

    @pytest.mark.asyncio
    async def test_unregister_returns_nothing(self, store, client, bus):
        interface = DistributorInterface(RegistrationService(store, client, bus))
        await interface.Register("chat", "tok1")

        assert await interface.Unregister("tok1") is None
        assert await store.all() == []
