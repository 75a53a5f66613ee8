from __future__ import annotations

import pytest

from upgotify.distributor.bus import InMemoryBus
from upgotify.distributor.registration_store import Registration, RegistrationStore
from upgotify.distributor.upstream_client import Message, UpstreamApp


class FakeGotifyClient:
    """In-memory stand-in for GotifyClient that records every call."""

    base_url = "https://gotify.example.org"

    def __init__(self):
        self.apps: dict[int, UpstreamApp] = {}
        self.messages: list[Message] = []
        self.stream_batches: list[list[Message]] = []
        self.calls: list[tuple] = []
        self.fail: dict[str, Exception] = {}
        self._next_id = 1

    def endpoint_for(self, app_token: str) -> str:
        return f"{self.base_url}/message?token={app_token}"

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    def add_app(self, name: str) -> UpstreamApp:
        app = UpstreamApp(id=self._next_id, name=name, token=f"Aupstream{self._next_id:03d}")
        self._next_id += 1
        self.apps[app.id] = app
        return app

    async def create_app(self, name: str, token: str | None = None) -> UpstreamApp:
        self._record("create_app", name)
        return self.add_app(name)

    async def delete_app(self, app_id: int) -> None:
        self._record("delete_app", app_id)
        self.apps.pop(app_id, None)

    async def list_apps(self) -> list[UpstreamApp]:
        self._record("list_apps")
        return list(self.apps.values())

    async def list_messages(self) -> list[Message]:
        self._record("list_messages")
        return list(self.messages)

    async def delete_message(self, message_id: int) -> None:
        self._record("delete_message", message_id)
        self.messages = [m for m in self.messages if m.id != message_id]

    async def stream_messages(self, on_connected=None):
        self._record("stream_messages")
        if on_connected is not None:
            on_connected()
        batch = self.stream_batches.pop(0) if self.stream_batches else []
        for message in batch:
            yield message


@pytest.fixture
def store(tmp_path):
    """Registration store backed by a temporary database."""
    registration_store = RegistrationStore(tmp_path / "database.db")
    yield registration_store
    registration_store.close()


@pytest.fixture
def client():
    return FakeGotifyClient()


@pytest.fixture
def bus():
    return InMemoryBus()


@pytest.fixture
def make_registration():
    def _make(app_id: str = "org.example.Chat", token: str = "tok1", upstream_id: int = 1) -> Registration:
        return Registration(
            local_app_id=app_id,
            local_token=token,
            upstream_app_id=upstream_id,
            upstream_app_token=f"Aupstream{upstream_id:03d}",
        )

    return _make
