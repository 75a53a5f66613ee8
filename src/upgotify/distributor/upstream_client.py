"""
Gotify API client used by the distributor.

Wraps the application and message endpoints over HTTP (aiohttp) and the
message stream over WebSockets. Every call carries the device token in the
``X-Gotify-Key`` header; the stream carries it as the ``token`` query
parameter.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable
from urllib.parse import quote, urlencode, urlparse, urlunparse

import aiohttp
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from upgotify.core.config import ConfigurationError
from upgotify.core.exceptions import (
    AuthError,
    NetworkError,
    ServerError,
    UpstreamProtocolError,
)
from upgotify.core.logging_config import mask_token

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-Gotify-Key"


@dataclass(frozen=True)
class UpstreamApp:
    """A Gotify application."""

    id: int
    name: str
    token: str

    @classmethod
    def from_dict(cls, data: Any) -> UpstreamApp:
        try:
            return cls(id=int(data["id"]), name=str(data["name"]), token=str(data["token"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamProtocolError(f"Malformed application object: {exc}") from exc


@dataclass(frozen=True)
class Message:
    """A Gotify message, as returned by the poll endpoint and the stream."""

    id: int
    appid: int
    message: str

    @classmethod
    def from_dict(cls, data: Any) -> Message:
        try:
            return cls(id=int(data["id"]), appid=int(data["appid"]), message=str(data["message"]))
        except (KeyError, TypeError, ValueError) as exc:
            raise UpstreamProtocolError(f"Malformed message object: {exc}") from exc


def build_stream_url(base_url: str, device_token: str) -> str:
    """
    Derive the WebSocket stream URL from the server base URL.

    Raises:
        ConfigurationError: If the base URL is not http or https
    """
    parsed = urlparse(base_url)
    if parsed.scheme == "https":
        scheme = "wss"
    elif parsed.scheme == "http":
        scheme = "ws"
    else:
        raise ConfigurationError(
            f"Only HTTP and HTTPS Gotify URLs are supported, got {base_url!r}"
        )
    path = parsed.path.rstrip("/") + "/stream"
    return urlunparse((scheme, parsed.netloc, path, "", urlencode({"token": device_token}), ""))


class GotifyClient:
    """
    Async client for the Gotify server.

    A session is opened per call; the distributor makes few requests and
    this keeps every call independently bounded by ``timeout``.
    """

    def __init__(
        self,
        base_url: str,
        device_token: str,
        timeout: float = 10.0,
        stream_idle_timeout: float = 50.0,
    ):
        """
        Args:
            base_url: Gotify server URL, e.g. https://push.example.org
            device_token: Client token issued by the login flow
            timeout: Total timeout in seconds for each HTTP request
            stream_idle_timeout: Seconds without a frame before the stream is
                considered dead and closed
        """
        self.base_url = base_url.rstrip("/")
        self.device_token = device_token
        self.timeout = timeout
        self.stream_idle_timeout = stream_idle_timeout
        self.stream_url = build_stream_url(self.base_url, device_token)

    def endpoint_for(self, app_token: str) -> str:
        """Push endpoint handed to subscribers for an application token."""
        return f"{self.base_url}/message?token={quote(app_token, safe='')}"

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        headers = {AUTH_HEADER: self.device_token}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as response:
                    status = response.status
                    if status in (401, 403):
                        raise AuthError(
                            f"Gotify rejected the device token ({status})",
                            details={"method": method, "path": path, "status": status},
                        )
                    if status >= 500:
                        raise ServerError(
                            f"Gotify server error {status} on {method} {path}",
                            details={"method": method, "path": path, "status": status},
                        )
                    if not 200 <= status < 300:
                        raise UpstreamProtocolError(
                            f"Unexpected status {status} on {method} {path}",
                            details={"method": method, "path": path, "status": status},
                        )
                    if method == "DELETE" or status == 204:
                        return None
                    try:
                        return await response.json(content_type=None)
                    except (aiohttp.ContentTypeError, ValueError) as exc:
                        raise UpstreamProtocolError(
                            f"Invalid JSON body on {method} {path}: {exc}"
                        ) from exc
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"Request timeout on {method} {path}") from exc
        except (aiohttp.ClientError, OSError) as exc:
            raise NetworkError(f"Cannot reach Gotify on {method} {path}: {exc}") from exc

    # ==================== Applications ====================

    async def create_app(self, name: str, token: str | None = None) -> UpstreamApp:
        """
        Create a Gotify application. Not idempotent: every call creates a
        new application, so callers check the registration store first.
        """
        payload: dict[str, Any] = {"name": name}
        if token:
            payload["token"] = token
        data = await self._request("POST", "/application", payload)
        app = UpstreamApp.from_dict(data)
        logger.info(
            "Created Gotify application",
            extra={"event": "upstream.app_created", "app_name": name, "upstream_app_id": app.id},
        )
        return app

    async def delete_app(self, app_id: int) -> None:
        await self._request("DELETE", f"/application/{app_id}")
        logger.info(
            "Deleted Gotify application",
            extra={"event": "upstream.app_deleted", "upstream_app_id": app_id},
        )

    async def list_apps(self) -> list[UpstreamApp]:
        data = await self._request("GET", "/application")
        if not isinstance(data, list):
            raise UpstreamProtocolError("Application list is not a JSON array")
        return [UpstreamApp.from_dict(item) for item in data]

    # ==================== Messages ====================

    async def list_messages(self) -> list[Message]:
        """Pending messages, in whatever order the server returns them."""
        data = await self._request("GET", "/message")
        if not isinstance(data, dict) or not isinstance(data.get("messages"), list):
            raise UpstreamProtocolError("Message list response has no 'messages' array")
        return [Message.from_dict(item) for item in data["messages"]]

    async def delete_message(self, message_id: int) -> None:
        await self._request("DELETE", f"/message/{message_id}")

    # ==================== Stream ====================

    async def stream_messages(
        self, on_connected: Callable[[], None] | None = None
    ) -> AsyncIterator[Message]:
        """
        Yield messages from the WebSocket stream until it goes quiet or closes.

        ``on_connected`` is called once the connection is open, before the
        first frame arrives.

        The iterator simply ends on idle timeout, close frame or broken
        connection; callers treat all of them as "reconnect".

        Raises:
            NetworkError: If the connection cannot be established
        """
        try:
            websocket = await websockets.connect(self.stream_url, open_timeout=self.timeout)
        except (WebSocketException, OSError, asyncio.TimeoutError) as exc:
            raise NetworkError(f"Cannot open Gotify stream: {type(exc).__name__}: {exc}") from exc

        logger.info(
            "Connected to Gotify stream",
            extra={"event": "upstream.stream_connected", "token": mask_token(self.device_token)},
        )
        try:
            if on_connected is not None:
                on_connected()
            while True:
                try:
                    frame = await asyncio.wait_for(websocket.recv(), timeout=self.stream_idle_timeout)
                except asyncio.TimeoutError:
                    logger.info(
                        "Gotify stream idle for %.0fs, closing",
                        self.stream_idle_timeout,
                        extra={"event": "upstream.stream_idle_timeout"},
                    )
                    return
                except ConnectionClosed as exc:
                    logger.info(
                        "Gotify stream closed: %s",
                        exc,
                        extra={"event": "upstream.stream_closed"},
                    )
                    return
                except (WebSocketException, OSError) as exc:
                    logger.warning(
                        "Gotify stream failed: %s",
                        exc,
                        extra={"event": "upstream.stream_error", "error": type(exc).__name__},
                    )
                    return

                message = self._decode_frame(frame)
                if message is not None:
                    yield message
        finally:
            try:
                await websocket.close()
            except (WebSocketException, OSError) as exc:
                logger.debug(
                    "Error closing Gotify stream: %s",
                    exc,
                    extra={"event": "upstream.stream_close_error"},
                )

    def _decode_frame(self, frame: str | bytes) -> Message | None:
        try:
            if isinstance(frame, bytes):
                frame = frame.decode("utf-8")
            return Message.from_dict(json.loads(frame))
        except (ValueError, UpstreamProtocolError) as exc:
            logger.warning(
                "Skipping undecodable stream frame: %s",
                exc,
                extra={"event": "upstream.bad_frame"},
            )
            return None
