"""
OpenAI Realtime WebSocket transport.

Opens a bearer-authenticated WebSocket with the ephemeral session credential,
waits for ``session.created``, then streams microphone audio as
``input_audio_buffer.append`` events until closed.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, Callable, Dict, Optional, Union

import structlog
import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed

from vivid_voice.core.errors import NegotiationError, TransportError
from vivid_voice.core.models import SessionCredential
from vivid_voice.protocol import codec
from vivid_voice.session.transport import ControlChannel, MediaHandle, Transport

logger = structlog.get_logger(__name__)

_KEEPALIVE_INTERVAL_SEC = 15.0


class RealtimeWebSocketChannel(ControlChannel):

    def __init__(
        self,
        url: str,
        *,
        handshake_timeout_sec: float = 5.0,
        connect: Optional[Callable[..., Any]] = None,
    ):
        self.url = url
        self._handshake_timeout = handshake_timeout_sec
        self._connect = connect or websockets.connect
        self.websocket: Optional[ClientConnection] = None
        self.remote_session_id: Optional[str] = None
        self._send_lock = asyncio.Lock()
        self._pump_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._closing = False

    @property
    def closed(self) -> bool:
        if self._closing or self.websocket is None:
            return True
        return self.websocket.state.name != "OPEN"

    async def connect(self, credential: SessionCredential, media: Optional[MediaHandle] = None) -> None:
        if self._closing:
            raise NegotiationError("Channel closed before handshake")
        headers = [
            ("Authorization", f"Bearer {credential.value}"),
            ("OpenAI-Beta", "realtime=v1"),
        ]
        logger.info("Connecting to OpenAI Realtime", url=self.url)
        try:
            self.websocket = await self._connect(
                self.url,
                additional_headers=headers,
                open_timeout=self._handshake_timeout,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Timed out opening OpenAI Realtime connection", url=self.url)
            raise NegotiationError(
                f"Could not open realtime connection within {self._handshake_timeout:g}s"
            ) from exc
        except (OSError, websockets.InvalidHandshake, websockets.InvalidURI) as exc:
            logger.error("Failed to connect to OpenAI Realtime", url=self.url, error=str(exc))
            raise NegotiationError(f"Could not open realtime connection: {exc}") from exc

        if self._closing:
            # close() ran while the socket was opening
            await self._close_socket()
            raise NegotiationError("Channel closed during handshake")

        # The server sends session.created first; nothing else is valid before it
        try:
            first_message = await asyncio.wait_for(self.websocket.recv(), timeout=self._handshake_timeout)
        except asyncio.TimeoutError as exc:
            await self._close_socket()
            raise NegotiationError(
                f"Remote service did not send session.created within {self._handshake_timeout:g}s"
            ) from exc
        except ConnectionClosed as exc:
            raise NegotiationError(f"Connection closed during handshake: {exc}") from exc

        try:
            first_event = json.loads(first_message)
        except (TypeError, ValueError) as exc:
            await self._close_socket()
            raise NegotiationError("Malformed first message from remote service") from exc
        if first_event.get("type") != "session.created":
            await self._close_socket()
            error = first_event.get("error") or {}
            raise NegotiationError(
                error.get("message") if isinstance(error, dict) and error.get("message")
                else f"Unexpected first event: {first_event.get('type')}"
            )

        self.remote_session_id = (first_event.get("session") or {}).get("id")
        logger.info("✅ Received session.created - session ready", remote_session_id=self.remote_session_id)

        if media is not None:
            self._pump_task = asyncio.create_task(self._pump_media(media), name="realtime-mic-pump")
        self._keepalive_task = asyncio.create_task(self._keepalive_loop(), name="realtime-keepalive")

    async def send(self, event: Dict[str, Any]) -> None:
        if self.closed:
            raise TransportError("Control channel is not open")
        event_type = event.get("type", "")
        if not event_type.startswith("input_audio_buffer."):
            logger.debug("OpenAI send", type=event_type)
        message = codec.encode(event)
        try:
            async with self._send_lock:
                await self.websocket.send(message)
        except ConnectionClosed as exc:
            raise TransportError(f"Control channel closed: {exc}") from exc

    async def recv(self) -> Union[str, bytes]:
        if self.websocket is None:
            raise TransportError("Control channel is not connected")
        try:
            return await self.websocket.recv()
        except ConnectionClosed as exc:
            raise TransportError(f"Control channel closed: {exc}") from exc

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        for task in (self._pump_task, self._keepalive_task):
            if task is not None:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        await self._close_socket()

    async def _close_socket(self) -> None:
        if self.websocket is not None and self.websocket.state.name == "OPEN":
            with contextlib.suppress(ConnectionClosed, OSError):
                await self.websocket.close()

    async def _pump_media(self, media: MediaHandle) -> None:
        try:
            while not self.closed:
                chunk = await media.read()
                if chunk is None:
                    break
                if chunk:
                    await self.send(codec.audio_append_event(chunk))
        except asyncio.CancelledError:
            pass
        except TransportError:
            logger.debug("Mic pump stopped: channel closed")

    async def _keepalive_loop(self) -> None:
        try:
            while not self.closed:
                await asyncio.sleep(_KEEPALIVE_INTERVAL_SEC)
                if self.closed:
                    break
                try:
                    # Native ping frames; Realtime rejects an application-level ping event
                    async with self._send_lock:
                        await self.websocket.ping()
                except (ConnectionClosed, OSError):
                    logger.debug("OpenAI Realtime keepalive failed", exc_info=True)
                    break
        except asyncio.CancelledError:
            pass


class RealtimeWebSocketTransport(Transport):

    def __init__(
        self,
        base_url: str,
        model: str,
        *,
        handshake_timeout_sec: float = 5.0,
        connect: Optional[Callable[..., Any]] = None,
    ):
        self.base_url = base_url
        self.model = model
        self._handshake_timeout = handshake_timeout_sec
        self._connect = connect

    def _build_ws_url(self) -> str:
        separator = "&" if "?" in self.base_url else "?"
        return f"{self.base_url}{separator}model={self.model}"

    def create_channel(self) -> RealtimeWebSocketChannel:
        return RealtimeWebSocketChannel(
            self._build_ws_url(),
            handshake_timeout_sec=self._handshake_timeout,
            connect=self._connect,
        )
