"""
Unit tests for the OpenAI Realtime WebSocket channel.

``websockets.connect`` is replaced through the ``connect`` argument.
"""

import asyncio
import json
from types import SimpleNamespace

import pytest
from websockets.exceptions import ConnectionClosed

from vivid_voice.core.errors import NegotiationError, TransportError
from vivid_voice.core.models import SessionCredential
from vivid_voice.session.transport import MediaHandle
from vivid_voice.session.websocket_transport import (
    RealtimeWebSocketChannel,
    RealtimeWebSocketTransport,
)

CREDENTIAL = SessionCredential(value="ek_test")
SESSION_CREATED = json.dumps({"type": "session.created", "session": {"id": "sess_001"}})


class FakeWebSocket:

    def __init__(self, *messages):
        self.inbound = asyncio.Queue()
        for message in messages:
            self.inbound.put_nowait(message)
        self.sent = []
        self.state = SimpleNamespace(name="OPEN")
        self.close_calls = 0

    async def recv(self):
        item = await self.inbound.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, message):
        if self.state.name != "OPEN":
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(message))

    async def ping(self):
        return None

    async def close(self):
        self.close_calls += 1
        self.state.name = "CLOSED"


class FakeConnect:

    def __init__(self, websocket=None, error=None):
        self.websocket = websocket
        self.error = error
        self.calls = []
        self.open_timeouts = []

    async def __call__(self, url, additional_headers=None, open_timeout=None):
        self.calls.append((url, additional_headers))
        self.open_timeouts.append(open_timeout)
        if self.error is not None:
            raise self.error
        return self.websocket


class ChunkMediaHandle(MediaHandle):

    def __init__(self, chunks):
        self.chunks = list(chunks)

    async def read(self):
        if self.chunks:
            return self.chunks.pop(0)
        await asyncio.sleep(3600)

    async def stop(self):
        return None


def _channel(connect, timeout=1.0):
    return RealtimeWebSocketChannel(
        "wss://api.openai.com/v1/realtime?model=test", handshake_timeout_sec=timeout, connect=connect
    )


class TestHandshake:

    @pytest.mark.asyncio
    async def test_session_created_completes_handshake(self):
        connect = FakeConnect(FakeWebSocket(SESSION_CREATED))
        channel = _channel(connect)

        await channel.connect(CREDENTIAL)

        assert channel.closed is False
        assert channel.remote_session_id == "sess_001"
        url, headers = connect.calls[0]
        assert url == "wss://api.openai.com/v1/realtime?model=test"
        assert ("Authorization", "Bearer ek_test") in headers
        assert ("OpenAI-Beta", "realtime=v1") in headers
        await channel.close()

    @pytest.mark.asyncio
    async def test_handshake_timeout(self):
        websocket = FakeWebSocket()
        channel = _channel(FakeConnect(websocket), timeout=0.01)

        with pytest.raises(NegotiationError, match="session.created"):
            await channel.connect(CREDENTIAL)

        assert websocket.close_calls == 1

    @pytest.mark.asyncio
    async def test_error_as_first_event(self):
        first = json.dumps({"type": "error", "error": {"message": "Invalid ephemeral key"}})
        websocket = FakeWebSocket(first)
        channel = _channel(FakeConnect(websocket))

        with pytest.raises(NegotiationError, match="Invalid ephemeral key"):
            await channel.connect(CREDENTIAL)

        assert websocket.close_calls == 1

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        channel = _channel(FakeConnect(error=OSError("Connection refused")))

        with pytest.raises(NegotiationError, match="Could not open realtime connection"):
            await channel.connect(CREDENTIAL)

    @pytest.mark.asyncio
    async def test_opening_timeout_is_a_negotiation_error(self):
        connect = FakeConnect(error=asyncio.TimeoutError())
        channel = _channel(connect, timeout=2.5)

        with pytest.raises(NegotiationError, match="within 2.5s"):
            await channel.connect(CREDENTIAL)

        assert connect.open_timeouts == [2.5]

    @pytest.mark.asyncio
    async def test_closed_before_connect(self):
        connect = FakeConnect(FakeWebSocket(SESSION_CREATED))
        channel = _channel(connect)
        await channel.close()

        with pytest.raises(NegotiationError):
            await channel.connect(CREDENTIAL)

        assert connect.calls == []


class TestConnectedChannel:

    @pytest.mark.asyncio
    async def test_send_and_recv(self):
        websocket = FakeWebSocket(SESSION_CREATED, '{"type": "response.done"}')
        channel = _channel(FakeConnect(websocket))
        await channel.connect(CREDENTIAL)

        await channel.send({"type": "response.create"})

        assert websocket.sent == [{"type": "response.create"}]
        assert json.loads(await channel.recv()) == {"type": "response.done"}
        await channel.close()

    @pytest.mark.asyncio
    async def test_recv_after_remote_close(self):
        websocket = FakeWebSocket(SESSION_CREATED, ConnectionClosed(None, None))
        channel = _channel(FakeConnect(websocket))
        await channel.connect(CREDENTIAL)

        with pytest.raises(TransportError):
            await channel.recv()
        await channel.close()

    @pytest.mark.asyncio
    async def test_send_after_close(self):
        websocket = FakeWebSocket(SESSION_CREATED)
        channel = _channel(FakeConnect(websocket))
        await channel.connect(CREDENTIAL)

        await channel.close()
        await channel.close()

        assert channel.closed is True
        assert websocket.close_calls == 1
        with pytest.raises(TransportError):
            await channel.send({"type": "response.create"})

    @pytest.mark.asyncio
    async def test_microphone_is_streamed(self):
        websocket = FakeWebSocket(SESSION_CREATED)
        channel = _channel(FakeConnect(websocket))

        await channel.connect(CREDENTIAL, ChunkMediaHandle([b"\x01\x00", b"\x02\x00"]))
        for _ in range(10):
            await asyncio.sleep(0)

        appended = [event for event in websocket.sent if event["type"] == "input_audio_buffer.append"]
        assert [event["audio"] for event in appended] == ["AQA=", "AgA="]
        await channel.close()


class TestRealtimeWebSocketTransport:

    def test_channel_url_carries_model(self):
        transport = RealtimeWebSocketTransport("wss://api.openai.com/v1/realtime", "gpt-4o-realtime-preview")
        channel = transport.create_channel()
        assert channel.url == "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview"

    def test_existing_query_string(self):
        transport = RealtimeWebSocketTransport("wss://proxy.example.com/realtime?region=eu", "gpt-4o")
        assert transport.create_channel().url == "wss://proxy.example.com/realtime?region=eu&model=gpt-4o"
