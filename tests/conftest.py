"""
Shared fakes for the session orchestrator tests.

The fakes implement the transport seams in memory so the lifecycle manager,
dispatcher and interrupt controller can be driven event by event.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional

import pytest

from vivid_voice.config import AppConfig, PresenceConfig
from vivid_voice.core.errors import NegotiationError, TransportError
from vivid_voice.core.models import SessionCredential
from vivid_voice.core.signals import Signal, SignalBus
from vivid_voice.core.state import ConversationFlags
from vivid_voice.session.credentials import CredentialSource
from vivid_voice.session.manager import RealtimeVoiceSession
from vivid_voice.session.transport import (
    ControlChannel,
    MediaDevice,
    MediaHandle,
    PlaybackSink,
    Transport,
)
from vivid_voice.tools.collaborator import ToolCollaborator, ToolExecutionOutcome
from vivid_voice.tools.registry import build_default_registry

_CLOSED = object()


async def settle(rounds: int = 20) -> None:
    """Let pending tasks and callbacks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeChannel(ControlChannel):

    def __init__(self, gate: Optional[asyncio.Event] = None, fail_with: Optional[Exception] = None):
        self.sent: List[Dict[str, Any]] = []
        self.inbound: "asyncio.Queue[Any]" = asyncio.Queue()
        self.gate = gate
        self.fail_with = fail_with
        self.credential: Optional[SessionCredential] = None
        self.media: Optional[MediaHandle] = None
        self.connected = False
        self.close_count = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or not self.connected

    async def connect(self, credential, media=None) -> None:
        self.credential = credential
        self.media = media
        if self.gate is not None:
            await self.gate.wait()
        if self._closed:
            raise NegotiationError("Channel closed during handshake")
        if self.fail_with is not None:
            raise self.fail_with
        self.connected = True

    async def send(self, event: Dict[str, Any]) -> None:
        if self.closed:
            raise TransportError("Control channel is not open")
        self.sent.append(event)

    async def recv(self):
        item = await self.inbound.get()
        if item is _CLOSED:
            raise TransportError("connection reset")
        return item

    async def close(self) -> None:
        self.close_count += 1
        self._closed = True
        if self.gate is not None:
            self.gate.set()

    def feed(self, event: Dict[str, Any]) -> None:
        self.inbound.put_nowait(json.dumps(event))

    def feed_raw(self, message: Any) -> None:
        self.inbound.put_nowait(message)

    def drop(self) -> None:
        self.inbound.put_nowait(_CLOSED)

    def sent_types(self) -> List[str]:
        return [event["type"] for event in self.sent]


class FakeTransport(Transport):

    def __init__(self):
        self.channels: List[FakeChannel] = []
        self.next_gate: Optional[asyncio.Event] = None
        self.next_failure: Optional[Exception] = None

    def create_channel(self) -> FakeChannel:
        channel = FakeChannel(gate=self.next_gate, fail_with=self.next_failure)
        self.channels.append(channel)
        return channel

    @property
    def channel(self) -> FakeChannel:
        return self.channels[-1]


class FakeMediaHandle(MediaHandle):

    def __init__(self):
        self.stopped = False

    async def read(self) -> Optional[bytes]:
        return None

    async def stop(self) -> None:
        self.stopped = True


class FakePlayback(PlaybackSink):

    def __init__(self):
        super().__init__()
        self.written: List[bytes] = []
        self.flush_count = 0
        self.closed = False

    def write(self, pcm16: bytes) -> None:
        self.written.append(pcm16)
        self.tap.push(pcm16)

    def flush(self) -> None:
        self.flush_count += 1

    async def close(self) -> None:
        self.closed = True


class FakeMedia(MediaDevice):
    """Capture and playback can each be held open with a gate."""

    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.handles: List[FakeMediaHandle] = []
        self.playbacks: List[FakePlayback] = []
        self.acquire_gate: Optional[asyncio.Event] = None
        self.playback_gate: Optional[asyncio.Event] = None

    async def acquire(self) -> FakeMediaHandle:
        if self.acquire_gate is not None:
            await self.acquire_gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        handle = FakeMediaHandle()
        self.handles.append(handle)
        return handle

    async def open_playback(self) -> FakePlayback:
        if self.playback_gate is not None:
            await self.playback_gate.wait()
        playback = FakePlayback()
        self.playbacks.append(playback)
        return playback


class FakeCredentials(CredentialSource):

    def __init__(self, fail_with: Optional[Exception] = None):
        self.fail_with = fail_with
        self.calls: List[tuple] = []
        self.closed = False
        self.gate: Optional[asyncio.Event] = None
        self.expires_at: Optional[float] = None

    async def acquire(self, context, identity=None) -> SessionCredential:
        self.calls.append((context, identity))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_with is not None:
            raise self.fail_with
        return SessionCredential(value=f"ek_test_{len(self.calls)}", expires_at=self.expires_at)

    async def close(self) -> None:
        self.closed = True


class FakeCollaborator(ToolCollaborator):
    """Returns canned outcomes; a call can be held open with ``gates``."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.results: Dict[str, Any] = {}
        self.gates: Dict[str, asyncio.Event] = {}
        self.closed = False

    async def execute(self, tool_name, arguments, identity=None) -> ToolExecutionOutcome:
        self.calls.append((tool_name, arguments, identity))
        key = arguments.get("symbol", tool_name)
        gate = self.gates.get(key)
        if gate is not None:
            await gate.wait()
        result = self.results.get(key, {"success": True, "data": {"symbol": key}})
        if isinstance(result, Exception):
            raise result
        return ToolExecutionOutcome.from_body(result)

    async def close(self) -> None:
        self.closed = True


class SignalRecorder:

    def __init__(self, bus: SignalBus):
        self.signals: List[Signal] = []
        bus.subscribe(self.signals.append)

    def of(self, signal_type) -> List[Signal]:
        return [s for s in self.signals if isinstance(s, signal_type)]


@pytest.fixture
def bus():
    return SignalBus()


@pytest.fixture
def recorder(bus):
    return SignalRecorder(bus)


@pytest.fixture
def flags(bus):
    return ConversationFlags(bus)


@pytest.fixture
def registry():
    return build_default_registry(AppConfig().tools.contexts)


@pytest.fixture
def collaborator():
    return FakeCollaborator()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def credentials():
    return FakeCredentials()


@pytest.fixture
def app_config():
    return AppConfig(presence=PresenceConfig(enabled=False))


@pytest.fixture
def voice_session(credentials, transport, media, registry, collaborator, app_config, bus):
    return RealtimeVoiceSession(
        credentials=credentials,
        transport=transport,
        media=media,
        registry=registry,
        collaborator=collaborator,
        config=app_config,
        bus=bus,
    )


@pytest.fixture
def settled():
    """The ``settle`` helper, for tests that need to drain the event loop."""
    return settle


@pytest.fixture
def make_channel():
    """Factory for a connected in-memory control channel."""
    def _make(**kwargs) -> FakeChannel:
        channel = FakeChannel(**kwargs)
        channel.connected = True
        return channel
    return _make
