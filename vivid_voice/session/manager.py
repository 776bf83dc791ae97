"""
Session Lifecycle Manager.

RealtimeVoiceSession owns the single live session of an orchestrator: it
acquires a credential, opens the media device and control channel, runs the
receive loop that feeds the interpreter, and tears everything down again.

State machine:

    IDLE -> REQUESTING -> NEGOTIATING -> CONNECTED -> CLOSED -> IDLE
    (ERROR is reachable from every non-IDLE state)

While CONNECTED the reported state refines to LISTENING, AGENT_SPEAKING or
FETCHING from the conversation flags.
"""

import asyncio
from typing import Dict, FrozenSet, Optional

import structlog
from prometheus_client import Counter, Gauge

from vivid_voice.config import AppConfig
from vivid_voice.core.errors import (
    CapabilityError,
    CredentialError,
    ProtocolDecodeError,
    TransportError,
    VoiceSessionError,
)
from vivid_voice.core.models import ConnectionState, EventKind, Session
from vivid_voice.core.signals import (
    ConnectionChanged,
    ErrorSignal,
    ResponseSignal,
    SignalBus,
    TranscriptSignal,
)
from vivid_voice.core.state import ConversationFlags
from vivid_voice.logging_config import clear_correlation_id, set_correlation_id
from vivid_voice.protocol import codec
from vivid_voice.protocol.interpreter import (
    ControlEventInterpreter,
    Effect,
    RemoteVocalizing,
    ResponseFinished,
    ResponseText,
    ServiceError,
    ToolCallRequested,
    TranscriptUpdated,
    TransportFailed,
    TurnReset,
    UserSpeech,
    UtteranceCommitted,
)
from vivid_voice.session.credentials import CredentialSource
from vivid_voice.session.interrupt import InterruptController
from vivid_voice.session.presence import PresenceMonitor
from vivid_voice.session.transport import (
    ControlChannel,
    FrameTap,
    MediaDevice,
    TappedMediaHandle,
    Transport,
)
from vivid_voice.tools.collaborator import ToolCollaborator
from vivid_voice.tools.dispatcher import ToolDispatcher
from vivid_voice.tools.registry import ToolRegistry

logger = structlog.get_logger(__name__)

_SESSIONS_CONNECTED = Gauge(
    "vivid_voice_sessions_connected",
    "Voice sessions currently connected",
)
_CONNECT_FAILURES = Counter(
    "vivid_voice_connect_failures_total",
    "Failed connect attempts and transport failures, by error kind",
    labelnames=("kind",),
)
_DROPPED_EVENTS = Counter(
    "vivid_voice_dropped_events_total",
    "Inbound control messages dropped without effect",
    labelnames=("reason",),
)

S = ConnectionState

_TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    S.IDLE: frozenset({S.REQUESTING}),
    S.REQUESTING: frozenset({S.NEGOTIATING, S.ERROR, S.CLOSED}),
    S.NEGOTIATING: frozenset({S.CONNECTED, S.ERROR, S.CLOSED}),
    S.CONNECTED: frozenset({S.CLOSED, S.ERROR}),
    S.ERROR: frozenset({S.CLOSED, S.IDLE}),
    S.CLOSED: frozenset({S.IDLE}),
}


class _AttemptSuperseded(Exception):
    """The session being connected was torn down while connect() awaited."""


class RealtimeVoiceSession:
    """
    Orchestrates one realtime voice conversation at a time.

    All collaborators are injected; ``from_config`` wires the production ones
    (HTTP credential endpoint, OpenAI Realtime WebSocket, sounddevice audio,
    HTTP tool collaborator).
    """

    def __init__(
        self,
        *,
        credentials: CredentialSource,
        transport: Transport,
        media: MediaDevice,
        registry: ToolRegistry,
        collaborator: ToolCollaborator,
        config: Optional[AppConfig] = None,
        bus: Optional[SignalBus] = None,
    ):
        self.config = config or AppConfig()
        self.bus = bus or SignalBus()
        self.flags = ConversationFlags(self.bus)
        self.registry = registry
        self._credentials = credentials
        self._transport = transport
        self._media = media
        self._collaborator = collaborator

        self.interpreter = ControlEventInterpreter(self.config.realtime.recoverable_error_codes)
        self.dispatcher = ToolDispatcher(
            registry,
            collaborator,
            self.flags,
            default_timeout_sec=self.config.tools.default_timeout_sec,
        )
        self._interrupts = InterruptController(
            self.interpreter,
            self.flags,
            debounce_ms=self.config.barge_in.debounce_ms,
        )
        presence = self.config.presence
        self.presence = PresenceMonitor(
            self.bus,
            frame_rate_hz=presence.frame_rate_hz,
            fft_size=presence.fft_size,
            attack=presence.attack,
            release=presence.release,
            speaking_threshold=presence.speaking_threshold,
        )

        self._state = ConnectionState.IDLE
        self._session: Optional[Session] = None
        self._connected = False
        self._receive_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, config: AppConfig, *, media: Optional[MediaDevice] = None,
                    bus: Optional[SignalBus] = None) -> "RealtimeVoiceSession":
        from vivid_voice.session.credentials import CredentialAcquirer
        from vivid_voice.session.rate_limit import InMemoryRateLimitStore, RateLimiter
        from vivid_voice.session.websocket_transport import RealtimeWebSocketTransport
        from vivid_voice.tools.collaborator import HttpToolCollaborator
        from vivid_voice.tools.registry import build_default_registry

        registry = build_default_registry(config.tools.contexts)
        limiter = None
        if config.rate_limit.enabled:
            limiter = RateLimiter(
                InMemoryRateLimitStore(),
                max_requests=config.rate_limit.max_requests,
                window_sec=config.rate_limit.window_sec,
            )
        endpoints = config.endpoints
        credentials = CredentialAcquirer(
            endpoints.credential_url,
            api_token=endpoints.api_token,
            timeout_sec=endpoints.request_timeout_sec,
            voice=config.realtime.voice,
            tools_for_context=registry.to_openai_realtime_schema,
            rate_limiter=limiter,
        )
        transport = RealtimeWebSocketTransport(
            config.realtime.base_url,
            config.realtime.model,
            handshake_timeout_sec=config.realtime.handshake_timeout_sec,
        )
        collaborator = HttpToolCollaborator(
            endpoints.tools_url,
            api_token=endpoints.api_token,
            timeout_sec=endpoints.request_timeout_sec,
        )
        if media is None:
            from vivid_voice.media.sounddevice_io import SoundDeviceMedia
            media = SoundDeviceMedia(
                input_sample_rate_hz=config.realtime.input_sample_rate_hz,
                output_sample_rate_hz=config.realtime.output_sample_rate_hz,
            )
        return cls(
            credentials=credentials,
            transport=transport,
            media=media,
            registry=registry,
            collaborator=collaborator,
            config=config,
            bus=bus,
        )

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def connection_state(self) -> ConnectionState:
        if self._state != ConnectionState.CONNECTED:
            return self._state
        if self.flags.fetching:
            return ConnectionState.FETCHING
        if self.flags.remote_vocalizing:
            return ConnectionState.AGENT_SPEAKING
        if self.flags.listening:
            return ConnectionState.LISTENING
        return ConnectionState.CONNECTED

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def session(self) -> Optional[Session]:
        return self._session

    def _transition(self, new_state: ConnectionState) -> bool:
        allowed = _TRANSITIONS.get(self._state, frozenset())
        if new_state not in allowed:
            logger.warning(
                "Illegal session state transition ignored",
                from_state=self._state.value,
                to_state=new_state.value,
            )
            return False
        logger.debug("Session state", from_state=self._state.value, to_state=new_state.value)
        self._state = new_state
        if self._session is not None:
            self._session.connection_state = new_state
        return True

    def _ensure_current(self, session: Session) -> None:
        if self._session is not session:
            raise _AttemptSuperseded()

    # ------------------------------------------------------------------ #
    # Connect / disconnect
    # ------------------------------------------------------------------ #

    async def connect(self, context: Optional[str] = None, identity: Optional[str] = None) -> bool:
        """
        Establish a session.

        Returns:
            True once connected; False if a session already exists or the
            attempt was cancelled by disconnect()

        Raises:
            CredentialError / NegotiationError: Handshake failed
            MediaPermissionError / UnsupportedPlatformError: Capture unavailable
        """
        if self._state != ConnectionState.IDLE:
            logger.info("Connect ignored: session already active", state=self._state.value)
            return False

        context = context or self.config.default_context
        session = Session(context=context, identity=identity)
        self._session = session
        set_correlation_id(session.session_id)
        self._transition(ConnectionState.REQUESTING)
        logger.info("🎙️ Voice session connecting", context=context, has_identity=identity is not None)

        try:
            credential = await self._credentials.acquire(context, identity)
            self._ensure_current(session)
            session.credential = credential
            self._transition(ConnectionState.NEGOTIATING)

            handle = await self._media.acquire()
            session.media_handle = handle
            self._ensure_current(session)

            mic_tap: Optional[FrameTap] = None
            if self.config.presence.source == "microphone":
                mic_tap = FrameTap()
                handle = TappedMediaHandle(handle, mic_tap)
                session.media_handle = handle

            session.playback = await self._media.open_playback()
            self._ensure_current(session)

            if credential.is_expired():
                raise CredentialError("Session credential expired before the handshake")
            channel = self._transport.create_channel()
            session.control_channel = channel
            await channel.connect(credential, handle)
            self._ensure_current(session)
        except _AttemptSuperseded:
            logger.info("Connect abandoned: session was disconnected mid-handshake")
            await self._release(session)
            return False
        except VoiceSessionError as exc:
            if self._session is not session:
                # disconnect() closed the channel under the handshake
                logger.info("Connect abandoned: session was disconnected mid-handshake")
                await self._release(session)
                return False
            await self._abort_connect(session, exc)
            raise
        except BaseException:
            await self._abort_connect(session, None)
            raise

        self._transition(ConnectionState.CONNECTED)
        self._connected = True
        _SESSIONS_CONNECTED.inc()
        self._receive_task = asyncio.create_task(
            self._receive_loop(session, channel), name=f"receive-{session.session_id}"
        )
        if self.config.presence.enabled:
            self.presence.start(mic_tap if mic_tap is not None else session.playback.tap)

        logger.info("✅ Voice session connected", context=context)
        await self.flags.set_listening(True)
        await self.bus.publish(ConnectionChanged(connected=True, state=self.connection_state.value))
        return True

    async def _abort_connect(self, session: Session, exc: Optional[VoiceSessionError]) -> None:
        """Release a failed attempt and return to IDLE.

        ``exc`` is None when the attempt was cancelled or hit an unexpected
        error; nothing is published then, the caller sees the exception.
        """
        if self._session is not session:
            await self._release(session)
            return
        if exc is not None:
            if isinstance(exc, CapabilityError):
                logger.warning("Voice session capability unavailable", error=str(exc))
            else:
                logger.error("Voice session connect failed", kind=exc.kind, error=str(exc))
            _CONNECT_FAILURES.labels(exc.kind).inc()
        self._transition(ConnectionState.ERROR)
        self._session = None
        await self._release(session)
        self.interpreter.reset()
        self._transition(ConnectionState.IDLE)
        clear_correlation_id()
        if exc is not None:
            await self.bus.publish(ErrorSignal(kind=exc.kind, message=str(exc)))

    async def disconnect(self) -> None:
        """Tear the session down. Safe from any state, including mid-connect."""
        session = self._session
        if session is None:
            return
        was_connected = self._connected
        self._session = None
        self._connected = False
        self._transition(ConnectionState.CLOSED)

        await self.presence.stop()
        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._release(session)
        self.interpreter.reset()
        await self.flags.reset()
        self._transition(ConnectionState.IDLE)
        logger.info("Voice session disconnected", was_connected=was_connected)
        clear_correlation_id()

        if was_connected:
            _SESSIONS_CONNECTED.dec()
            await self.bus.publish(ConnectionChanged(connected=False, state=ConnectionState.IDLE.value))

    async def aclose(self) -> None:
        """Disconnect and shut down every collaborator (application exit)."""
        await self.disconnect()
        await self.dispatcher.cancel_all()
        await self._credentials.close()
        await self._collaborator.close()

    async def _release(self, session: Session) -> None:
        channel, session.control_channel = session.control_channel, None
        handle, session.media_handle = session.media_handle, None
        playback, session.playback = session.playback, None
        for name, resource, closer in (
            ("control_channel", channel, "close"),
            ("media_handle", handle, "stop"),
            ("playback", playback, "close"),
        ):
            if resource is None:
                continue
            try:
                await getattr(resource, closer)()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Failed to release session resource", resource=name, exc_info=True)

    # ------------------------------------------------------------------ #
    # Conversation controls
    # ------------------------------------------------------------------ #

    async def send_text(self, text: str) -> bool:
        """Inject a typed user message and ask for a response."""
        channel = self._live_channel()
        if channel is None:
            logger.warning("Cannot send message: voice session not connected")
            return False
        try:
            await channel.send(codec.user_text_event(text))
            await channel.send(codec.resume_event())
        except TransportError as exc:
            logger.warning("Failed to send message", error=str(exc))
            return False
        return True

    async def interrupt(self) -> bool:
        """Cancel the agent's in-flight response. Never closes the session."""
        channel = self._live_channel()
        if channel is None:
            return False
        return await self._interrupts.interrupt(channel, self._session.playback)

    def _live_channel(self) -> Optional[ControlChannel]:
        if not self._connected or self._session is None:
            return None
        return self._session.control_channel

    # ------------------------------------------------------------------ #
    # Receive loop
    # ------------------------------------------------------------------ #

    async def _receive_loop(self, session: Session, channel: ControlChannel) -> None:
        try:
            while self._session is session:
                message = await channel.recv()
                try:
                    event = codec.decode_event(message)
                except ProtocolDecodeError as exc:
                    _DROPPED_EVENTS.labels("decode").inc()
                    logger.warning("Dropping undecodable control message", error=str(exc))
                    continue
                if event.kind is EventKind.UNKNOWN:
                    _DROPPED_EVENTS.labels("unknown").inc()
                for effect in self.interpreter.feed(event):
                    if self._session is not session:
                        return
                    await self._apply(effect, session, channel)
        except asyncio.CancelledError:
            raise
        except TransportError as exc:
            await self._on_transport_failure(session, str(exc))
        except Exception as exc:
            logger.error("Receive loop error", exc_info=True)
            await self._on_transport_failure(session, str(exc))

    async def _apply(self, effect: Effect, session: Session, channel: ControlChannel) -> None:
        if isinstance(effect, TranscriptUpdated):
            await self.bus.publish(TranscriptSignal(text=effect.partial, is_final=False))
        elif isinstance(effect, UtteranceCommitted):
            logger.info("User utterance", text_preview=effect.text[:80])
            await self.bus.publish(TranscriptSignal(text=effect.text, is_final=True))
        elif isinstance(effect, ResponseText):
            await self.bus.publish(ResponseSignal(text=effect.text, is_final=effect.is_final))
        elif isinstance(effect, RemoteVocalizing):
            if effect.audio and session.playback is not None:
                session.playback.write(effect.audio)
            await self.flags.set_remote_vocalizing(effect.active)
        elif isinstance(effect, UserSpeech):
            await self.flags.set_listening(effect.active)
            if effect.active and self.config.barge_in.flush_on_user_speech:
                await self._interrupts.on_user_speech(session.playback)
        elif isinstance(effect, ResponseFinished):
            await self.flags.set_remote_vocalizing(False)
            await self.flags.clear_fetching()
        elif isinstance(effect, ToolCallRequested):
            self.dispatcher.dispatch(
                effect.request,
                channel,
                context=session.context,
                identity=session.identity,
            )
        elif isinstance(effect, TurnReset):
            logger.debug("Input turn committed")
        elif isinstance(effect, ServiceError):
            logger.warning("Remote service reported an error", code=effect.code, error=effect.message)
            await self.bus.publish(ErrorSignal(kind="service", message=effect.message))
        elif isinstance(effect, TransportFailed):
            await self._on_transport_failure(session, effect.message)

    async def _on_transport_failure(self, session: Session, reason: str) -> None:
        if self._session is not session:
            return
        logger.error("❌ Voice session disconnected unexpectedly", reason=reason)
        _CONNECT_FAILURES.labels("transport").inc()
        self._transition(ConnectionState.ERROR)
        await self.bus.publish(
            ErrorSignal(kind="transport", message=f"Voice session disconnected unexpectedly: {reason}")
        )
        await self.disconnect()
