"""
Core data models for the Vivid voice orchestrator.

Typed structures for the live session, inbound control events and the
tool-call round trip.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union
import time
import uuid


class ConnectionState(str, Enum):
    """Lifecycle states of a voice session.

    LISTENING, AGENT_SPEAKING and FETCHING are sub-states of CONNECTED and are
    only ever reported while the control channel is open.
    """
    IDLE = "idle"
    REQUESTING = "requesting"
    NEGOTIATING = "negotiating"
    CONNECTED = "connected"
    LISTENING = "listening"
    AGENT_SPEAKING = "agent_speaking"
    FETCHING = "fetching"
    CLOSED = "closed"
    ERROR = "error"


class EventKind(str, Enum):
    """Closed set of inbound control event kinds."""
    TRANSCRIPT_DELTA = "transcript-delta"
    TRANSCRIPT_FINAL = "transcript-final"
    RESPONSE_DELTA = "response-delta"
    RESPONSE_FINAL = "response-final"
    AUDIO_ACTIVITY_DELTA = "audio-activity-delta"
    TOOL_CALL_REQUEST = "tool-call-request"
    TURN_COMPLETE = "turn-complete"
    TRANSPORT_ERROR = "transport-error"
    # Forward-compatible kinds this orchestrator does not understand
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ControlEvent:
    """An inbound, tagged message from the control channel."""
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    raw_type: Optional[str] = None


@dataclass(frozen=True)
class SessionCredential:
    """Short-lived, single-use credential authorizing one handshake."""
    value: str
    expires_at: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.time()) >= self.expires_at

    def __repr__(self) -> str:
        return f"SessionCredential(value='***', expires_at={self.expires_at!r})"


@dataclass(frozen=True)
class ToolCallRequest:
    call_id: str
    tool_name: str
    # Raw JSON string as delivered by the remote service, or an already decoded dict
    arguments_payload: Union[str, Dict[str, Any], None] = None


@dataclass(frozen=True)
class ToolResult:
    call_id: str
    output_payload: Dict[str, Any]
    succeeded: bool


@dataclass(frozen=True)
class PresenceSample:
    """Smoothed audio level in [0, 1] and whether it is above the speaking threshold.

    ``remote_vocalizing`` describes whichever source the monitor samples: agent
    playback by default, the local microphone when ``presence.source`` is
    "microphone".
    """
    level: float
    remote_vocalizing: bool


@dataclass
class Session:
    """The single live conversation instance owned by an orchestrator.

    Resources are attached as soon as they are acquired so that a concurrent
    disconnect() can release whatever a partially completed connect() holds.
    """
    context: str
    identity: Optional[str] = None
    session_id: str = field(default_factory=lambda: f"vs-{uuid.uuid4().hex[:12]}")
    connection_state: ConnectionState = ConnectionState.REQUESTING
    credential: Optional[SessionCredential] = None
    media_handle: Any = None      # MediaHandle
    control_channel: Any = None   # ControlChannel
    playback: Any = None          # PlaybackSink
    created_at: float = field(default_factory=time.time)
