"""
Control Event Interpreter.

Reduces the ordered ControlEvent stream into application effects. The
interpreter performs no I/O and never awaits: the session applies the
effects it returns, in order, before feeding the next event.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from vivid_voice.core.models import ControlEvent, EventKind, ToolCallRequest
from vivid_voice.protocol.codec import decode_audio, response_id

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Effect:
    """Base class for interpreter output."""


@dataclass(frozen=True)
class TranscriptUpdated(Effect):
    partial: str


@dataclass(frozen=True)
class UtteranceCommitted(Effect):
    text: str


@dataclass(frozen=True)
class ResponseText(Effect):
    text: str
    is_final: bool


@dataclass(frozen=True)
class RemoteVocalizing(Effect):
    active: bool
    audio: Optional[bytes] = None


@dataclass(frozen=True)
class UserSpeech(Effect):
    active: bool


@dataclass(frozen=True)
class ResponseFinished(Effect):
    """End of one spoken turn; speaking and fetching flags clear."""


@dataclass(frozen=True)
class ToolCallRequested(Effect):
    request: ToolCallRequest


@dataclass(frozen=True)
class TurnReset(Effect):
    pass


@dataclass(frozen=True)
class TransportFailed(Effect):
    message: str
    code: Optional[str] = None


@dataclass(frozen=True)
class ServiceError(Effect):
    """A non-fatal error reported by the remote service."""
    message: str
    code: Optional[str] = None


class ControlEventInterpreter:
    """
    Per-session reducer over inbound control events.

    Holds the per-turn transcript buffer, whether a response is in flight,
    and the call ids already handed to the dispatcher (each request is
    consumed exactly once).

    After ``cancel_response()`` the remaining text and audio of the cancelled
    response are dropped. Suppression ends at its ``response.done``, at the
    next ``response.created``, or when an event names a different response.
    """

    def __init__(self, recoverable_error_codes: Iterable[str] = ()):
        self._recoverable_codes: Set[str] = set(recoverable_error_codes)
        self._transcript: List[str] = []
        self._response_in_flight = False
        self._seen_call_ids: Set[str] = set()
        self._current_response_id: Optional[str] = None
        self._cancelled = False
        self._cancelled_response_id: Optional[str] = None

    @property
    def transcript_buffer(self) -> str:
        return "".join(self._transcript)

    @property
    def response_in_flight(self) -> bool:
        return self._response_in_flight

    def feed(self, event: ControlEvent) -> List[Effect]:
        """Interpret one event. Never raises on unexpected payloads."""
        handler = self._handlers.get(event.kind)
        if handler is None:
            logger.debug("Dropping unrecognised control event", event_type=event.raw_type)
            return []
        try:
            return handler(self, event.payload)
        except (AttributeError, KeyError, TypeError, ValueError):
            logger.warning(
                "Dropping malformed control event",
                event_type=event.raw_type,
                kind=event.kind.value,
                exc_info=True,
            )
            return []

    def reset_turn(self) -> None:
        """Forget per-turn state so the next user utterance starts clean."""
        self._transcript.clear()
        self._response_in_flight = False

    def cancel_response(self) -> None:
        """The in-flight response was cancelled locally; stop relaying it."""
        self._cancelled = True
        self._cancelled_response_id = self._current_response_id
        self.reset_turn()

    def reset(self) -> None:
        self.reset_turn()
        self._seen_call_ids.clear()
        self._end_suppression()
        self._current_response_id = None

    def _end_suppression(self) -> None:
        self._cancelled = False
        self._cancelled_response_id = None

    def _suppressed(self, payload: Dict[str, Any]) -> bool:
        if not self._cancelled:
            return False
        rid = response_id(payload)
        if rid is not None and self._cancelled_response_id is not None and rid != self._cancelled_response_id:
            self._end_suppression()
            return False
        return True

    def _track_response(self, payload: Dict[str, Any]) -> None:
        rid = response_id(payload)
        if rid is not None:
            self._current_response_id = rid

    # ------------------------------------------------------------------ #
    # Per-kind rules
    # ------------------------------------------------------------------ #

    def _on_transcript_delta(self, payload: Dict[str, Any]) -> List[Effect]:
        delta = payload.get("delta") or ""
        if not delta:
            return []
        self._transcript.append(str(delta))
        return [TranscriptUpdated(partial=self.transcript_buffer)]

    def _on_transcript_final(self, payload: Dict[str, Any]) -> List[Effect]:
        transcript = payload.get("transcript")
        text = str(transcript) if transcript is not None else self.transcript_buffer
        self._transcript.clear()
        return [UtteranceCommitted(text=text.strip())]

    def _on_response_delta(self, payload: Dict[str, Any]) -> List[Effect]:
        if payload.get("started"):
            self._end_suppression()
            self._track_response(payload)
            self._response_in_flight = True
            return []
        if self._suppressed(payload):
            return []
        self._track_response(payload)
        done = bool(payload.get("done"))
        text = str(payload.get("text") or "")
        if not done:
            self._response_in_flight = True
        if not text:
            return []
        return [ResponseText(text=text, is_final=done)]

    def _on_response_final(self, payload: Dict[str, Any]) -> List[Effect]:
        if self._cancelled:
            logger.debug("Cancelled response finished", response_id=response_id(payload))
            self._end_suppression()
        self._current_response_id = None
        self._response_in_flight = False
        return [ResponseFinished()]

    def _on_audio_activity(self, payload: Dict[str, Any]) -> List[Effect]:
        if payload.get("source") == "user":
            return [UserSpeech(active=bool(payload.get("active")))]
        if self._suppressed(payload):
            return []
        self._track_response(payload)
        self._response_in_flight = True
        audio = None
        if payload.get("delta"):
            audio = decode_audio(payload)
        return [RemoteVocalizing(active=True, audio=audio)]

    def _on_tool_call(self, payload: Dict[str, Any]) -> List[Effect]:
        call_id = payload.get("call_id")
        name = payload.get("name")
        if not call_id or not name:
            logger.warning("Tool call request without call_id or name", call_id=call_id, tool=name)
            return []
        if call_id in self._seen_call_ids:
            logger.warning("Duplicate tool call request dropped", call_id=call_id, tool=name)
            return []
        self._seen_call_ids.add(call_id)
        request = ToolCallRequest(
            call_id=str(call_id),
            tool_name=str(name),
            arguments_payload=payload.get("arguments"),
        )
        return [ToolCallRequested(request=request)]

    def _on_turn_complete(self, payload: Dict[str, Any]) -> List[Effect]:
        self._transcript.clear()
        return [TurnReset()]

    def _on_transport_error(self, payload: Dict[str, Any]) -> List[Effect]:
        error = payload.get("error") or {}
        if not isinstance(error, dict):
            error = {"message": str(error)}
        code = error.get("code")
        message = error.get("message") or payload.get("message") or "Voice processing error"
        if code == "response_cancel_not_active":
            # The cancel found nothing to stop, so no cancelled output will follow
            self._end_suppression()
        if code in self._recoverable_codes:
            return [ServiceError(message=str(message), code=code)]
        return [TransportFailed(message=str(message), code=code)]

    _handlers = {
        EventKind.TRANSCRIPT_DELTA: _on_transcript_delta,
        EventKind.TRANSCRIPT_FINAL: _on_transcript_final,
        EventKind.RESPONSE_DELTA: _on_response_delta,
        EventKind.RESPONSE_FINAL: _on_response_final,
        EventKind.AUDIO_ACTIVITY_DELTA: _on_audio_activity,
        EventKind.TOOL_CALL_REQUEST: _on_tool_call,
        EventKind.TURN_COMPLETE: _on_turn_complete,
        EventKind.TRANSPORT_ERROR: _on_transport_error,
    }
