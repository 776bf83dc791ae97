"""
Wire codec for the OpenAI Realtime control channel.

Inbound JSON messages are decoded into ControlEvents of the closed EventKind
set; outbound control events are built here so every sender emits the same
shapes.

Inbound mapping:

    conversation.item.input_audio_transcription.delta      -> TRANSCRIPT_DELTA
    conversation.item.input_audio_transcription.completed  -> TRANSCRIPT_FINAL
    response.audio_transcript.delta / response.text.delta  -> RESPONSE_DELTA
    response.audio_transcript.done / response.text.done    -> RESPONSE_DELTA (done=True)
    response.created                                       -> RESPONSE_DELTA (started=True)
    response.done                                          -> RESPONSE_FINAL
    response.audio.delta / output_audio_buffer.started     -> AUDIO_ACTIVITY_DELTA (remote)
    input_audio_buffer.speech_started / speech_stopped     -> AUDIO_ACTIVITY_DELTA (user)
    response.function_call_arguments.done                  -> TOOL_CALL_REQUEST
    input_audio_buffer.committed                           -> TURN_COMPLETE
    error                                                  -> TRANSPORT_ERROR
"""

import base64
import json
import uuid
from typing import Any, Dict, Optional, Union

from vivid_voice.core.errors import ProtocolDecodeError
from vivid_voice.core.models import ControlEvent, EventKind, ToolResult

_SIMPLE_KINDS = {
    "conversation.item.input_audio_transcription.delta": EventKind.TRANSCRIPT_DELTA,
    "conversation.item.input_audio_transcription.completed": EventKind.TRANSCRIPT_FINAL,
    "response.done": EventKind.RESPONSE_FINAL,
    "response.function_call_arguments.done": EventKind.TOOL_CALL_REQUEST,
    "input_audio_buffer.committed": EventKind.TURN_COMPLETE,
    "error": EventKind.TRANSPORT_ERROR,
}

_RESPONSE_TEXT_TYPES = {
    "response.audio_transcript.delta": False,
    "response.text.delta": False,
    "response.audio_transcript.done": True,
    "response.text.done": True,
}

_REMOTE_AUDIO_TYPES = {"response.audio.delta", "output_audio_buffer.started"}

_USER_SPEECH_TYPES = {
    "input_audio_buffer.speech_started": True,
    "input_audio_buffer.speech_stopped": False,
}


def decode_event(message: Union[str, bytes]) -> ControlEvent:
    """
    Decode one inbound control-channel message.

    Args:
        message: Raw text frame (bytes are decoded as UTF-8)

    Returns:
        ControlEvent; unrecognised types come back as EventKind.UNKNOWN

    Raises:
        ProtocolDecodeError: If the message is not a JSON object with a "type"
    """
    if isinstance(message, (bytes, bytearray)):
        try:
            message = bytes(message).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ProtocolDecodeError(f"Control message is not UTF-8: {exc}") from exc
    try:
        data = json.loads(message)
    except (TypeError, ValueError) as exc:
        raise ProtocolDecodeError(f"Control message is not JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolDecodeError("Control message is not a JSON object")
    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise ProtocolDecodeError("Control message has no type")
    return _classify(event_type, data)


def _classify(event_type: str, data: Dict[str, Any]) -> ControlEvent:
    kind = _SIMPLE_KINDS.get(event_type)
    if kind is not None:
        return ControlEvent(kind=kind, payload=data, raw_type=event_type)

    if event_type == "response.created":
        payload = dict(data)
        payload.update(done=False, text="", started=True)
        return ControlEvent(kind=EventKind.RESPONSE_DELTA, payload=payload, raw_type=event_type)

    if event_type in _RESPONSE_TEXT_TYPES:
        done = _RESPONSE_TEXT_TYPES[event_type]
        payload = dict(data)
        payload["done"] = done
        if done:
            payload["text"] = data.get("transcript") or data.get("text") or ""
        else:
            payload["text"] = data.get("delta") or ""
        return ControlEvent(kind=EventKind.RESPONSE_DELTA, payload=payload, raw_type=event_type)

    if event_type in _REMOTE_AUDIO_TYPES:
        payload = dict(data)
        payload["source"] = "remote"
        return ControlEvent(kind=EventKind.AUDIO_ACTIVITY_DELTA, payload=payload, raw_type=event_type)

    if event_type in _USER_SPEECH_TYPES:
        payload = dict(data)
        payload["source"] = "user"
        payload["active"] = _USER_SPEECH_TYPES[event_type]
        return ControlEvent(kind=EventKind.AUDIO_ACTIVITY_DELTA, payload=payload, raw_type=event_type)

    return ControlEvent(kind=EventKind.UNKNOWN, payload=data, raw_type=event_type)


def decode_audio(payload: Dict[str, Any]) -> Optional[bytes]:
    """Return the PCM16 bytes carried by a remote audio delta, if any."""
    audio_b64 = payload.get("delta")
    if not isinstance(audio_b64, str) or not audio_b64:
        return None
    try:
        return base64.b64decode(audio_b64)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Outbound events
# ---------------------------------------------------------------------------

def _event_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4()}"


def encode(payload: Dict[str, Any]) -> str:
    return json.dumps(payload)


def tool_result_event(result: ToolResult) -> Dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "event_id": _event_id("tool"),
        "item": {
            "type": "function_call_output",
            "call_id": result.call_id,
            "output": json.dumps(result.output_payload),
        },
    }


def resume_event() -> Dict[str, Any]:
    return {"type": "response.create", "event_id": _event_id("resp")}


def cancel_event() -> Dict[str, Any]:
    return {"type": "response.cancel", "event_id": _event_id("cancel")}


def user_text_event(text: str) -> Dict[str, Any]:
    return {
        "type": "conversation.item.create",
        "event_id": _event_id("msg"),
        "item": {
            "type": "message",
            "role": "user",
            "content": [{"type": "input_text", "text": text}],
        },
    }


def audio_append_event(pcm16: bytes) -> Dict[str, Any]:
    return {
        "type": "input_audio_buffer.append",
        "audio": base64.b64encode(pcm16).decode("ascii"),
    }


def response_id(payload: Dict[str, Any]) -> Optional[str]:
    """Id of the response an inbound event belongs to, if it names one."""
    value = payload.get("response_id")
    if value is None and isinstance(payload.get("response"), dict):
        value = payload["response"].get("id")
    return str(value) if value else None
