"""
Interrupt Controller (barge-in).

Explicit interrupts cancel the in-flight response on the control channel and
silence local playback. Server-detected user speech only flushes local
playback; the remote service cancels its own response in that case.
"""

import asyncio
import time
from typing import Any, Callable, Optional

import structlog

from vivid_voice.core.state import ConversationFlags
from vivid_voice.protocol import codec
from vivid_voice.protocol.interpreter import ControlEventInterpreter
from vivid_voice.session.transport import PlaybackSink

logger = structlog.get_logger(__name__)


class InterruptController:
    """
    Barge-in for one orchestrator.

    ``interrupt()`` is the explicit user action and sends ``response.cancel``;
    ``on_user_speech()`` reacts to server VAD and only flushes local playback,
    debounced by ``debounce_ms``.
    """

    def __init__(
        self,
        interpreter: ControlEventInterpreter,
        flags: ConversationFlags,
        *,
        debounce_ms: int = 250,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._interpreter = interpreter
        self._flags = flags
        self._debounce_sec = debounce_ms / 1000.0
        self._clock = clock
        self._last_flush: Optional[float] = None

    async def interrupt(self, channel: Any, playback: Optional[PlaybackSink]) -> bool:
        """
        Stop the agent mid-response.

        Returns:
            True if a response was in flight and a cancel was sent
        """
        if not (self._interpreter.response_in_flight or self._flags.remote_vocalizing):
            logger.debug("Interrupt ignored: no response in flight")
            return False

        sent = False
        if channel is not None and not channel.closed:
            try:
                await channel.send(codec.cancel_event())
                sent = True
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Failed to send response.cancel", error=str(exc))

        self._flush(playback)
        await self._flags.set_remote_vocalizing(False)
        # Deltas already on the wire belong to the cancelled response
        self._interpreter.cancel_response()
        logger.info("✋ Response interrupted", cancel_sent=sent)
        return sent

    async def on_user_speech(self, playback: Optional[PlaybackSink]) -> bool:
        """
        User started talking (server VAD). Flush local playback if the agent
        is speaking, at most once per debounce window.
        """
        if not self._flags.remote_vocalizing:
            return False
        now = self._clock()
        if self._last_flush is not None and now - self._last_flush < self._debounce_sec:
            return False
        self._last_flush = now
        self._flush(playback)
        await self._flags.set_remote_vocalizing(False)
        logger.info("User barge-in, local playback flushed")
        return True

    @staticmethod
    def _flush(playback: Optional[PlaybackSink]) -> None:
        if playback is None:
            return
        playback.flush()
        playback.tap.clear()
