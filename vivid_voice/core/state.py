"""
Conversation flags owned by a single object.

Listening, speaking and fetching flags are read and written only through
ConversationFlags. Every setter publishes a signal when, and only when, the
value actually changes.
"""

from typing import Dict, Optional

import structlog

from vivid_voice.core.signals import (
    FetchingChanged,
    ListeningChanged,
    SignalBus,
    SpeakingChanged,
)

logger = structlog.get_logger(__name__)


class ConversationFlags:
    """Single owner of the per-session UI flags."""

    def __init__(self, bus: SignalBus):
        self._bus = bus
        self._listening = False
        self._remote_vocalizing = False
        # call_id -> tool_name for every tool call currently being fetched
        self._fetching: Dict[str, str] = {}

    @property
    def listening(self) -> bool:
        return self._listening

    @property
    def remote_vocalizing(self) -> bool:
        return self._remote_vocalizing

    @property
    def fetching(self) -> bool:
        return bool(self._fetching)

    @property
    def active_tool(self) -> Optional[str]:
        """Name of the most recently started tool still in flight."""
        if not self._fetching:
            return None
        return next(reversed(self._fetching.values()))

    async def set_listening(self, value: bool) -> None:
        if self._listening == value:
            return
        self._listening = value
        await self._bus.publish(ListeningChanged(listening=value))

    async def set_remote_vocalizing(self, value: bool) -> None:
        if self._remote_vocalizing == value:
            return
        self._remote_vocalizing = value
        logger.debug("Remote vocalizing changed", remote_vocalizing=value)
        await self._bus.publish(SpeakingChanged(speaking=value))

    async def begin_fetch(self, call_id: str, tool_name: str) -> None:
        self._fetching[call_id] = tool_name
        await self._bus.publish(FetchingChanged(fetching=True, tool_name=tool_name))

    async def end_fetch(self, call_id: str) -> None:
        if self._fetching.pop(call_id, None) is None:
            return
        await self._bus.publish(FetchingChanged(fetching=self.fetching, tool_name=self.active_tool))

    async def clear_fetching(self) -> None:
        """Drop every fetching marker (the remote turn finished)."""
        if not self._fetching:
            return
        self._fetching.clear()
        await self._bus.publish(FetchingChanged(fetching=False))

    async def reset(self) -> None:
        await self.set_listening(False)
        await self.set_remote_vocalizing(False)
        await self.clear_fetching()
