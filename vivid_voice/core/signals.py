"""
UI signal surface.

The orchestrator publishes typed signals on a SignalBus; the UI layer
subscribes to the signal types it renders. These signals are the only
outputs other components may observe.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type, Union

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Signal:
    """Base class for everything published on the bus."""


@dataclass(frozen=True)
class ConnectionChanged(Signal):
    connected: bool
    state: str


@dataclass(frozen=True)
class ListeningChanged(Signal):
    listening: bool


@dataclass(frozen=True)
class SpeakingChanged(Signal):
    speaking: bool


@dataclass(frozen=True)
class FetchingChanged(Signal):
    fetching: bool
    tool_name: Optional[str] = None


@dataclass(frozen=True)
class TranscriptSignal(Signal):
    """User speech recognised by the remote service."""
    text: str
    is_final: bool


@dataclass(frozen=True)
class ResponseSignal(Signal):
    """Text of the agent's spoken response."""
    text: str
    is_final: bool


@dataclass(frozen=True)
class PresenceChanged(Signal):
    level: float
    remote_vocalizing: bool


@dataclass(frozen=True)
class ErrorSignal(Signal):
    kind: str  # capability | handshake | transport | tool | protocol | service
    message: str


Handler = Callable[[Signal], Union[None, Awaitable[None]]]


class SignalBus:
    """
    In-process publish/subscribe channel for UI signals.

    Handlers may be plain functions or coroutines. They run in subscription
    order, one at a time, so subscribers observe signals in publish order.
    A failing handler is logged and never breaks the publisher.
    """

    def __init__(self):
        self._handlers: Dict[Type[Signal], List[Handler]] = {}

    def subscribe(self, handler: Handler, *signal_types: Type[Signal]) -> Callable[[], None]:
        """
        Register a handler for the given signal types (all signals if none given).

        Returns:
            A callable that removes the subscription.
        """
        types = signal_types or (Signal,)
        for signal_type in types:
            self._handlers.setdefault(signal_type, []).append(handler)

        def unsubscribe() -> None:
            for signal_type in types:
                handlers = self._handlers.get(signal_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def _handlers_for(self, signal: Signal) -> List[Handler]:
        matched: List[Handler] = []
        for signal_type, handlers in self._handlers.items():
            if isinstance(signal, signal_type):
                for handler in handlers:
                    if handler not in matched:
                        matched.append(handler)
        return matched

    async def publish(self, signal: Signal) -> None:
        for handler in self._handlers_for(signal):
            try:
                result: Any = handler(signal)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error(
                    "Signal handler failed",
                    signal=type(signal).__name__,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    exc_info=True,
                )
