"""
Transport seams for the session orchestrator.

The lifecycle manager only depends on these abstractions: a MediaDevice that
yields a capture MediaHandle and a PlaybackSink, and a Transport that creates
ControlChannels. Concrete implementations live in
vivid_voice.session.websocket_transport and vivid_voice.media.
"""

import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Union

from vivid_voice.core.models import SessionCredential


class AudioTap(ABC):
    """Read-only view of the most recent audio frame on some stream."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    def latest_frame(self) -> Optional[bytes]:
        """Most recent PCM16 frame, or None when nothing fresh is available."""


class FrameTap(AudioTap):
    """
    AudioTap fed by pushing frames into it.

    Frames older than ``stale_after_sec`` are reported as absent so a stream
    that went quiet reads as silence rather than its last frame.
    """

    def __init__(self, stale_after_sec: float = 0.15, clock: Callable[[], float] = time.monotonic):
        self._stale_after = stale_after_sec
        self._clock = clock
        self._frame: Optional[bytes] = None
        self._pushed_at = 0.0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, frame: bytes) -> None:
        if self._closed or not frame:
            return
        self._frame = frame
        self._pushed_at = self._clock()

    def clear(self) -> None:
        self._frame = None

    def latest_frame(self) -> Optional[bytes]:
        if self._frame is None or self._clock() - self._pushed_at > self._stale_after:
            return None
        return self._frame

    def close(self) -> None:
        self._closed = True
        self._frame = None


class MediaHandle(ABC):
    """An acquired audio capture stream (microphone)."""

    @abstractmethod
    async def read(self) -> Optional[bytes]:
        """Next PCM16 chunk; None once the handle has been stopped."""

    @abstractmethod
    async def stop(self) -> None:
        """Release the capture device. Idempotent."""


class TappedMediaHandle(MediaHandle):
    """Wraps a MediaHandle and mirrors every chunk read into a FrameTap."""

    def __init__(self, inner: MediaHandle, tap: FrameTap):
        self.inner = inner
        self.tap = tap

    async def read(self) -> Optional[bytes]:
        chunk = await self.inner.read()
        if chunk:
            self.tap.push(chunk)
        return chunk

    async def stop(self) -> None:
        self.tap.close()
        await self.inner.stop()


class PlaybackSink(ABC):
    """Local playback of the remote service's audio."""

    def __init__(self):
        self.tap = FrameTap()

    @abstractmethod
    def write(self, pcm16: bytes) -> None:
        ...

    @abstractmethod
    def flush(self) -> None:
        """Drop everything queued for playback (barge-in)."""

    @abstractmethod
    async def close(self) -> None:
        """Stop playback. Idempotent."""


class MediaDevice(ABC):

    @abstractmethod
    async def acquire(self) -> MediaHandle:
        """
        Open the capture device.

        Raises:
            MediaPermissionError: Access was denied
            UnsupportedPlatformError: No usable capture backend
        """

    @abstractmethod
    async def open_playback(self) -> PlaybackSink:
        ...


class ControlChannel(ABC):
    """Bidirectional control channel to the remote service."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...

    @abstractmethod
    async def connect(self, credential: SessionCredential, media: Optional[MediaHandle] = None) -> None:
        """
        Perform the session handshake and start streaming ``media``.

        Raises:
            NegotiationError: The remote service did not accept the session
        """

    @abstractmethod
    async def send(self, event: Dict[str, Any]) -> None:
        """
        Raises:
            TransportError: The channel is not open
        """

    @abstractmethod
    async def recv(self) -> Union[str, bytes]:
        """
        Next inbound message.

        Raises:
            TransportError: The channel closed
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the channel, aborting a handshake in progress. Idempotent."""


class Transport(ABC):

    @abstractmethod
    def create_channel(self) -> ControlChannel:
        """Return a new, unconnected ControlChannel."""
