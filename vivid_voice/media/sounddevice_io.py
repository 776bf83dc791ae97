"""
Local audio I/O with sounddevice (PortAudio).

sounddevice is an optional dependency (``pip install vivid-voice[audio]``);
it is imported when the device is first used so headless deployments and
tests never need PortAudio.
"""

import asyncio
import threading
from typing import Any, Optional

import structlog

from vivid_voice.core.errors import MediaPermissionError, UnsupportedPlatformError
from vivid_voice.session.transport import MediaDevice, MediaHandle, PlaybackSink

logger = structlog.get_logger(__name__)

_BYTES_PER_SAMPLE = 2  # PCM16 mono


def _load_sounddevice() -> Any:
    try:
        import sounddevice as sd
    except (ImportError, OSError) as exc:
        # OSError: the module is installed but the PortAudio library is missing
        raise UnsupportedPlatformError(f"sounddevice is not available: {exc}") from exc
    return sd


class SoundDeviceCapture(MediaHandle):
    """Microphone stream delivering PCM16 chunks into an asyncio queue."""

    def __init__(self, stream: Any, queue: "asyncio.Queue[Optional[bytes]]"):
        self._stream = stream
        self._queue = queue
        self._stopped = False

    async def read(self) -> Optional[bytes]:
        if self._stopped:
            return None
        return await self._queue.get()

    async def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        try:
            self._stream.stop()
            self._stream.close()
        finally:
            self._queue.put_nowait(None)
        logger.debug("Microphone capture stopped")


class SoundDevicePlayback(PlaybackSink):
    """
    Speaker output fed from a byte buffer.

    The PortAudio callback drains the buffer on its own thread; each block
    actually played is mirrored into ``tap`` on the event loop thread.
    """

    def __init__(self, sd: Any, sample_rate_hz: int, blocksize: int, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self._loop = loop
        self._buffer = bytearray()
        self._lock = threading.Lock()
        self._closed = False
        self._stream = sd.RawOutputStream(
            samplerate=sample_rate_hz,
            channels=1,
            dtype="int16",
            blocksize=blocksize,
            callback=self._callback,
        )
        self._stream.start()

    def _callback(self, outdata, frames, time_info, status) -> None:
        needed = frames * _BYTES_PER_SAMPLE
        with self._lock:
            chunk = bytes(self._buffer[:needed])
            del self._buffer[:needed]
        if len(chunk) < needed:
            outdata[:] = chunk + b"\x00" * (needed - len(chunk))
        else:
            outdata[:] = chunk
        if chunk and not self._closed:
            self._loop.call_soon_threadsafe(self.tap.push, chunk)

    def write(self, pcm16: bytes) -> None:
        if self._closed:
            return
        with self._lock:
            self._buffer.extend(pcm16)

    def flush(self) -> None:
        with self._lock:
            dropped = len(self._buffer)
            self._buffer.clear()
        if dropped:
            logger.debug("Playback flushed", dropped_bytes=dropped)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.flush()
        self.tap.close()
        self._stream.stop()
        self._stream.close()


class SoundDeviceMedia(MediaDevice):

    def __init__(
        self,
        input_sample_rate_hz: int = 24000,
        output_sample_rate_hz: int = 24000,
        chunk_ms: int = 20,
        input_device: Optional[Any] = None,
    ):
        self.input_sample_rate_hz = input_sample_rate_hz
        self.output_sample_rate_hz = output_sample_rate_hz
        self.chunk_ms = chunk_ms
        self.input_device = input_device

    async def acquire(self) -> SoundDeviceCapture:
        sd = _load_sounddevice()
        try:
            sd.query_devices(self.input_device, kind="input")
        except (ValueError, sd.PortAudioError) as exc:
            raise UnsupportedPlatformError(f"No audio input device: {exc}") from exc

        loop = asyncio.get_running_loop()
        queue: "asyncio.Queue[Optional[bytes]]" = asyncio.Queue()

        def callback(indata, frames, time_info, status) -> None:
            if status:
                logger.debug("Microphone status", status=str(status))
            loop.call_soon_threadsafe(queue.put_nowait, bytes(indata))

        try:
            stream = sd.RawInputStream(
                samplerate=self.input_sample_rate_hz,
                channels=1,
                dtype="int16",
                blocksize=self._blocksize(self.input_sample_rate_hz),
                device=self.input_device,
                callback=callback,
            )
            stream.start()
        except sd.PortAudioError as exc:
            raise MediaPermissionError(f"Microphone access denied: {exc}") from exc

        logger.info("🎤 Microphone capture started", sample_rate=self.input_sample_rate_hz)
        return SoundDeviceCapture(stream, queue)

    async def open_playback(self) -> SoundDevicePlayback:
        sd = _load_sounddevice()
        try:
            return SoundDevicePlayback(
                sd,
                self.output_sample_rate_hz,
                self._blocksize(self.output_sample_rate_hz),
                asyncio.get_running_loop(),
            )
        except sd.PortAudioError as exc:
            raise UnsupportedPlatformError(f"No audio output device: {exc}") from exc

    def _blocksize(self, sample_rate_hz: int) -> int:
        return int(sample_rate_hz * self.chunk_ms / 1000)
