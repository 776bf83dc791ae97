"""
Audio Presence Monitor.

Samples an AudioTap at a fixed frame rate and publishes a smoothed 0..1
activity level for visual feedback. Advisory only: nothing in the protocol
depends on it.

Each frame is summarised the way a browser AnalyserNode does: Hann-windowed
magnitude spectrum, converted to decibels and mapped from [-100, -30] dB onto
[0, 1], then averaged across bins.
"""

import asyncio
from typing import Optional

import numpy as np
import structlog

from vivid_voice.core.models import PresenceSample
from vivid_voice.core.signals import PresenceChanged, SignalBus
from vivid_voice.session.transport import AudioTap

logger = structlog.get_logger(__name__)

MIN_DECIBELS = -100.0
MAX_DECIBELS = -30.0


def spectrum_level(frame: Optional[bytes], fft_size: int = 256) -> float:
    """Mean normalised spectral magnitude of a PCM16 frame, in [0, 1]."""
    if not frame:
        return 0.0
    samples = np.frombuffer(frame[: len(frame) - (len(frame) % 2)], dtype="<i2")
    if samples.size == 0:
        return 0.0
    samples = samples[-fft_size:].astype(np.float32) / 32768.0
    if samples.size < fft_size:
        samples = np.pad(samples, (fft_size - samples.size, 0))
    windowed = samples * np.hanning(fft_size)
    magnitude = np.abs(np.fft.rfft(windowed))[: fft_size // 2] / fft_size
    with np.errstate(divide="ignore"):
        decibels = 20.0 * np.log10(magnitude)
    scaled = (decibels - MIN_DECIBELS) / (MAX_DECIBELS - MIN_DECIBELS)
    return float(np.clip(scaled, 0.0, 1.0).mean())


def smooth(previous: float, target: float, attack: float, release: float) -> float:
    """Asymmetric exponential smoothing: fast rise, slow fall."""
    factor = attack if target > previous else release
    return previous + (target - previous) * factor


class PresenceMonitor:
    """
    Periodic sampler bound to one AudioTap.

    ``start`` spawns the sampling task; ``stop`` cancels it and guarantees no
    further PresenceChanged is published. The task also ends by itself when
    the tap reports closed.
    """

    def __init__(
        self,
        bus: SignalBus,
        *,
        frame_rate_hz: float = 60.0,
        fft_size: int = 256,
        attack: float = 0.35,
        release: float = 0.12,
        speaking_threshold: float = 10.0 / 255.0,
    ):
        self._bus = bus
        self._interval = 1.0 / frame_rate_hz
        self._fft_size = fft_size
        self._attack = attack
        self._release = release
        self._threshold = speaking_threshold
        self._task: Optional[asyncio.Task] = None
        self._tap: Optional[AudioTap] = None
        self._running = False
        self._level = 0.0
        self._last_published: Optional[PresenceSample] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def level(self) -> float:
        return self._level

    def start(self, tap: AudioTap) -> None:
        if self._running:
            return
        self._tap = tap
        self._running = True
        self._level = 0.0
        self._last_published = None
        self._task = asyncio.create_task(self._run(), name="presence-monitor")

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tap = None
        self._level = 0.0

    def sample(self, frame: Optional[bytes]) -> PresenceSample:
        """Fold one frame into the smoothed level."""
        raw = spectrum_level(frame, self._fft_size)
        self._level = smooth(self._level, raw, self._attack, self._release)
        return PresenceSample(level=self._level, remote_vocalizing=raw >= self._threshold)

    async def _run(self) -> None:
        logger.debug("Presence monitor started", interval_ms=round(self._interval * 1000, 1))
        try:
            while self._running:
                tap = self._tap
                if tap is None or tap.closed:
                    break
                sample = self.sample(tap.latest_frame())
                await self._publish(sample)
                await asyncio.sleep(self._interval)
        finally:
            self._running = False
            logger.debug("Presence monitor stopped")

    async def _publish(self, sample: PresenceSample) -> None:
        rounded = PresenceSample(level=round(sample.level, 3), remote_vocalizing=sample.remote_vocalizing)
        if rounded == self._last_published or not self._running:
            return
        self._last_published = rounded
        await self._bus.publish(PresenceChanged(level=rounded.level, remote_vocalizing=rounded.remote_vocalizing))
