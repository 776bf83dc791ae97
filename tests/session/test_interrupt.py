"""
Unit tests for the interrupt controller (barge-in).
"""

import pytest

from vivid_voice.core.models import ControlEvent, EventKind
from vivid_voice.protocol.interpreter import ControlEventInterpreter
from vivid_voice.session.interrupt import InterruptController


class FakeClock:

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def interpreter():
    return ControlEventInterpreter()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(interpreter, flags, clock):
    return InterruptController(interpreter, flags, debounce_ms=250, clock=clock)


def _start_response(interpreter):
    interpreter.feed(ControlEvent(kind=EventKind.RESPONSE_DELTA, payload={"text": "Apple is", "done": False}))


class TestInterrupt:

    @pytest.mark.asyncio
    async def test_cancels_response_in_flight(self, controller, interpreter, flags, make_channel, media):
        playback = await media.open_playback()
        playback.write(b"\x01\x00" * 10)
        _start_response(interpreter)
        await flags.set_remote_vocalizing(True)
        channel = make_channel()

        assert await controller.interrupt(channel, playback) is True

        assert channel.sent_types() == ["response.cancel"]
        assert channel.sent[0]["event_id"].startswith("cancel-")
        assert playback.flush_count == 1
        assert playback.tap.latest_frame() is None
        assert flags.remote_vocalizing is False
        assert interpreter.response_in_flight is False

    @pytest.mark.asyncio
    async def test_nothing_in_flight(self, controller, make_channel, media):
        playback = await media.open_playback()
        channel = make_channel()

        assert await controller.interrupt(channel, playback) is False

        assert channel.sent == []
        assert playback.flush_count == 0

    @pytest.mark.asyncio
    async def test_closed_channel_still_silences_playback(self, controller, interpreter, flags, make_channel, media):
        playback = await media.open_playback()
        _start_response(interpreter)
        await flags.set_remote_vocalizing(True)
        channel = make_channel()
        await channel.close()

        assert await controller.interrupt(channel, playback) is False

        assert playback.flush_count == 1
        assert flags.remote_vocalizing is False


class TestUserSpeech:

    @pytest.mark.asyncio
    async def test_flushes_when_agent_speaking(self, controller, flags, media):
        playback = await media.open_playback()
        await flags.set_remote_vocalizing(True)

        assert await controller.on_user_speech(playback) is True

        assert playback.flush_count == 1
        assert flags.remote_vocalizing is False

    @pytest.mark.asyncio
    async def test_ignored_when_agent_silent(self, controller, media):
        playback = await media.open_playback()
        assert await controller.on_user_speech(playback) is False
        assert playback.flush_count == 0

    @pytest.mark.asyncio
    async def test_debounced(self, controller, flags, clock, media):
        playback = await media.open_playback()
        await flags.set_remote_vocalizing(True)
        assert await controller.on_user_speech(playback) is True

        clock.now = 0.1
        await flags.set_remote_vocalizing(True)
        assert await controller.on_user_speech(playback) is False

        clock.now = 0.3
        assert await controller.on_user_speech(playback) is True
        assert playback.flush_count == 2
