from vivid_voice.session.manager import RealtimeVoiceSession

__all__ = ["RealtimeVoiceSession"]
