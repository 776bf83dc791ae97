"""
Configuration models for the Vivid voice orchestrator.

Pydantic v2 models give validation and type safety for everything loaded
from config/vivid-voice.yaml.
"""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class RealtimeConfig(BaseModel):
    """Remote conversational-speech service (OpenAI Realtime) settings."""
    base_url: str = Field(default="wss://api.openai.com/v1/realtime")
    model: str = Field(default="gpt-4o-realtime-preview-2024-12-17")
    voice: str = Field(default="alloy")
    handshake_timeout_sec: float = Field(default=5.0)
    # PCM16 mono, the only format the realtime service accepts over WebSocket
    input_sample_rate_hz: int = Field(default=24000)
    output_sample_rate_hz: int = Field(default=24000)
    # "error" events with these codes are surfaced but do not tear the session down
    recoverable_error_codes: List[str] = Field(
        default_factory=lambda: [
            "response_cancel_not_active",
            "conversation_already_has_active_response",
        ]
    )


class EndpointsConfig(BaseModel):
    """Internal HTTP collaborators (credential issuing and tool execution)."""
    credential_url: str = Field(default="http://127.0.0.1:3000/api/voice/session")
    tools_url: str = Field(default="http://127.0.0.1:3000/api/voice/tools")
    request_timeout_sec: float = Field(default=10.0)
    # Bearer token for the internal endpoints; injected from VIVID_API_TOKEN only
    api_token: Optional[str] = None


class ToolsConfig(BaseModel):
    default_timeout_sec: float = Field(default=15.0)
    # Tool names exposed per conversation context; missing context => no tools
    contexts: Dict[str, List[str]] = Field(
        default_factory=lambda: {
            "dashboard": [
                "get_market_price",
                "get_technical_analysis",
                "get_market_news",
                "get_multiple_prices",
                "get_user_portfolio",
                "add_portfolio_holding",
                "remove_portfolio_holding",
            ],
            "auth": [],
        }
    )


class PresenceConfig(BaseModel):
    enabled: bool = Field(default=True)
    source: Literal["remote", "microphone"] = Field(default="remote")
    frame_rate_hz: float = Field(default=60.0)
    fft_size: int = Field(default=256)
    attack: float = Field(default=0.35, ge=0.0, le=1.0)
    release: float = Field(default=0.12, ge=0.0, le=1.0)
    speaking_threshold: float = Field(default=10.0 / 255.0, ge=0.0, le=1.0)


class BargeInConfig(BaseModel):
    # Flush local playback when server VAD reports user speech over the agent
    flush_on_user_speech: bool = Field(default=True)
    debounce_ms: int = Field(default=250)


class RateLimitConfig(BaseModel):
    enabled: bool = Field(default=True)
    max_requests: int = Field(default=10, ge=1)
    window_sec: float = Field(default=60.0, gt=0)


class LoggingConfig(BaseModel):
    level: str = Field(default="info")  # debug|info|warning|error|critical
    format: Literal["json", "console"] = Field(default="json")


class AppConfig(BaseModel):
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    endpoints: EndpointsConfig = Field(default_factory=EndpointsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    presence: PresenceConfig = Field(default_factory=PresenceConfig)
    barge_in: BargeInConfig = Field(default_factory=BargeInConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    default_context: str = Field(default="dashboard")
