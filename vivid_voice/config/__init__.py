"""
Configuration package for the Vivid voice orchestrator.

This package contains:
- models: Pydantic configuration models
- loaders: YAML file loading and parsing
- security: Token injection and endpoint overrides from the environment
"""

from typing import Optional

from vivid_voice.config.loaders import resolve_config_path, load_yaml_with_env_expansion
from vivid_voice.config.models import (
    AppConfig,
    BargeInConfig,
    EndpointsConfig,
    LoggingConfig,
    PresenceConfig,
    RateLimitConfig,
    RealtimeConfig,
    ToolsConfig,
)
from vivid_voice.config.security import apply_endpoint_overrides, inject_endpoint_token


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load and validate configuration from YAML file.

    Args:
        path: YAML file (absolute or relative to the project root); defaults to
              VIVID_CONFIG, then config/vivid-voice.yaml

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML parsing fails
    """
    path = resolve_config_path(path)
    config_data = load_yaml_with_env_expansion(path)

    inject_endpoint_token(config_data)
    apply_endpoint_overrides(config_data)

    return AppConfig(**config_data)


__all__ = [
    'AppConfig',
    'BargeInConfig',
    'EndpointsConfig',
    'LoggingConfig',
    'PresenceConfig',
    'RateLimitConfig',
    'RealtimeConfig',
    'ToolsConfig',
    'load_config',
]
