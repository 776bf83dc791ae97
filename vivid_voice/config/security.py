"""
Security-critical configuration injection.

SECURITY POLICY:
- Tokens MUST NEVER be in YAML files
- The internal endpoint token comes from the environment only
"""

import os
from typing import Any, Dict


def _is_nonempty_string(val: Any) -> bool:
    return isinstance(val, str) and val.strip() != ""


def inject_endpoint_token(config_data: Dict[str, Any]) -> None:
    """
    Inject the internal endpoint bearer token from VIVID_API_TOKEN.

    Any api_token present in YAML is discarded.

    Args:
        config_data: Configuration dictionary to modify in-place
    """
    endpoints = config_data.get('endpoints')
    if not isinstance(endpoints, dict):
        endpoints = {}
    token = os.getenv("VIVID_API_TOKEN")
    endpoints['api_token'] = token if _is_nonempty_string(token) else None
    config_data['endpoints'] = endpoints


def apply_endpoint_overrides(config_data: Dict[str, Any]) -> None:
    """
    Apply endpoint URL overrides from environment variables.

    Environment variables:
    - VIVID_CREDENTIAL_URL: credential-issuing endpoint
    - VIVID_TOOLS_URL: tool execution endpoint
    - VIVID_REALTIME_URL: realtime WebSocket base URL
    """
    endpoints = config_data.setdefault('endpoints', {})
    realtime = config_data.get('realtime')
    if not isinstance(realtime, dict):
        realtime = {}
        config_data['realtime'] = realtime

    credential_url = os.getenv("VIVID_CREDENTIAL_URL")
    if _is_nonempty_string(credential_url):
        endpoints['credential_url'] = credential_url.strip()
    tools_url = os.getenv("VIVID_TOOLS_URL")
    if _is_nonempty_string(tools_url):
        endpoints['tools_url'] = tools_url.strip()
    realtime_url = os.getenv("VIVID_REALTIME_URL")
    if _is_nonempty_string(realtime_url):
        realtime['base_url'] = realtime_url.strip()
