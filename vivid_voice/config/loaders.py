"""
Locating and reading config/vivid-voice.yaml.

Relative paths resolve against the project root, not the working directory.
Environment references in the YAML text are expanded before parsing:
``$VAR``, ``${VAR}`` and ``${VAR:-fallback}``. Unset references without a
fallback are left as written.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

# Directory holding vivid_voice/ and config/
_PROJ_DIR = Path(__file__).resolve().parent.parent.parent

DEFAULT_CONFIG_PATH = "config/vivid-voice.yaml"

_DEFAULTED_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*):-([^}]*)\}")


def resolve_config_path(path: Optional[str] = None) -> str:
    """
    Absolute path of the configuration file.

    ``path`` wins; otherwise VIVID_CONFIG, otherwise the bundled default.
    """
    chosen = Path(path or os.getenv("VIVID_CONFIG") or DEFAULT_CONFIG_PATH)
    if not chosen.is_absolute():
        chosen = _PROJ_DIR / chosen
    return str(chosen)


def expand_env(text: str) -> str:
    text = _DEFAULTED_REF.sub(lambda m: os.environ.get(m.group(1)) or m.group(2), text)
    return os.path.expandvars(text)


def load_yaml_with_env_expansion(path: str) -> Dict[str, Any]:
    """
    Read, expand and parse a YAML file.

    Raises:
        FileNotFoundError: The file does not exist
        yaml.YAMLError: The expanded text is not valid YAML
    """
    config_file = Path(path)
    if not config_file.is_file():
        raise FileNotFoundError(f"Configuration file not found at: {path}")

    text = expand_env(config_file.read_text(encoding="utf-8"))
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Error parsing YAML configuration {path}: {e}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise yaml.YAMLError(f"Error parsing YAML configuration {path}: top level must be a mapping")
    return data
