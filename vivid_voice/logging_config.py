"""
Structured logging for the Vivid voice orchestrator.

structlog renders every record as JSON (default) or as colorized console
lines. Each record carries the service name, the emitting component and, while
a voice session is active, its session id as ``correlation_id``. Session
credentials and bearer tokens are scrubbed before rendering.
"""

import contextvars
import logging
import os
import sys
import time
import uuid
from logging.handlers import RotatingFileHandler
from typing import Any, List, Optional

import structlog
from structlog import dev as structlog_dev

# Active voice session id; set by RealtimeVoiceSession.connect()
correlation_id_var: contextvars.ContextVar = contextvars.ContextVar('correlation_id', default=None)

REDACTED = "***REDACTED***"

# Compared against keys with "_" and "-" stripped, exact or as a suffix
SENSITIVE_KEYS = frozenset({
    'apikey', 'apikeys',
    'token', 'accesstoken', 'refreshtoken', 'authtoken', 'apitoken', 'bearer',
    'password', 'passwd', 'pwd',
    'authorization',
    'credential', 'credentials', 'secret', 'secrets', 'clientsecret',
    'privatekey',
})

# Too short to match as a suffix ("bypass", "oauth")
SENSITIVE_EXACT_KEYS = frozenset({'pass', 'auth'})

_NOISY_LOGGERS = ('websockets', 'websockets.client', 'aiohttp', 'asyncio')

_service_name = 'vivid-voice'


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(value: Optional[str] = None) -> str:
    """Bind a correlation id (a fresh uuid when none is given) and return it."""
    value = value or str(uuid.uuid4())
    correlation_id_var.set(value)
    return value


def clear_correlation_id() -> None:
    correlation_id_var.set(None)


def add_correlation_id(logger, method_name, event_dict):
    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict['correlation_id'] = correlation_id
    return event_dict


def add_service_context(logger, method_name, event_dict):
    event_dict['service'] = _service_name
    if not event_dict.get('component'):
        event_dict['component'] = event_dict.get('logger') or getattr(logger, 'name', 'unknown')
    return event_dict


def _is_sensitive_key(key: Any) -> bool:
    normalized = str(key).lower().replace('_', '').replace('-', '')
    if normalized in SENSITIVE_EXACT_KEYS:
        return True
    return any(normalized == pattern or normalized.endswith(pattern) for pattern in SENSITIVE_KEYS)


def _scrub(value: Any, sensitive: bool = False) -> Any:
    """Walk ``value``; everything under a sensitive key is masked."""
    if isinstance(value, dict):
        return {k: _scrub(v, sensitive or _is_sensitive_key(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(v, sensitive) for v in value]
    if not sensitive or value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        if not value:
            return value
        # Two leading characters survive ("ek" marks an ephemeral key)
        return f"{value[:2]}{REDACTED}" if len(value) > 4 else REDACTED
    return REDACTED


def sanitize_secrets(logger, method_name, event_dict):
    """
    Redact credentials from a log event.

    Ephemeral client secrets, the internal endpoint token and Authorization
    headers must never reach stdout or a log file.
    """
    return _scrub(event_dict)


def _build_processors(show_tracebacks: bool) -> List[Any]:
    def drop_exc_info(logger, method_name, event_dict):
        if not show_tracebacks:
            event_dict.pop("exc_info", None)
        return event_dict

    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_service_context,
        add_correlation_id,
        sanitize_secrets,
        drop_exc_info,
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]


def _file_handler(path: str, service_name: str, formatter: logging.Formatter) -> Optional[logging.Handler]:
    """Rotating file handler; a directory path gets a timestamped file name."""
    stamp = time.strftime("%Y%m%d-%H%M%S")
    if path.endswith(os.sep) or os.path.isdir(path):
        path = os.path.join(path, f"{service_name}-{stamp}.log")
    else:
        path = path.replace("{ts}", stamp)
    try:
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)
    except OSError as e:
        structlog.get_logger(__name__).warning(
            "File logging disabled; continuing with console only",
            error=str(e),
            configured_path=path,
        )
        return None
    handler.setFormatter(formatter)
    return handler


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes")


def configure_logging(log_level="INFO", log_format="json", log_to_file=False,
                      log_file_path="vivid-voice.log", service_name="vivid-voice"):
    """
    Configure structlog and the root logger.

    Environment overrides (optional):
      - LOG_LEVEL: debug|info|warning|error|critical
      - LOG_FORMAT: json|console
      - LOG_COLOR: 0|1 (console only; default 1)
      - LOG_TO_FILE: 0|1
      - LOG_FILE_PATH: file or directory; "{ts}" is replaced by a timestamp
      - LOG_SHOW_TRACEBACKS: auto|always|never (auto shows them at DEBUG only)
    """
    global _service_name
    _service_name = service_name

    level_name = str(os.getenv("LOG_LEVEL") or log_level).upper()
    level_value = getattr(logging, level_name, logging.INFO)
    log_format = os.getenv("LOG_FORMAT", log_format).strip().lower()
    log_to_file = _env_flag("LOG_TO_FILE", log_to_file)
    log_file_path = os.getenv("LOG_FILE_PATH", log_file_path)

    tracebacks = os.getenv("LOG_SHOW_TRACEBACKS", "auto").strip().lower()
    show_tracebacks = tracebacks == "always" or (tracebacks == "auto" and level_value == logging.DEBUG)

    structlog.configure(
        processors=_build_processors(show_tracebacks),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if log_format == "console":
        renderer = structlog_dev.ConsoleRenderer(colors=_env_flag("LOG_COLOR", True))
    else:
        renderer = structlog.processors.JSONRenderer()
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level_value)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        file_handler = _file_handler(log_file_path, service_name, formatter)
        if file_handler is not None:
            root_logger.addHandler(file_handler)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str):
    return structlog.get_logger(name)
