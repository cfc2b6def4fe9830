"""
Logger Implementation
=====================

Configures structlog for structured logging with:
- JSON output in production
- Colored console output in development
- Context binding for credential and transaction identifiers
- Redaction of keys, seeds and credential payloads
- Abbreviation of ciphertext envelopes and remark markers

Version: 0.1.0
"""

import datetime
import logging
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor


if TYPE_CHECKING:
    from structlog.stdlib import BoundLogger


_SERVICE_NAME = "credvault"
_REDACTED = "***REDACTED***"

# Substrings of keys whose values never reach a log line
_SENSITIVE_KEYS = (
    "password",
    "secret",
    "token",
    "authorization",
    "private_key",
    "seed",
    "encryption_key",
    "credential_data",
    "plaintext",
)

# `<key_id>.<base64>` envelopes and `KIND:...` remark markers
_ENVELOPE_PATTERN = re.compile(r"^[A-Za-z0-9]+\.[A-Za-z0-9+/=]{48,}$")
_MARKER_PATTERN = re.compile(r"^[A-Z_]+:[^:]+:")
_MAX_OPAQUE_CHARS = 48

_NOISY_LOGGERS = ("httpx", "httpcore", "aiosqlite", "asyncio", "websocket", "substrateinterface")


def _add_service_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add service-level context to all log entries."""
    event_dict.setdefault("service", _SERVICE_NAME)
    return event_dict


def _add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Add ISO timestamp to log entries."""
    event_dict["timestamp"] = datetime.datetime.now(datetime.UTC).isoformat()
    return event_dict


def _is_sensitive(key: str) -> bool:
    key_lower = key.lower()
    return any(s in key_lower for s in _SENSITIVE_KEYS)


def _censor(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _REDACTED if _is_sensitive(str(k)) else _censor(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_censor(v) for v in value]
    return value


def _censor_secrets(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Censor sensitive data in logs, including inside nested dicts and lists."""
    return _censor(event_dict)


def _abbreviate(value: str) -> str:
    return f"{value[:_MAX_OPAQUE_CHARS]}...({len(value)} chars)"


def _shorten_opaque_values(
    logger: logging.Logger,
    method_name: str,
    event_dict: EventDict,
) -> EventDict:
    """Cut ciphertext envelopes and remark markers down to a prefix and length."""
    for key, value in event_dict.items():
        if key == "event" or not isinstance(value, str) or len(value) <= _MAX_OPAQUE_CHARS:
            continue
        if _ENVELOPE_PATTERN.match(value) or _MARKER_PATTERN.match(value):
            event_dict[key] = _abbreviate(value)
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_logs: bool = False,
    service_name: str = "credvault",
) -> None:
    """
    Configure structlog for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Whether to output JSON format (True for production)
        service_name: Name of the service for context
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service_name

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )
    for noisy_logger in _NOISY_LOGGERS:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        _add_timestamp,
        _add_service_context,
        _censor_secrets,
        _shorten_opaque_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        shared_processors.append(structlog.dev.set_exc_info)
        # Locals would print keys and plaintext
        renderer = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.RichTracebackFormatter(
                show_locals=False,
                max_frames=10,
            ),
        )

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root_handler = logging.StreamHandler(sys.stdout)
    root_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(root_handler)


def get_logger(name: str | None = None) -> "BoundLogger":
    """
    Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("credential_created", credential_id="abc123", storage_type="hybrid")
    """
    return structlog.stdlib.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent logs in this async context.

    Tasks copy the context when created, so a binding made inside a task
    stays inside it.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[None]:
    """
    Bind context variables for the duration of a block.

    Example:
        with bound_context(credential_id="abc123"):
            logger.info("blob_uploaded")  # includes credential_id
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
