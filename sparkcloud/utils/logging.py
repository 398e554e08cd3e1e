"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import re
import sys

import structlog

REDACTED = "***REDACTED***"

# Keys whose values are always masked, whatever they contain
_SENSITIVE_KEYS = frozenset({"auth", "password", "access_token", "authorization"})

_SENSITIVE_PATTERNS = [
    # access_token=abc, "password": "abc", Authorization: Bearer abc
    (
        re.compile(
            r"(token|access_token|secret|password|authorization)[\"']?\s*[:=]\s*"
            r"[\"']?(?:bearer\s+)?[\w\-\.]+",
            re.IGNORECASE,
        ),
        r"\1=" + REDACTED,
    ),
    # Basic auth embedded in webhook URLs
    (re.compile(r"(https?://)[^/\s:@]+:[^/\s@]+@"), r"\1" + REDACTED + "@"),
]

# Event data and webhook response bodies can be large; keep log lines readable
_PAYLOAD_KEYS = frozenset({"data", "body", "payload"})
MAX_PAYLOAD_CHARS = 256

_NOISY_LOGGERS = ("httpx", "httpcore", "aiohttp.access", "aiosqlite")


def redact(value: str) -> str:
    for pattern, replacement in _SENSITIVE_PATTERNS:
        value = pattern.sub(replacement, value)
    return value


def _filter_sensitive(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key, value in list(event_dict.items()):
        if key in _SENSITIVE_KEYS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str):
            event_dict[key] = redact(value)
    return event_dict


def _truncate_payloads(
    _logger: structlog.types.WrappedLogger,
    _method: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key in _PAYLOAD_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if isinstance(value, str) and len(value) > MAX_PAYLOAD_CHARS:
            value = f"{value[:MAX_PAYLOAD_CHARS]}... ({len(value)} chars)"
        event_dict[key] = value
    return event_dict


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog over the stdlib root logger.

    Console output is meant for development; ``json_output`` emits one JSON
    object per line for log shippers. Sensitive values are masked in both.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        _truncate_payloads,
        _filter_sensitive,
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    if numeric_level <= logging.DEBUG:
        get_logger(__name__).warning(
            "debug_logging_enabled",
            detail="event payloads and webhook responses are logged",
        )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
