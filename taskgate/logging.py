from __future__ import annotations

import hashlib
import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

EventDict = Dict[str, Any]

correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_SENSITIVE_FRAGMENTS = ("password", "secret", "token", "authorization", "cookie", "email", "sid")
# digests and short prefixes are already safe to print
_SAFE_SUFFIXES = ("_hash", "_prefix")


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind the request's correlation id, minting one when the client sent none."""
    value = correlation_id or uuid.uuid4().hex
    correlation_id_var.set(value)
    return value


def hash_identifier(value: str) -> str:
    """Short, stable digest used in place of emails and credentials in log events."""
    normalized = value.strip().lower().encode("utf-8")
    return hashlib.sha256(normalized).hexdigest()[:16]


def _mask(value: str) -> str:
    if len(value) <= 4:
        return value
    return f"{value[:2]}***{value[-2:]}"


def _is_sensitive(key: str) -> bool:
    if key.endswith(_SAFE_SUFFIXES):
        return False
    lowered = key.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_FRAGMENTS)


def _inject_correlation_id(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    cid = correlation_id_var.get()
    if cid:
        event_dict.setdefault("correlation_id", cid)
    return event_dict


def _scrub_sensitive(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    for key, value in event_dict.items():
        if isinstance(value, str) and _is_sensitive(key):
            event_dict[key] = _mask(value)
    return event_dict


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(
    level: str = "INFO", *, json_output: bool = True, development: bool = False
) -> None:
    """Install the structlog pipeline.

    Every event gets a level, an ISO timestamp and the request's correlation
    id; credential-like string fields are masked before rendering. JSON lines
    are emitted unless ``development`` or ``json_output=False`` asks for the
    coloured console renderer.
    """
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _inject_correlation_id,
        _scrub_sensitive,
        structlog.processors.StackInfoRenderer(),
    ]
    if development or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors.extend(
            [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", "true"),
    development=_env_flag("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
