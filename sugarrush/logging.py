from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

SERVICE_NAME = "sugarrush"

# Per-request correlation id, set by the HTTP middleware
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_SENSITIVE_KEYS = frozenset({
    "authorization",
    "token",
    "access_token",
    "google_access_token",
    "googleaccesstoken",
    "jwt_secret",
    "client_secret",
    "email",
    "phone_number",
})
_SENSITIVE_SUFFIXES = ("_token", "_secret", "_email")

_TRUTHY = {"1", "true", "yes", "on"}


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind ``correlation_id`` (or a fresh uuid4) to the current context."""
    cid = correlation_id or str(uuid.uuid4())
    correlation_id_var.set(cid)
    return cid


def is_sensitive_key(key: str) -> bool:
    """Exact names and ``*_token``/``*_secret``/``*_email`` fields are masked.

    Names that merely contain a sensitive word, such as ``token_store_type``,
    are left alone.
    """
    lower_key = key.lower()
    return lower_key in _SENSITIVE_KEYS or lower_key.endswith(_SENSITIVE_SUFFIXES)


def mask_value(key: str, value: str) -> str:
    """Email addresses keep their domain; everything else keeps its last 4 chars."""
    if "@" in value and "email" in key.lower():
        local, _, domain = value.partition("@")
        return f"{local[:2]}***@{domain}"
    if len(value) <= 4:
        return "***"
    return "***" + value[-4:]


def _add_request_context(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    cid = get_correlation_id()
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def _redact_sensitive(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        if isinstance(value, str) and value and is_sensitive_key(key):
            event_dict[key] = mask_value(key, value)
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """Install the structlog pipeline.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR
        json_output: render one JSON object per line
        development_mode: colored console output, overrides ``json_output``
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _add_request_context,
        _redact_sensitive,
        structlog.processors.StackInfoRenderer(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=development_mode))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_from_env() -> None:
    """Read LOG_LEVEL, LOG_JSON and LOG_DEV_MODE."""
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_output=os.getenv("LOG_JSON", "true").lower() in _TRUTHY,
        development_mode=os.getenv("LOG_DEV_MODE", "false").lower() in _TRUTHY,
    )


configure_from_env()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
