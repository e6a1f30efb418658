"""structlog setup shared by the API, the background workers and the scripts.

Events carry the current request id when one is bound. Values logged under
credential-like keys (passwords, secrets, refresh or verification tokens,
cookies, authorization headers) never reach the output; addresses keep only
their first two characters and their domain.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

REQUEST_ID_HEADER = "X-Request-ID"

_request_id: ContextVar[Optional[str]] = ContextVar("reelscore_request_id", default=None)

# Keys containing any of these are masked in full.
_CREDENTIAL_MARKERS = ("password", "secret", "token", "authorization", "cookie")
_MASK = "***"


def bind_request_id(request_id: Optional[str] = None) -> str:
    """Bind the inbound request id (or a fresh one) to the current context."""
    value = request_id or uuid.uuid4().hex
    _request_id.set(value)
    return value


def current_request_id() -> Optional[str]:
    return _request_id.get()


def redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


def _attach_request_id(_logger: Any, _method: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    request_id = _request_id.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    return event_dict


def _mask_credentials(_logger: Any, _method: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        if key == "event" or not isinstance(value, str):
            continue
        lowered = key.lower()
        if any(marker in lowered for marker in _CREDENTIAL_MARKERS):
            event_dict[key] = _MASK
        elif lowered.endswith("email"):
            event_dict[key] = redact_email(value)
    return event_dict


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(level: Optional[str] = None, *, json_output: Optional[bool] = None) -> None:
    """Install the processor chain; JSON lines unless LOG_JSON is off or LOG_DEV_MODE is on."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = _env_flag("LOG_JSON", True) and not _env_flag("LOG_DEV_MODE", False)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _attach_request_id,
        _mask_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
