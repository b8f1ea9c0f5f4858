"""
Structured logging for the attendance engine.

Every module logs through get_logger(__name__) with keyword fields. Output is
JSON lines outside development so session and delivery events can be
filtered by session_id / session_external_id downstream.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory

from attendance_engine.config import settings

SERVICE_NAME = "attendance-engine"

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "redis")


def setup_logging(log_level: str = "INFO", json_output: bool | None = None) -> None:
    """
    Configure structlog on top of the stdlib root logger.

    Args:
        log_level: Level name for the root logger
        json_output: Force JSON (True) or console (False) rendering; by default
            console rendering is used only in development
    """
    if json_output is None:
        json_output = settings.environment != "development"
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_context,
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def _add_service_context(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_delivery(
    kind: str,
    session_external_id: str | None,
    ok: bool,
    error: str | None = None,
    attempts: int | None = None,
) -> None:
    """Record the outcome of one remote submit with the same fields every time."""
    fields: dict[str, Any] = {"kind": kind, "session_external_id": session_external_id}
    if attempts is not None:
        fields["attempts"] = attempts
    if error:
        fields["error"] = error

    delivery_logger = get_logger("attendance_engine.delivery")
    if ok:
        delivery_logger.info("Remote delivery succeeded", **fields)
    else:
        delivery_logger.warning("Remote delivery failed", **fields)
