"""
Structured logging setup for the contact push notification service.
Provides JSON-formatted logs with consistent fields for production monitoring.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured logging with JSON output for production.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            _redact_push_tokens,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Suppress noisy third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def _redact_push_tokens(logger, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask raw device tokens that slipped into a log call."""
    for key in ("push_token", "token"):
        value = event_dict.get(key)
        if isinstance(value, str):
            event_dict[key] = mask_token(value)
    return event_dict


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def mask_token(token: str | None) -> str:
    """Return a log-safe preview of a device token (short prefix and suffix only)."""
    if not token:
        return "none"
    if len(token) <= 10:
        return "***"
    return f"{token[:6]}...{token[-4:]}"


def log_dispatch_failure(
    message_id: Any,
    contact_id: Any,
    channel: str | None,
    status_code: int | None,
    reason: str,
    push_token: str | None = None,
    permanent: bool = True,
) -> None:
    """Log a failed push dispatch with the fields operators need for diagnosis."""
    logger = get_logger("push.delivery")

    log_data = {
        "message_id": message_id,
        "contact_id": contact_id,
        "channel": channel,
        "status_code": status_code,
        "reason": reason,
        "token_preview": mask_token(push_token),
        "event_type": "push_dispatch_failed",
    }

    if permanent:
        logger.error("Push dispatch failed permanently", **log_data)
    else:
        logger.warning("Push dispatch failed, will retry", **log_data)
