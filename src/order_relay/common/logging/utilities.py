"""Structured logging helpers."""

import logging
import re
from typing import Any

MAX_ERROR_MESSAGE_LENGTH = 500

# Credentials that may appear in client error text (JAAS strings, configs)
_SECRET_PATTERN = re.compile(r'(password\s*=\s*)("[^"]*"|\S+)', re.IGNORECASE)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def sanitize_error_message(message: str) -> str:
    """Mask password values and cap the length of an error message."""
    message = _SECRET_PATTERN.sub(r"\1***", message)
    if len(message) > MAX_ERROR_MESSAGE_LENGTH:
        message = message[:MAX_ERROR_MESSAGE_LENGTH] + "..."
    return message


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **fields: Any,
) -> None:
    """
    Log `msg` with structured fields attached to the record.

    Field names listed in JSONFormatter's EXTRA_FIELDS show up in the JSON
    file logs.

    Example:
        log_with_context(
            logger, logging.INFO, "Successfully sent order",
            order_id=record.id,
            partition=3,
            offset=1042,
        )
    """
    logger.log(level, msg, extra=fields)


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **fields: Any,
) -> None:
    """
    Log an exception with its type, category and sanitized message.

    error_category is taken from RelayError subclasses unless given
    explicitly.

    Args:
        logger: Logger instance
        exc: Exception to log
        msg: What was being attempted
        level: Log level (default: ERROR)
        include_traceback: Attach the traceback (default: True)
        **fields: Additional structured fields

    Example:
        try:
            await callback(record, metadata)
        except Exception as e:
            log_exception(logger, e, "Error processing order", order_id=record.id)
    """
    category = getattr(exc, "category", None)
    if fields.get("error_category") is None and category is not None:
        fields["error_category"] = getattr(category, "value", str(category))

    fields["error_message"] = sanitize_error_message(str(exc))
    fields.setdefault("error_type", type(exc).__name__)

    logger.log(level, msg, exc_info=exc if include_traceback else None, extra=fields)
