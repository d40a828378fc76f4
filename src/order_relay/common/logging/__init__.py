"""
Structured logging for order_relay.

JSON file logs with context propagation (stage, worker, Kafka coordinates)
and a human-readable console stream.
"""

from order_relay.common.logging.context import (
    KafkaLogContext,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from order_relay.common.logging.setup import setup_logging
from order_relay.common.logging.utilities import (
    get_logger,
    log_exception,
    log_with_context,
)

__all__ = [
    "KafkaLogContext",
    "clear_log_context",
    "get_log_context",
    "set_log_context",
    "setup_logging",
    "get_logger",
    "log_exception",
    "log_with_context",
]
