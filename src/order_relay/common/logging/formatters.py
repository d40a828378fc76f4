"""Log formatters for JSON file output and the console."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from order_relay.common.logging.context import get_log_context

# Record attributes copied into JSON output when set through `extra`
EXTRA_FIELDS = (
    "order_id",
    "duration_ms",
    "error_category",
    "error_message",
    "error_type",
    # Kafka coordinates
    "topic",
    "partition",
    "offset",
    "key",
    "consumer_group",
    "batch_size",
    "partition_count",
    "batches_processed",
    "queued_messages",
    # Connection
    "bootstrap_servers",
    "security_protocol",
    "role",
    # Trust material
    "truststore_location",
    "keystore_path",
    "resource",
    # HTTP
    "http_method",
    "http_path",
    "http_status",
)

_SOURCE_LEVELS = frozenset({logging.DEBUG, logging.ERROR, logging.CRITICAL})


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line.

    Fields come from three places, later ones winning: the record itself,
    the active log context (stage, worker, Kafka coordinates), and fields
    passed through `extra`.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": _utc_timestamp(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.levelno in _SOURCE_LEVELS:
            entry["file"] = f"{record.filename}:{record.lineno}"

        entry.update((k, v) for k, v in get_log_context().items() if v is not None)
        for name in EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    `2025-01-15 10:30:00 - INFO - [consumer] - [o1] Received order message`

    The bracketed worker and order key appear only when known.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        prefix = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), record.levelname]
        if ctx.get("stage"):
            prefix.append(f"[{ctx['stage']}]")
        line = " - ".join(prefix) + " - "

        order_id = getattr(record, "order_id", None) or ctx.get("key")
        if order_id:
            line += f"[{order_id}] "
        line += record.getMessage()

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line
