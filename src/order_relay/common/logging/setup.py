"""Logging setup for the relay workers."""

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from order_relay.common.logging.context import set_log_context
from order_relay.common.logging.formatters import ConsoleFormatter, JSONFormatter

DEFAULT_LOG_DIR = Path("logs")
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5

PLAIN_FILE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(filename)s:%(lineno)d] %(message)s"

# Client libraries that log every request or rebalance at INFO
QUIET_LOGGERS = (
    "aiohttp.access",
    "aiohttp.server",
    "asyncio",
    "confluent_kafka",
)


def get_log_file_path(
    log_dir: Path,
    worker: Optional[str] = None,
    instance_id: Optional[str] = None,
    when: Optional[datetime] = None,
) -> Path:
    """
    Path of the log file for one worker process.

    Layout: {log_dir}/{YYYY-MM-DD}/order_relay[_{worker}]_{YYYYMMDD}[_{instance}].log
    """
    when = when or datetime.now()
    parts = ["order_relay"]
    if worker:
        parts.append(worker)
    parts.append(when.strftime("%Y%m%d"))
    if instance_id:
        parts.append(instance_id)
    return log_dir / when.strftime("%Y-%m-%d") / ("_".join(parts) + ".log")


def _file_handler(
    path: Path, level: int, json_format: bool, max_bytes: int, backup_count: int
) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_format else logging.Formatter(PLAIN_FILE_FORMAT))
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ConsoleFormatter())
    return handler


def setup_logging(
    name: str = "order_relay",
    stage: Optional[str] = None,
    log_dir: Optional[Path] = None,
    json_format: bool = True,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    worker_id: Optional[str] = None,
    use_instance_id: bool = True,
) -> logging.Logger:
    """
    Route all logging to a rotating file and stdout.

    The file gets one JSON object per line (or plain text when json_format
    is False); stdout gets the human-readable console format. Re-running
    replaces the handlers installed by a previous call.

        logs/2025-01-15/order_relay_consumer_20250115_p12345.log

    Args:
        name: Logger to return
        stage: Worker name (api, consumer, all); also set as log context
        log_dir: Base directory for log files (default: ./logs)
        json_format: JSON file logs (default: True)
        console_level: Minimum level printed to stdout
        file_level: Minimum level written to the file
        max_bytes: Rotate the file past this size
        backup_count: Rotated files to keep
        suppress_noisy: Raise client library loggers to WARNING
        worker_id: Worker identifier added to every record
        use_instance_id: Suffix the file name with the process id so
            several processes of one worker never write the same file

    Returns:
        The named logger
    """
    set_log_context(stage=stage, worker_id=worker_id)

    log_file = get_log_file_path(
        log_dir or DEFAULT_LOG_DIR,
        worker=stage,
        instance_id=f"p{os.getpid()}" if use_instance_id else None,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    root_logger.addHandler(
        _file_handler(log_file, file_level, json_format, max_bytes, backup_count)
    )
    root_logger.addHandler(_console_handler(console_level))

    if suppress_noisy:
        for logger_name in QUIET_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(f"Logging initialized: file={log_file}, json={json_format}")
    return logger
