"""Tests for structured logging."""

import json
import logging
from datetime import datetime
from pathlib import Path

import pytest

from order_relay.common.exceptions import PublishError
from order_relay.common.logging import (
    KafkaLogContext,
    get_log_context,
    log_exception,
    log_with_context,
    set_log_context,
    setup_logging,
)
from order_relay.common.logging.formatters import ConsoleFormatter, JSONFormatter
from order_relay.common.logging.setup import get_log_file_path
from order_relay.common.logging.utilities import sanitize_error_message


def make_log_record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord("order_relay.test", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestKafkaLogContext:
    def test_fields_visible_only_inside_block(self):
        with KafkaLogContext(topic="orders", partition=2, offset=5, key="o1"):
            ctx = get_log_context()
            assert (ctx["topic"], ctx["partition"], ctx["offset"], ctx["key"]) == (
                "orders",
                2,
                5,
                "o1",
            )

        assert "topic" not in get_log_context()

    def test_none_fields_are_dropped(self):
        with KafkaLogContext(topic="orders", key=None):
            assert "key" not in get_log_context()

    def test_nested_blocks_merge(self):
        with KafkaLogContext(topic="orders"):
            with KafkaLogContext(offset=3):
                ctx = get_log_context()
                assert ctx["topic"] == "orders"
                assert ctx["offset"] == 3
            assert "offset" not in get_log_context()


class TestJSONFormatter:
    def test_includes_context_and_extras(self):
        set_log_context(stage="consumer", worker_id="w1")

        with KafkaLogContext(topic="orders", partition=0, offset=9):
            line = JSONFormatter().format(make_log_record(order_id="o1", http_status=201))

        entry = json.loads(line)
        assert entry["msg"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["stage"] == "consumer"
        assert entry["worker_id"] == "w1"
        assert entry["offset"] == 9
        assert entry["order_id"] == "o1"
        assert entry["http_status"] == 201
        assert entry["ts"].endswith("Z")

    def test_source_location_only_for_errors(self):
        info = json.loads(JSONFormatter().format(make_log_record()))
        error = json.loads(JSONFormatter().format(make_log_record(level=logging.ERROR)))

        assert "file" not in info
        assert error["file"].endswith(":10")


class TestConsoleFormatter:
    def test_prefixes_stage_and_key(self):
        set_log_context(stage="api")

        with KafkaLogContext(key="o42"):
            line = ConsoleFormatter().format(make_log_record("Producing order"))

        assert "[api]" in line
        assert line.endswith("[o42] Producing order")


class TestLogHelpers:
    def test_log_with_context_passes_extras(self, caplog):
        logger = logging.getLogger("order_relay.test")

        with caplog.at_level(logging.INFO):
            log_with_context(logger, logging.INFO, "Order delivered", order_id="o1", offset=4)

        [record] = caplog.records
        assert record.order_id == "o1"
        assert record.offset == 4

    def test_log_exception_extracts_category(self, caplog):
        logger = logging.getLogger("order_relay.test")
        error = PublishError("broker gone", retriable=True)

        with caplog.at_level(logging.ERROR):
            log_exception(logger, error, "Failed to send order", order_id="o1")

        [record] = caplog.records
        assert record.error_category == "transient"
        assert record.error_type == "PublishError"
        assert record.error_message == "broker gone"
        assert record.exc_info is not None

    def test_log_exception_truncates_long_messages(self, caplog):
        logger = logging.getLogger("order_relay.test")

        with caplog.at_level(logging.WARNING):
            log_exception(
                logger,
                ValueError("x" * 600),
                "Too long",
                level=logging.WARNING,
                include_traceback=False,
            )

        [record] = caplog.records
        assert len(record.error_message) == 503
        assert record.exc_info is None


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def restore_root_handlers(self):
        root_logger = logging.getLogger()
        handlers = list(root_logger.handlers)
        level = root_logger.level
        yield
        for handler in root_logger.handlers:
            handler.close()
        root_logger.handlers[:] = handlers
        root_logger.setLevel(level)

    def test_creates_dated_json_log_file(self, tmp_path):
        logger = setup_logging(stage="consumer", log_dir=tmp_path, worker_id="w1")
        logger.info("Consumer ready")
        for handler in logging.getLogger().handlers:
            handler.flush()

        [log_file] = list(tmp_path.rglob("*.log"))
        assert log_file.name.startswith("order_relay_consumer_")
        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        assert any(
            line["msg"] == "Consumer ready" and line["worker_id"] == "w1" for line in lines
        )

    def test_quiets_noisy_loggers(self, tmp_path):
        setup_logging(log_dir=tmp_path)

        assert logging.getLogger("confluent_kafka").level == logging.WARNING

    def test_log_file_path_layout(self):
        path = get_log_file_path(
            Path("logs"), worker="api", instance_id="p42", when=datetime(2025, 1, 15)
        )

        assert path == Path("logs/2025-01-15/order_relay_api_20250115_p42.log")


class TestSanitizeErrorMessage:
    def test_masks_jaas_password(self):
        message = sanitize_error_message(
            'Login failed for PlainLoginModule required username="relay" password="s3cret";'
        )

        assert "s3cret" not in message
        assert 'username="relay"' in message
        assert 'password=***' in message

    def test_masks_unquoted_password(self):
        assert sanitize_error_message("sasl password=hunter2 rejected") == (
            "sasl password=*** rejected"
        )
