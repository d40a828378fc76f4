"""
Kafka consumer with manual, per-record acknowledgment.

Provides async consumption of order records with:
- Auto-commit disabled; each record's offset committed synchronously right
  after its processing callback returns or raises
- Processing failures logged and acknowledged, never redelivered
- Optional failure hook (dead-letter extension point)
- Cooperative shutdown that lets the in-flight callback finish
"""

import asyncio
import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional

from confluent_kafka import Consumer, KafkaError, KafkaException, Message

from order_relay.common.exceptions import ErrorCategory, RecordDecodeError
from order_relay.common.logging import (
    KafkaLogContext,
    get_logger,
    log_exception,
    log_with_context,
)
from order_relay.metrics import (
    observe_processing_time,
    record_commit,
    record_processed,
    record_processing_failure,
    set_connection_status,
)
from order_relay.schemas.orders import OrderRecord
from order_relay.transport import GROUP_ID, Role, TransportConfig

logger = get_logger(__name__)

DEFAULT_TOPICS = ("orders",)


@dataclass(frozen=True)
class RecordMetadata:
    """Where a consumed record came from."""

    key: Optional[str]
    topic: str
    partition: int
    offset: int


@dataclass(frozen=True)
class ReceivedRecord:
    """A consumed message: the decoded record (None if undecodable) and its metadata."""

    record: Optional[OrderRecord]
    metadata: RecordMetadata
    raw: Optional[bytes] = None


ProcessingCallback = Callable[[OrderRecord, RecordMetadata], Awaitable[None]]
FailureHook = Callable[[ReceivedRecord, Exception], Awaitable[None]]


class AckToken:
    """
    Single-use acknowledgment for one delivered record.

    commit() runs the commit action the first time and is a logged no-op
    afterwards.
    """

    def __init__(self, topic: str, partition: int, offset: int, commit_action: Callable[[], object]):
        self.topic = topic
        self.partition = partition
        self.offset = offset
        self._commit_action = commit_action
        self._committed = False

    @property
    def committed(self) -> bool:
        return self._committed

    def commit(self) -> bool:
        """
        Commit this record's offset.

        Returns:
            True if this call committed, False if already committed

        Raises:
            KafkaException: If the broker rejects the commit
        """
        if self._committed:
            log_with_context(
                logger,
                logging.DEBUG,
                "Offset already committed, ignoring",
                topic=self.topic,
                partition=self.partition,
                offset=self.offset,
            )
            return False
        self._commit_action()
        self._committed = True
        return True

    def __repr__(self) -> str:
        return (
            f"AckToken({self.topic}:{self.partition}@{self.offset}, "
            f"committed={self._committed})"
        )


def decode_record(message: Message) -> OrderRecord:
    """
    Decode a message value into an OrderRecord.

    Raises:
        RecordDecodeError: If the value is empty or not a valid order
    """
    value = message.value()
    if not value:
        raise RecordDecodeError("Message has no payload")
    try:
        return OrderRecord.from_json(value)
    except ValueError as e:
        raise RecordDecodeError("Message is not a valid order record", cause=e) from e


class AckingConsumer:
    """
    Async consumer around one long-lived confluent_kafka.Consumer.

    Records are handed to the callback one at a time, in receipt order.
    Blocking client calls (poll, commit, close) run on a dedicated single
    worker thread.

    Usage:
        >>> async def handle(record: OrderRecord, metadata: RecordMetadata):
        ...     print(record.id, metadata.offset)
        >>>
        >>> consumer = AckingConsumer(builder.build(Role.CONSUME), handle)
        >>> await consumer.start()  # runs until stop() is called
    """

    def __init__(
        self,
        config: TransportConfig,
        callback: ProcessingCallback,
        topics: Optional[List[str]] = None,
        failure_hook: Optional[FailureHook] = None,
        max_batches: Optional[int] = None,
    ):
        """
        Initialize the consumer.

        Args:
            config: Consume-role transport config
            callback: Async processing callback, called per record
            topics: Topics to subscribe to (default: orders)
            failure_hook: Optional async hook called with the record and the
                error when processing fails, before the record is acknowledged
            max_batches: Optional limit on number of batches to process (None = unlimited).
                        Useful for testing. A batch is one non-empty poll result.

        Raises:
            ValueError: If config was not built for the consume role, or no topics
        """
        if config.role is not Role.CONSUME:
            raise ValueError(f"AckingConsumer needs a consume config, got {config.role.value}")
        topics = list(topics) if topics is not None else list(DEFAULT_TOPICS)
        if not topics:
            raise ValueError("At least one topic must be specified")

        self.config = config
        self.topics = topics
        self.group_id = config.get(GROUP_ID, "")
        self.callback = callback
        self.failure_hook = failure_hook
        self._consumer: Optional[Consumer] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._running = False
        self._stopped = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

        # Batch limiting for testing
        self.max_batches = max_batches
        self._batch_count = 0

        log_with_context(
            logger,
            logging.INFO,
            "Initialized Kafka consumer",
            topic=",".join(topics),
            consumer_group=self.group_id,
        )

    async def start(self) -> None:
        """
        Connect, subscribe and process records until stop() is called.

        The connection is closed when this method returns, whether the loop
        ended through stop(), max_batches, cancellation or an error.

        Raises:
            ConfigurationError: If the consume config is incomplete
        """
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        log_with_context(
            logger,
            logging.INFO,
            "Starting Kafka consumer",
            topic=",".join(self.topics),
            consumer_group=self.group_id,
        )

        client_config = self.config.client_config()
        loop = asyncio.get_running_loop()

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="order-relay-consumer")
        self._consumer = Consumer(client_config)
        self._consumer.subscribe(
            self.topics, on_assign=self._on_assign, on_revoke=self._on_revoke
        )
        self._running = True
        self._stopped.clear()
        self._loop_task = asyncio.current_task()

        set_connection_status("consumer", connected=True)
        log_with_context(
            logger,
            logging.INFO,
            "Kafka consumer started successfully",
            topic=",".join(self.topics),
            consumer_group=self.group_id,
            bootstrap_servers=client_config.get("bootstrap.servers"),
        )

        try:
            await self._consume_loop()
        except asyncio.CancelledError:
            logger.info("Consumer loop cancelled, shutting down")
            raise
        except Exception as e:
            log_exception(logger, e, "Consumer loop terminated with error")
            raise
        finally:
            self._running = False
            await self._close(loop)

    async def stop(self) -> None:
        """
        Ask the consume loop to finish.

        The in-flight callback, if any, completes and its record is
        acknowledged; no further records are processed. Waits until the
        connection is closed. Safe to call multiple times.
        """
        if not self._running:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping Kafka consumer")
        self._running = False

        # Called from inside the callback: the loop closes once it unwinds
        if asyncio.current_task() is self._loop_task:
            return
        await self._stopped.wait()

    @property
    def is_running(self) -> bool:
        """Check if consumer is running and processing messages."""
        return self._running and self._consumer is not None

    async def _close(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            if self._consumer is not None:
                await loop.run_in_executor(self._executor, self._consumer.close)
            logger.info("Kafka consumer stopped successfully")
        except KafkaException as e:
            log_exception(logger, e, "Error closing Kafka consumer")
        finally:
            set_connection_status("consumer", connected=False)
            if self._executor is not None:
                self._executor.shutdown(wait=False)
            self._consumer = None
            self._executor = None
            self._loop_task = None
            self._stopped.set()

    async def _consume_loop(self) -> None:
        """
        Main message consumption loop.

        If max_batches is set, exits after processing that many batches.
        """
        loop = asyncio.get_running_loop()
        log_with_context(
            logger,
            logging.INFO,
            "Starting message consumption loop",
            batch_size=self.config.max_poll_records,
            consumer_group=self.group_id,
        )

        while self._running:
            if self.max_batches is not None and self._batch_count >= self.max_batches:
                log_with_context(
                    logger,
                    logging.INFO,
                    "Reached max_batches limit, stopping consumer",
                    batches_processed=self._batch_count,
                )
                return

            try:
                messages = await loop.run_in_executor(
                    self._executor,
                    functools.partial(
                        self._consumer.consume,
                        num_messages=self.config.max_poll_records,
                        timeout=self.config.poll_timeout_s,
                    ),
                )
            except KafkaException as e:
                log_exception(logger, e, "Error polling Kafka", level=logging.WARNING)
                await asyncio.sleep(1)
                continue

            if not messages:
                continue
            self._batch_count += 1

            for message in messages:
                if not self._running:
                    logger.info("Consumer stopped, breaking message loop")
                    return

                error = message.error()
                if error is not None:
                    self._log_client_error(error)
                    continue

                await self._process_message(message)

    async def _process_message(self, message: Message) -> None:
        key_bytes = message.key()
        metadata = RecordMetadata(
            key=key_bytes.decode("utf-8", errors="replace") if key_bytes else None,
            topic=message.topic(),
            partition=message.partition(),
            offset=message.offset(),
        )
        token = AckToken(
            metadata.topic,
            metadata.partition,
            metadata.offset,
            functools.partial(self._consumer.commit, message=message, asynchronous=False),
        )

        # Use KafkaLogContext to automatically include Kafka context in all logs
        with KafkaLogContext(
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
            key=metadata.key,
            consumer_group=self.group_id,
        ):
            logger.info("Received order message")

            start_time = time.perf_counter()
            record: Optional[OrderRecord] = None
            try:
                record = decode_record(message)
                await self.callback(record, metadata)
            except Exception as e:
                duration = time.perf_counter() - start_time
                await self._handle_processing_error(
                    ReceivedRecord(record=record, metadata=metadata, raw=message.value()),
                    e,
                    duration,
                )
            else:
                duration = time.perf_counter() - start_time
                record_processed(metadata.topic, self.group_id, success=True)
                log_with_context(
                    logger,
                    logging.INFO,
                    "Successfully processed order",
                    order_id=record.id,
                    duration_ms=round(duration * 1000, 2),
                )
            observe_processing_time(metadata.topic, self.group_id, duration)

            await self._acknowledge(token)

    async def _handle_processing_error(
        self, received: ReceivedRecord, error: Exception, duration: float
    ) -> None:
        category = getattr(error, "category", ErrorCategory.UNKNOWN)
        topic = received.metadata.topic

        record_processed(topic, self.group_id, success=False)
        record_processing_failure(topic, self.group_id, category.value)

        log_exception(
            logger,
            error,
            "Error processing order",
            order_id=received.record.id if received.record else None,
            error_category=category.value,
            duration_ms=round(duration * 1000, 2),
        )

        if self.failure_hook is None:
            return
        try:
            await self.failure_hook(received, error)
        except Exception as hook_error:
            log_exception(logger, hook_error, "Failure hook raised")

    async def _acknowledge(self, token: AckToken) -> None:
        loop = asyncio.get_running_loop()
        try:
            committed = await loop.run_in_executor(self._executor, token.commit)
        except KafkaException as e:
            log_exception(logger, e, "Failed to commit offset", level=logging.WARNING)
            return

        if committed:
            record_commit(token.topic, token.partition, self.group_id, token.offset)
            logger.debug("Offset committed")

    def _log_client_error(self, error: KafkaError) -> None:
        if error.code() == KafkaError._PARTITION_EOF:
            return
        log_with_context(
            logger,
            logging.WARNING,
            "Kafka client reported an error",
            error_type=error.name(),
            error_message=error.str(),
        )

    def _on_assign(self, consumer: Consumer, partitions: list) -> None:
        log_with_context(
            logger,
            logging.INFO,
            "Partition assignment received",
            consumer_group=self.group_id,
            partition_count=len(partitions),
        )

    def _on_revoke(self, consumer: Consumer, partitions: list) -> None:
        log_with_context(
            logger,
            logging.INFO,
            "Partitions revoked",
            consumer_group=self.group_id,
            partition_count=len(partitions),
        )


__all__ = [
    "AckToken",
    "AckingConsumer",
    "FailureHook",
    "ProcessingCallback",
    "ReceivedRecord",
    "RecordMetadata",
    "decode_record",
]
