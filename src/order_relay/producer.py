"""
Kafka producer with per-message delivery tracking.

Provides fire-and-forget publishing of order records with:
- Idempotent, acks=all delivery (see order_relay.transport)
- A DeliveryHandle per message, completed on the event loop once the
  broker acknowledges or the client gives up
- Logged delivery outcomes; failures are never raised to the caller
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Generator, Optional, Set

from confluent_kafka import KafkaError, KafkaException, Producer

from order_relay.common.exceptions import PublishError
from order_relay.common.logging import log_exception, log_with_context
from order_relay.metrics import (
    record_delivery,
    record_publish_failure,
    set_connection_status,
)
from order_relay.schemas.orders import OrderRecord
from order_relay.transport import Role, TransportConfig

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "orders"
POLL_INTERVAL_S = 0.1
FLUSH_TIMEOUT_S = 30.0


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome of one publish: broker coordinates, or the failure."""

    key: str
    topic: str
    partition: Optional[int] = None
    offset: Optional[int] = None
    error: Optional[PublishError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class DeliveryHandle:
    """
    One in-flight publish.

    Await the handle (or register a callback) to get its DeliveryResult.
    The result is set exactly once, on the event loop, and never before
    the publish call that created the handle has returned.
    """

    def __init__(self, key: str, topic: str, future: "asyncio.Future[DeliveryResult]"):
        self.key = key
        self.topic = topic
        self._future = future

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> DeliveryResult:
        """Completed result. Raises asyncio.InvalidStateError if still pending."""
        return self._future.result()

    def add_done_callback(self, callback: Callable[[DeliveryResult], Any]) -> None:
        self._future.add_done_callback(lambda fut: callback(fut.result()))

    def __await__(self) -> Generator[Any, None, DeliveryResult]:
        return self._future.__await__()

    def _complete(self, result: DeliveryResult) -> bool:
        if self._future.done():
            return False
        self._future.set_result(result)
        return True

    def __repr__(self) -> str:
        state = "done" if self.done() else "pending"
        return f"DeliveryHandle(key={self.key!r}, topic={self.topic!r}, {state})"


class DeliveryProducer:
    """
    Async wrapper around one long-lived confluent_kafka.Producer.

    send() enqueues a record and returns immediately. Delivery reports are
    served by a background thread polling the client and handed back to the
    event loop.

    Usage:
        >>> builder = TransportConfigBuilder(settings)
        >>> async with DeliveryProducer(builder.build(Role.PUBLISH)) as producer:
        ...     handle = producer.publish(record)
        ...     result = await handle
        ...     print(result.partition, result.offset)
    """

    def __init__(self, config: TransportConfig, topic: str = DEFAULT_TOPIC):
        """
        Args:
            config: Publish-role transport config
            topic: Topic records are published to

        Raises:
            ValueError: If config was not built for the publish role
        """
        if config.role is not Role.PUBLISH:
            raise ValueError(f"DeliveryProducer needs a publish config, got {config.role.value}")

        self.config = config
        self.topic = topic
        self._producer: Optional[Producer] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._poll_thread: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._pending: Set[DeliveryHandle] = set()
        self._started = False

    async def start(self) -> None:
        """
        Create the Kafka client and start serving delivery reports.

        Raises:
            ConfigurationError: If the publish config is incomplete
            KafkaException: If the client rejects the configuration
        """
        if self._started:
            logger.warning("Producer already started, ignoring duplicate start call")
            return

        logger.info("Starting Kafka producer")

        client_config = self.config.client_config()
        self._loop = asyncio.get_running_loop()
        self._producer = Producer(client_config)

        self._stopping.clear()
        self._poll_thread = threading.Thread(
            target=self._serve_delivery_reports,
            name="order-relay-delivery",
            daemon=True,
        )
        self._poll_thread.start()
        self._started = True

        set_connection_status("producer", connected=True)
        log_with_context(
            logger,
            logging.INFO,
            "Kafka producer started successfully",
            bootstrap_servers=client_config.get("bootstrap.servers"),
            security_protocol=client_config.get("security.protocol"),
            topic=self.topic,
        )

    async def stop(self) -> None:
        """
        Flush pending messages and close the client.

        Handles still pending after the flush timeout are completed with a
        PublishError. Safe to call multiple times.
        """
        if not self._started or self._producer is None:
            logger.debug("Producer not started or already stopped")
            return

        logger.info("Stopping Kafka producer")
        loop = asyncio.get_running_loop()

        try:
            remaining = await loop.run_in_executor(None, self._producer.flush, FLUSH_TIMEOUT_S)
            if remaining:
                log_with_context(
                    logger,
                    logging.WARNING,
                    "Messages still queued after flush timeout",
                    topic=self.topic,
                    queued_messages=remaining,
                )
        finally:
            self._stopping.set()
            if self._poll_thread is not None:
                await loop.run_in_executor(None, self._poll_thread.join)
            self._poll_thread = None

            # Let delivery reports scheduled during flush run first
            await asyncio.sleep(0)
            for handle in list(self._pending):
                self._finish(
                    handle,
                    DeliveryResult(
                        key=handle.key,
                        topic=handle.topic,
                        error=PublishError("Producer stopped before delivery completed"),
                    ),
                    message_bytes=0,
                )

            set_connection_status("producer", connected=False)
            self._producer = None
            self._started = False
            logger.info("Kafka producer stopped successfully")

    async def __aenter__(self) -> "DeliveryProducer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    @property
    def is_started(self) -> bool:
        """Check if producer is started and ready to send messages."""
        return self._started and self._producer is not None

    def send(self, record: OrderRecord) -> None:
        """Publish a record without waiting for, or returning, its outcome."""
        self.publish(record)

    def publish(self, record: OrderRecord) -> DeliveryHandle:
        """
        Enqueue a record keyed by its id.

        Never blocks on the broker. Serialization errors and a full local
        queue complete the returned handle with a PublishError.

        Raises:
            RuntimeError: If the producer is not started
        """
        if not self.is_started:
            raise RuntimeError("Producer not started. Call start() first.")

        handle = DeliveryHandle(record.id, self.topic, self._loop.create_future())
        self._pending.add(handle)

        log_with_context(
            logger,
            logging.INFO,
            "Producing order",
            order_id=record.id,
            topic=self.topic,
        )

        try:
            value = record.to_json()
        except (TypeError, ValueError) as e:
            self._fail_soon(handle, PublishError("Could not serialize order", cause=e), "serialization")
            return handle

        try:
            self._producer.produce(
                self.topic,
                key=record.id.encode("utf-8"),
                value=value,
                on_delivery=lambda err, msg: self._on_delivery(handle, len(value), err, msg),
            )
        except BufferError as e:
            self._fail_soon(
                handle,
                PublishError("Local producer queue is full", retriable=True, cause=e),
                "queue_full",
            )
        except KafkaException as e:
            error = e.args[0] if e.args and isinstance(e.args[0], KafkaError) else None
            self._fail_soon(
                handle,
                PublishError(
                    "Kafka client rejected the message",
                    retriable=bool(error and error.retriable()),
                    cause=e,
                ),
                error.name() if error else type(e).__name__,
            )
        return handle

    def _serve_delivery_reports(self) -> None:
        while not self._stopping.is_set():
            self._producer.poll(POLL_INTERVAL_S)

    def _on_delivery(self, handle: DeliveryHandle, message_bytes: int, err, msg) -> None:
        # Runs on the client's delivery thread
        if err is not None:
            result = DeliveryResult(
                key=handle.key,
                topic=handle.topic,
                error=PublishError(
                    f"Delivery failed: {err.str()}",
                    retriable=err.retriable(),
                    context={"code": err.name()},
                ),
            )
        else:
            result = DeliveryResult(
                key=handle.key,
                topic=msg.topic(),
                partition=msg.partition(),
                offset=msg.offset(),
            )

        try:
            self._loop.call_soon_threadsafe(self._finish, handle, result, message_bytes)
        except RuntimeError:
            # Event loop already closed; nobody is left to observe the result
            log_with_context(
                logger,
                logging.WARNING,
                "Delivery report arrived after event loop closed",
                order_id=handle.key,
                topic=handle.topic,
            )

    def _fail_soon(self, handle: DeliveryHandle, error: PublishError, error_type: str) -> None:
        record_publish_failure(self.topic, error_type)
        result = DeliveryResult(key=handle.key, topic=handle.topic, error=error)
        self._loop.call_soon(self._finish, handle, result, 0)

    def _finish(self, handle: DeliveryHandle, result: DeliveryResult, message_bytes: int) -> None:
        self._pending.discard(handle)
        if not handle._complete(result):
            return

        record_delivery(result.topic, message_bytes, success=result.succeeded)

        if result.succeeded:
            log_with_context(
                logger,
                logging.INFO,
                "Successfully sent order",
                order_id=result.key,
                topic=result.topic,
                partition=result.partition,
                offset=result.offset,
            )
        else:
            log_exception(
                logger,
                result.error,
                "Failed to send order",
                include_traceback=False,
                order_id=result.key,
                topic=result.topic,
            )


__all__ = [
    "DeliveryHandle",
    "DeliveryProducer",
    "DeliveryResult",
]
