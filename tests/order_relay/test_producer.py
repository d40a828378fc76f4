"""
Unit tests for DeliveryProducer.

The confluent_kafka client is replaced by an in-memory fake whose poll()
serves delivery reports, so completion runs through the real delivery
thread and event loop hand-off.
"""

import asyncio
from unittest.mock import MagicMock, patch

import pytest
from confluent_kafka import KafkaError

from order_relay.common.exceptions import ConfigurationError, ErrorCategory
from order_relay.config import KafkaSettings
from order_relay.producer import DeliveryProducer, DeliveryResult
from order_relay.transport import Role, TransportConfigBuilder


@pytest.fixture
def publish_config(transport_builder):
    return transport_builder.build(Role.PUBLISH)


class TestConstruction:
    def test_rejects_consume_config(self, transport_builder):
        with pytest.raises(ValueError):
            DeliveryProducer(transport_builder.build(Role.CONSUME))

    def test_publish_before_start_raises(self, publish_config, make_record):
        producer = DeliveryProducer(publish_config)

        with pytest.raises(RuntimeError, match="not started"):
            producer.publish(make_record())


@pytest.mark.asyncio
class TestDeliveryProducer:
    async def test_start_passes_translated_config(self, publish_config, fake_producers):
        async with DeliveryProducer(publish_config) as producer:
            assert producer.is_started

        client_config = fake_producers[0].config
        assert client_config["enable.idempotence"] is True
        assert client_config["acks"] == "all"
        assert not producer.is_started

    async def test_start_without_bootstrap_servers_raises(self, fake_producers):
        config = TransportConfigBuilder(KafkaSettings()).build(Role.PUBLISH)
        producer = DeliveryProducer(config)

        with pytest.raises(ConfigurationError):
            await producer.start()
        assert fake_producers == []

    async def test_publish_keys_by_id_and_completes_with_coordinates(
        self, publish_config, fake_producers, kafka_log, make_record
    ):
        async with DeliveryProducer(publish_config, topic="orders") as producer:
            handle = producer.publish(make_record("o1"))
            result = await asyncio.wait_for(handle, timeout=2)

        assert isinstance(result, DeliveryResult)
        assert result.succeeded
        assert (result.key, result.topic, result.partition, result.offset) == ("o1", "orders", 0, 0)

        [message] = kafka_log.messages("orders")
        assert message.key() == b"o1"
        assert b'"customerId":"c1"' in message.value()

    async def test_handle_never_completes_before_publish_returns(
        self, publish_config, fake_producers, make_record
    ):
        delivered = MagicMock()
        delivered.topic.return_value = "orders"
        delivered.partition.return_value = 0
        delivered.offset.return_value = 7

        async with DeliveryProducer(publish_config) as producer:
            with patch.object(fake_producers[0], "produce") as produce:
                # Deliver synchronously inside produce()
                produce.side_effect = lambda *args, on_delivery, **kwargs: on_delivery(
                    None, delivered
                )
                handle = producer.publish(make_record())
                assert not handle.done()

            result = await asyncio.wait_for(handle, timeout=2)
            assert result.offset == 7

    async def test_send_returns_none(self, publish_config, fake_producers, kafka_log, make_record):
        async with DeliveryProducer(publish_config) as producer:
            assert producer.send(make_record("o2")) is None

        assert [m.key() for m in kafka_log.messages("orders")] == [b"o2"]

    async def test_delivery_failure_completes_handle_without_raising(
        self, publish_config, fake_producers, make_record
    ):
        async with DeliveryProducer(publish_config) as producer:
            fake_producers[0].error = KafkaError(
                KafkaError._MSG_TIMED_OUT, "Message timed out", retriable=True
            )
            result = await asyncio.wait_for(producer.publish(make_record("o3")), timeout=2)

        assert not result.succeeded
        assert result.key == "o3"
        assert result.error.category is ErrorCategory.TRANSIENT
        assert "timed out" in str(result.error)

    async def test_full_local_queue_fails_handle(self, publish_config, fake_producers, make_record):
        async with DeliveryProducer(publish_config) as producer:
            with patch.object(fake_producers[0], "produce", side_effect=BufferError("Queue full")):
                handle = producer.publish(make_record())

            result = await asyncio.wait_for(handle, timeout=2)

        assert not result.succeeded
        assert result.error.is_retryable

    async def test_done_callback_receives_result(self, publish_config, fake_producers, make_record):
        results = []
        async with DeliveryProducer(publish_config) as producer:
            handle = producer.publish(make_record("o4"))
            handle.add_done_callback(results.append)
            await asyncio.wait_for(handle, timeout=2)
            await asyncio.sleep(0)

        assert [r.key for r in results] == ["o4"]

    async def test_stop_flushes_and_fails_undelivered(
        self, publish_config, fake_producers, make_record
    ):
        producer = DeliveryProducer(publish_config)
        await producer.start()
        fake_producers[0].deliver = False

        handle = producer.publish(make_record("o5"))
        await producer.stop()

        assert fake_producers[0].flushed
        assert handle.done()
        assert "stopped before delivery" in str(handle.result().error)

    async def test_stop_is_idempotent(self, publish_config, fake_producers):
        producer = DeliveryProducer(publish_config)
        await producer.start()

        await producer.stop()
        await producer.stop()

        assert not producer.is_started
