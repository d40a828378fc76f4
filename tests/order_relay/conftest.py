"""
Fixtures for order_relay unit tests.

Provides:
- In-memory stand-ins for confluent_kafka.Producer / Consumer backed by a
  shared append-only log, so publish and consume paths run without a broker
- Kafka settings and transport builders
- A self-signed CA certificate for trust store tests
"""

import threading
import time
import zlib
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple
from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from order_relay.config import KafkaSettings
from order_relay.schemas.orders import OrderRecord
from order_relay.security.tempfiles import TempFileArena
from order_relay.transport import TransportConfigBuilder


class FakeMessage:
    """Mirrors the accessor API of confluent_kafka.Message."""

    def __init__(self, topic, partition, offset, key, value, error=None):
        self._topic = topic
        self._partition = partition
        self._offset = offset
        self._key = key
        self._value = value
        self._error = error

    def topic(self):
        return self._topic

    def partition(self):
        return self._partition

    def offset(self):
        return self._offset

    def key(self):
        return self._key

    def value(self):
        return self._value

    def error(self):
        return self._error


class InMemoryLog:
    """Partitioned append-only log with committed offsets per partition."""

    def __init__(self, partitions: int = 1):
        self.partitions = partitions
        self.topics: Dict[str, List[List[FakeMessage]]] = {}
        self.committed: Dict[Tuple[str, int], int] = {}
        self._lock = threading.Lock()

    def append(self, topic: str, key: Optional[bytes], value: Optional[bytes]) -> FakeMessage:
        with self._lock:
            partitions = self.topics.setdefault(topic, [[] for _ in range(self.partitions)])
            partition = zlib.crc32(key or b"") % self.partitions
            message = FakeMessage(topic, partition, len(partitions[partition]), key, value)
            partitions[partition].append(message)
            return message

    def messages(self, topic: str) -> List[FakeMessage]:
        return [m for partition in self.topics.get(topic, []) for m in partition]


class FakeProducer:
    """Appends to the log on produce(); delivery reports are served by poll()."""

    def __init__(self, log: InMemoryLog, config: dict, deliver: bool = True, error=None):
        self.log = log
        self.config = config
        self.deliver = deliver
        self.error = error
        self.produced: List[FakeMessage] = []
        self.flushed = False
        self._reports = []
        self._lock = threading.Lock()

    def produce(self, topic, key=None, value=None, on_delivery=None):
        message = self.log.append(topic, key, value)
        with self._lock:
            self.produced.append(message)
            self._reports.append((on_delivery, message))

    def poll(self, timeout=0):
        if not self.deliver:
            time.sleep(min(timeout, 0.01))
            return 0
        with self._lock:
            reports, self._reports = self._reports, []
        for on_delivery, message in reports:
            on_delivery(self.error, None if self.error else message)
        if not reports:
            time.sleep(min(timeout, 0.01))
        return len(reports)

    def flush(self, timeout=None):
        self.flushed = True
        self.poll(0)
        with self._lock:
            return len(self._reports)


class FakeConsumer:
    """Reads from the log starting at the group's committed offsets."""

    def __init__(self, log: InMemoryLog, config: dict):
        self.log = log
        self.config = config
        self.topics: List[str] = []
        self.positions: Dict[Tuple[str, int], int] = {}
        self.commits: List[Tuple[str, int, int]] = []
        self.closed = False

    def subscribe(self, topics, on_assign=None, on_revoke=None):
        self.topics = list(topics)
        for topic in self.topics:
            for partition in range(self.log.partitions):
                self.positions[(topic, partition)] = self.log.committed.get((topic, partition), 0)

    def consume(self, num_messages=1, timeout=-1):
        batch = []
        for (topic, partition), position in sorted(self.positions.items()):
            partitions = self.log.topics.get(topic, [])
            if partition >= len(partitions):
                continue
            available = partitions[partition][position:position + num_messages - len(batch)]
            batch.extend(available)
            self.positions[(topic, partition)] = position + len(available)
        if not batch:
            time.sleep(min(timeout, 0.01))
        return batch

    def commit(self, message=None, asynchronous=True):
        self.commits.append((message.topic(), message.partition(), message.offset()))
        self.log.committed[(message.topic(), message.partition())] = message.offset() + 1

    def close(self):
        self.closed = True


@pytest.fixture
def kafka_log():
    return InMemoryLog()


@pytest.fixture
def fake_producers(kafka_log):
    """Patch the producer's client class; yields the list of created fakes."""
    created: List[FakeProducer] = []

    def factory(config):
        producer = FakeProducer(kafka_log, config)
        created.append(producer)
        return producer

    with patch("order_relay.producer.Producer", side_effect=factory):
        yield created


@pytest.fixture
def fake_consumers(kafka_log):
    """Patch the consumer's client class; yields the list of created fakes."""
    created: List[FakeConsumer] = []

    def factory(config):
        consumer = FakeConsumer(kafka_log, config)
        created.append(consumer)
        return consumer

    with patch("order_relay.consumer.Consumer", side_effect=factory):
        yield created


@pytest.fixture
def kafka_settings():
    return KafkaSettings(bootstrap_servers="localhost:9092", group_id="test-group")


@pytest.fixture
def transport_builder(kafka_settings):
    return TransportConfigBuilder(kafka_settings)


@pytest.fixture
def arena(tmp_path):
    directory = tmp_path / "arena"
    directory.mkdir()
    with TempFileArena(dir=str(directory)) as arena:
        yield arena


@pytest.fixture
def make_record():
    def _make(order_id="o1", status="PENDING", **overrides):
        fields = dict(
            id=order_id,
            customer_id="c1",
            product_name="Widget",
            quantity=2,
            price=Decimal("9.99"),
            timestamp=datetime(2024, 12, 25, 10, 30, tzinfo=timezone.utc),
            status=status,
        )
        fields.update(overrides)
        return OrderRecord(**fields)

    return _make


@pytest.fixture(scope="session")
def ca_certificate_pem() -> bytes:
    """Self-signed CA certificate in PEM form."""
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "order-relay-test-ca")])
    now = datetime.now(timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=30))
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM)
