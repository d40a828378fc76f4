"""
Prometheus metrics for the order relay.

Publish side: delivery outcomes and failures per topic.
Consume side: processing outcomes, commits and callback duration per group.
Exposed by the metrics HTTP server started in __main__.
"""

from prometheus_client import Counter, Gauge, Histogram

PREFIX = "order_relay"

TOPIC = ("topic",)
TOPIC_GROUP = ("topic", "consumer_group")

# Publish
orders_published = Counter(
    f"{PREFIX}_orders_published_total",
    "Orders whose delivery completed, by outcome (success, error)",
    TOPIC + ("status",),
)
published_bytes = Counter(
    f"{PREFIX}_published_bytes_total",
    "Payload bytes acknowledged by the broker",
    TOPIC,
)
publish_failures = Counter(
    f"{PREFIX}_publish_failures_total",
    "Publishes that failed before reaching the broker, by failure type",
    TOPIC + ("error_type",),
)

# Consume
orders_processed = Counter(
    f"{PREFIX}_orders_processed_total",
    "Orders handed to the processing callback, by outcome (success, error)",
    TOPIC_GROUP + ("status",),
)
processing_failures = Counter(
    f"{PREFIX}_processing_failures_total",
    "Processing failures by error category",
    TOPIC_GROUP + ("error_category",),
)
offsets_committed = Counter(
    f"{PREFIX}_offsets_committed_total",
    "Offsets committed after processing",
    TOPIC_GROUP,
)
committed_offset = Gauge(
    f"{PREFIX}_committed_offset",
    "Offset of the last acknowledged record per partition",
    ("topic", "partition", "consumer_group"),
)
processing_seconds = Histogram(
    f"{PREFIX}_processing_seconds",
    "Time from receipt to the end of the processing callback",
    TOPIC_GROUP,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# 1 = connected, 0 = disconnected; component is producer or consumer
broker_connection = Gauge(
    f"{PREFIX}_broker_connection",
    "Kafka client state per component",
    ("component",),
)

http_requests = Counter(
    f"{PREFIX}_http_requests_total",
    "Requests to the order endpoint by route and status",
    ("path", "status"),
)


def record_delivery(topic: str, payload_bytes: int, success: bool) -> None:
    """Count a completed publish; bytes only count when the broker acknowledged."""
    orders_published.labels(topic=topic, status="success" if success else "error").inc()
    if success:
        published_bytes.labels(topic=topic).inc(payload_bytes)


def record_publish_failure(topic: str, error_type: str) -> None:
    publish_failures.labels(topic=topic, error_type=error_type).inc()


def record_processed(topic: str, consumer_group: str, success: bool) -> None:
    orders_processed.labels(
        topic=topic,
        consumer_group=consumer_group,
        status="success" if success else "error",
    ).inc()


def record_processing_failure(topic: str, consumer_group: str, error_category: str) -> None:
    processing_failures.labels(
        topic=topic, consumer_group=consumer_group, error_category=error_category
    ).inc()


def record_commit(topic: str, partition: int, consumer_group: str, offset: int) -> None:
    """
    Count a committed record and remember its offset.

    Args:
        topic: Kafka topic name
        partition: Partition number
        consumer_group: Consumer group ID
        offset: Offset of the acknowledged record (not the next position)
    """
    offsets_committed.labels(topic=topic, consumer_group=consumer_group).inc()
    committed_offset.labels(
        topic=topic, partition=str(partition), consumer_group=consumer_group
    ).set(offset)


def observe_processing_time(topic: str, consumer_group: str, seconds: float) -> None:
    processing_seconds.labels(topic=topic, consumer_group=consumer_group).observe(seconds)


def set_connection_status(component: str, connected: bool) -> None:
    broker_connection.labels(component=component).set(1 if connected else 0)


def record_http_request(path: str, status: int) -> None:
    http_requests.labels(path=path, status=str(status)).inc()
