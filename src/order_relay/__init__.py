"""
order_relay: accepts orders over HTTP, publishes them to Kafka, and consumes
them back with manual per-record acknowledgment.

Components:
    security.truststore - TLS trust material resolution
    transport           - publish/consume connection properties
    producer            - DeliveryProducer (idempotent publish, delivery handles)
    consumer            - AckingConsumer (process, then commit each record)
    api                 - aiohttp order endpoint and liveness probe
"""

__version__ = "0.1.0"
