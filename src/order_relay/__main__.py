"""
Entry point for running the order relay.

Usage:
    # HTTP intake and consumer in one process
    python -m order_relay

    # One side only
    python -m order_relay --worker api
    python -m order_relay --worker consumer

    # Custom ports and config file
    python -m order_relay --api-port 9080 --metrics-port 9000 --config relay.yaml

Workers:
    api:      POST /api/orders -> DeliveryProducer -> orders topic
    consumer: orders topic -> AckingConsumer -> process_order -> commit
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

from prometheus_client import start_http_server

from order_relay.api import OrderServer
from order_relay.common.exceptions import ConfigurationError
from order_relay.common.logging import get_logger, set_log_context, setup_logging
from order_relay.config import KafkaSettings, load_config
from order_relay.consumer import AckingConsumer
from order_relay.processing import process_order
from order_relay.producer import DeliveryProducer
from order_relay.transport import Role, TransportConfigBuilder

# Replaced once setup_logging() has run
logger = logging.getLogger(__name__)

WORKERS = ("api", "consumer", "all")

# Set on SIGINT/SIGTERM; every worker winds down when it fires
_shutdown_event: Optional[asyncio.Event] = None


def get_shutdown_event() -> asyncio.Event:
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="order-relay",
        description="Accept orders over HTTP, publish them to Kafka and consume them back",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Kafka settings come from the 'kafka' section of the config file and from
KAFKA_* environment variables (environment wins). See config.yaml.

Examples:
    python -m order_relay --worker consumer --log-level DEBUG
    python -m order_relay --worker api --api-port 9080 --metrics-port 0
        """,
    )
    parser.add_argument(
        "--worker",
        choices=WORKERS,
        default="all",
        help="api (HTTP intake + producer), consumer, or all (default: all)",
    )
    parser.add_argument(
        "--api-host",
        default="0.0.0.0",
        help="Interface the order endpoint listens on (default: 0.0.0.0)",
    )
    parser.add_argument(
        "--api-port",
        type=int,
        default=8080,
        help="Port of the order endpoint (default: 8080)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=8000,
        help="Prometheus metrics port; 0 disables the metrics server (default: 8000)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML file with a 'kafka' section (default: src/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console log level; the log file always records DEBUG (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Directory for log files (default: $LOG_DIR or ./logs)",
    )
    return parser.parse_args(argv)


async def run_api(builder: TransportConfigBuilder, settings: KafkaSettings, host: str, port: int):
    """Serve the order endpoint until shutdown, then flush the producer."""
    set_log_context(stage="api")
    logger.info("Starting order API...")

    async with DeliveryProducer(builder.build(Role.PUBLISH), topic=settings.orders_topic) as producer:
        server = OrderServer(producer, host=host, port=port)
        await server.start()
        try:
            await get_shutdown_event().wait()
            logger.info("Shutdown requested, closing order API")
        finally:
            await server.stop()


async def run_consumer(builder: TransportConfigBuilder, settings: KafkaSettings):
    """
    Consume orders until shutdown.

    On shutdown the in-flight record finishes processing and is acknowledged
    before the connection closes.
    """
    set_log_context(stage="consumer")
    logger.info("Starting order consumer...")

    consumer = AckingConsumer(
        builder.build(Role.CONSUME),
        process_order,
        topics=[settings.orders_topic],
    )

    async def stop_on_shutdown():
        await get_shutdown_event().wait()
        logger.info("Shutdown requested, stopping consumer after the current record")
        await consumer.stop()

    stopper = asyncio.create_task(stop_on_shutdown())
    try:
        await consumer.start()
    finally:
        stopper.cancel()
        try:
            await stopper
        except asyncio.CancelledError:
            pass


async def run_all(builder: TransportConfigBuilder, settings: KafkaSettings, host: str, port: int):
    """Run API and consumer side by side; if one fails, stop the other."""
    tasks = [
        asyncio.create_task(run_api(builder, settings, host, port), name="api"),
        asyncio.create_task(run_consumer(builder, settings), name="consumer"),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
    finally:
        get_shutdown_event().set()
        await asyncio.gather(*tasks, return_exceptions=True)


def setup_signal_handlers(loop: asyncio.AbstractEventLoop):
    """
    First SIGINT/SIGTERM sets the shutdown event: the API stops accepting
    orders and flushes the producer, the consumer acknowledges its in-flight
    record and closes. A second signal cancels every task.

    Not available on Windows, where Ctrl+C raises KeyboardInterrupt instead.
    """
    if sys.platform == "win32":
        logger.debug("No asyncio signal handlers on Windows, relying on KeyboardInterrupt")
        return

    def on_signal(sig: signal.Signals):
        shutdown_event = get_shutdown_event()
        if shutdown_event.is_set():
            logger.warning(f"Received {sig.name} again, cancelling all tasks")
            for task in asyncio.all_tasks(loop):
                task.cancel()
            return
        logger.info(f"Received {sig.name}, shutting down gracefully")
        shutdown_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, on_signal, sig)


def _configure_logging(args: argparse.Namespace) -> None:
    global logger
    setup_logging(
        name="order_relay",
        stage=args.worker,
        log_dir=Path(args.log_dir or os.getenv("LOG_DIR", "logs")),
        # JSON_LOGS=false gives plain-text files for local development
        json_format=os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes"),
        console_level=getattr(logging, args.log_level),
        worker_id=os.getenv("WORKER_ID", f"order-relay-{args.worker}"),
    )
    logger = get_logger(__name__)


def _worker(args: argparse.Namespace, settings: KafkaSettings):
    builder = TransportConfigBuilder(settings)
    if args.worker == "api":
        return run_api(builder, settings, args.api_host, args.api_port)
    if args.worker == "consumer":
        return run_consumer(builder, settings)
    return run_all(builder, settings, args.api_host, args.api_port)


def main(argv=None):
    args = parse_args(argv)
    _configure_logging(args)

    try:
        settings = load_config(args.config)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    if args.metrics_port:
        logger.info(f"Serving Prometheus metrics on port {args.metrics_port}")
        start_http_server(args.metrics_port)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    setup_signal_handlers(loop)

    try:
        loop.run_until_complete(_worker(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Order relay stopped on an unexpected error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        loop.close()
        logger.info("Order relay shutdown complete")


if __name__ == "__main__":
    main()
