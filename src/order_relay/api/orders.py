"""
Order intake endpoint.

Routes:
    POST /api/orders          validate, fill defaults, hand to the producer
    GET  /api/orders/health   liveness probe

The endpoint answers as soon as the record is enqueued; delivery outcomes
are only logged by the producer.
"""

import json
import logging
from typing import Awaitable, Callable, Optional

from aiohttp import web
from pydantic import ValidationError

from order_relay.common.logging import log_with_context
from order_relay.metrics import record_http_request
from order_relay.producer import DeliveryProducer
from order_relay.schemas.orders import OrderRequest

logger = logging.getLogger(__name__)

PRODUCER = web.AppKey("producer", DeliveryProducer)

ORDERS_PATH = "/api/orders"
HEALTH_PATH = "/api/orders/health"


@web.middleware
async def observe_requests(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Count and log every request by route and status."""
    resource = request.match_info.route.resource
    path = resource.canonical if resource is not None else "unmatched"
    try:
        response = await handler(request)
    except web.HTTPException as e:
        record_http_request(path, e.status)
        raise
    except Exception:
        record_http_request(path, 500)
        raise
    record_http_request(path, response.status)
    log_with_context(
        logger,
        logging.DEBUG,
        "Handled request",
        http_method=request.method,
        http_path=path,
        http_status=response.status,
    )
    return response


async def create_order(request: web.Request) -> web.Response:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response({"error": "Request body must be UTF-8 JSON"}, status=400)

    # Defaults are validated too: OrderRecord is stricter than OrderRequest
    try:
        record = OrderRequest.model_validate(body).to_record()
    except ValidationError as e:
        log_with_context(
            logger,
            logging.INFO,
            "Rejected invalid order",
            http_path=ORDERS_PATH,
            error_message=f"{e.error_count()} validation error(s)",
        )
        return web.json_response(
            {
                "error": "Invalid order",
                "details": e.errors(include_url=False, include_context=False),
            },
            status=400,
        )

    request.app[PRODUCER].send(record)

    return web.Response(status=201, text=f"Order created and sent to Kafka: {record.id}")


async def health(request: web.Request) -> web.Response:
    return web.Response(text="Order service is running")


def create_app(producer: DeliveryProducer) -> web.Application:
    """Build the aiohttp application around a started producer."""
    app = web.Application(middlewares=[observe_requests])
    app[PRODUCER] = producer
    app.router.add_post(ORDERS_PATH, create_order)
    app.router.add_get(HEALTH_PATH, health)
    return app


class OrderServer:
    """
    Serves the order application on host:port.

    Usage:
        >>> server = OrderServer(producer, port=8080)
        >>> await server.start()
        >>> ...
        >>> await server.stop()
    """

    def __init__(self, producer: DeliveryProducer, host: str = "0.0.0.0", port: int = 8080):
        self.producer = producer
        self.host = host
        self.port = port
        self._runner: Optional[web.AppRunner] = None

    async def start(self) -> None:
        if self._runner is not None:
            logger.debug("Order server already started, skipping")
            return

        runner = web.AppRunner(create_app(self.producer), access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self.host, self.port)
        try:
            await site.start()
        except OSError:
            await runner.cleanup()
            raise
        self._runner = runner

        logger.info(
            "Order server started",
            extra={"http_path": ORDERS_PATH, "host": self.host, "port": self.port},
        )

    async def stop(self) -> None:
        if self._runner is None:
            return
        await self._runner.cleanup()
        self._runner = None
        logger.info("Order server stopped")

    @property
    def is_running(self) -> bool:
        return self._runner is not None


__all__ = [
    "OrderServer",
    "PRODUCER",
    "create_app",
    "create_order",
    "health",
]
