"""HTTP surface: order intake and liveness probe."""

from order_relay.api.orders import OrderServer, create_app

__all__ = ["OrderServer", "create_app"]
