"""
Order schemas.

Pydantic models for order records on the wire and inbound order requests.

Schemas:
    orders.py   - OrderRecord (published to and consumed from the orders topic)
                  OrderRequest (HTTP request body, before defaults are applied)

Design Decisions:
    - JSON wire format with camelCase field names
    - Records are identified by id alone (equality, hashing, partition key)
    - orderId / orderDate accepted on input for older producers
"""

from order_relay.schemas.orders import DEFAULT_STATUS, OrderRecord, OrderRequest

__all__ = [
    "DEFAULT_STATUS",
    "OrderRecord",
    "OrderRequest",
]
