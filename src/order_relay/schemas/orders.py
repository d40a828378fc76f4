"""
Order message schemas.

OrderRecord is the message published to the orders topic, keyed by id.
OrderRequest is what the HTTP endpoint accepts; to_record() fills in the
id, timestamp and status a caller may leave out.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer

DEFAULT_STATUS = "PENDING"


class OrderRecord(BaseModel):
    """Schema for order messages on the orders topic.

    Attributes:
        id: Order identifier, also the message key
        customer_id: Customer placing the order
        product_name: Ordered product
        quantity: Number of units
        price: Unit price
        timestamp: When the order was placed
        status: Order status (PENDING until processed)

    Two records are equal when their ids are equal, whatever the other
    fields hold.

    Example:
        >>> record = OrderRecord(
        ...     id="o1",
        ...     customerId="c1",
        ...     productName="Widget",
        ...     quantity=2,
        ...     price="9.99",
        ...     timestamp="2024-12-25T10:30:00Z",
        ... )
        >>> record.to_json()
        b'{"id":"o1","customerId":"c1",...}'
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(
        ...,
        description="Order identifier and partition key",
        min_length=1,
        validation_alias=AliasChoices("id", "orderId"),
    )
    customer_id: str = Field(..., alias="customerId", description="Customer identifier")
    product_name: str = Field(..., alias="productName", description="Product name")
    quantity: int = Field(..., description="Number of units", ge=0)
    price: Decimal = Field(..., description="Unit price", ge=0)
    timestamp: datetime = Field(
        ...,
        description="Order timestamp",
        validation_alias=AliasChoices("timestamp", "orderDate"),
    )
    status: str = Field(default=DEFAULT_STATUS, description="Order status")

    @field_serializer("price")
    def serialize_price(self, price: Decimal) -> float:
        return float(price)

    @field_serializer("timestamp")
    def serialize_timestamp(self, timestamp: datetime) -> str:
        """Serialize datetime to ISO 8601 format."""
        return timestamp.isoformat()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, OrderRecord):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    @property
    def is_pending(self) -> bool:
        return self.status == DEFAULT_STATUS

    def to_json(self) -> bytes:
        return self.model_dump_json(by_alias=True).encode("utf-8")

    @classmethod
    def from_json(cls, data: bytes) -> "OrderRecord":
        return cls.model_validate_json(data)


class OrderRequest(BaseModel):
    """Inbound order, as posted to /api/orders.

    id, timestamp and status may be omitted; the rest is required.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("id", "orderId")
    )
    customer_id: str = Field(..., alias="customerId")
    product_name: str = Field(..., alias="productName")
    quantity: int = Field(..., ge=0)
    price: Decimal = Field(..., ge=0)
    timestamp: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("timestamp", "orderDate")
    )
    status: Optional[str] = None

    def to_record(self) -> OrderRecord:
        """Apply defaults: random id, current UTC time, PENDING status."""
        return OrderRecord(
            id=self.id or str(uuid.uuid4()),
            customer_id=self.customer_id,
            product_name=self.product_name,
            quantity=self.quantity,
            price=self.price,
            timestamp=self.timestamp or datetime.now(timezone.utc),
            status=self.status or DEFAULT_STATUS,
        )
