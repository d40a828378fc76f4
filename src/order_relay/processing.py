"""Default processing callback for consumed orders."""

import logging

from order_relay.common.logging import log_with_context
from order_relay.consumer import RecordMetadata
from order_relay.schemas.orders import OrderRecord

logger = logging.getLogger(__name__)


async def process_order(record: OrderRecord, metadata: RecordMetadata) -> None:
    """
    Log the received order.

    Stand-in for business logic (persistence, notifications, inventory).
    """
    log_with_context(
        logger,
        logging.INFO,
        f"Processing order {record.id} for customer {record.customer_id}",
        order_id=record.id,
    )
    if record.is_pending:
        log_with_context(
            logger,
            logging.INFO,
            f"Order {record.id} is pending processing",
            order_id=record.id,
        )
