"""
Fulfilment status updates.

Fulfilment (pending -> confirmed -> shipped -> delivered) is driven by the
seller and courier, outside the escrow lifecycle. It only ever moves forward,
and it is written with the same compare-and-update as payment transitions so a
status change cannot interleave with an escrow release.
"""
import structlog

from .errors import InvalidArgument, PreconditionFailed
from .models import Order, OrderStatus
from .order_store import OrderStore

logger = structlog.get_logger(__name__)


async def advance_fulfilment(store: OrderStore, order_id: str, new_status: OrderStatus) -> Order:
    if not order_id:
        raise InvalidArgument("Missing required parameters: order_id")

    order = await store.get(order_id)
    if new_status.rank <= order.status.rank:
        raise PreconditionFailed(
            f"Cannot move order from {order.status.value} to {new_status.value}",
            order_id=order_id,
        )

    updated = await store.compare_and_update(
        order_id,
        expected={"status": order.status},
        changes={"status": new_status},
    )
    if updated is None:
        raise PreconditionFailed("Order changed concurrently, please retry", order_id=order_id)

    logger.info(
        "order_status_advanced",
        order_id=order_id,
        from_status=order.status.value,
        to_status=new_status.value,
    )
    return updated
