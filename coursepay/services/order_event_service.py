# coursepay/services/order_event_service.py

import logging
from typing import Optional
from uuid import uuid4

from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.constants.order_status import OrderStatus
from coursepay.models.order import Order
from coursepay.models.order_event import OrderEvent
from coursepay.repositories import OrderRepository
from coursepay.services import order_state_machine
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)


def log_order_event(
    session: AsyncSession,
    order_id: str,
    event_type: str,
    label: str,
    created_by: str = "system",
    meta: Optional[dict] = None,
):
    """
    Append-only event log for order timeline
    """

    event = OrderEvent(
        id=str(uuid4()),
        order_id=order_id,
        event_type=event_type,
        label=label,
        meta=meta,
        created_by=created_by,
        created_at=utcnow(),
    )

    session.add(event)


async def advance_order(
    session: AsyncSession,
    order: Order,
    target: OrderStatus,
    *,
    created_by: str = "system",
    meta: Optional[dict] = None,
) -> bool:
    """
    Run ``order`` through the state machine and persist the move.

    Returns False for a same-status no-op. The version is left alone in that
    case; use ``OrderRepository.save_status`` directly to force a bump.
    """
    previous = OrderStatus(order.status)
    new_status = order_state_machine.transition(order, target)
    if new_status == previous:
        return False

    await OrderRepository(session).save_status(order, new_status)
    log_order_event(
        session,
        order.id,
        event_type=f"status:{new_status.value}",
        label=f"{previous.value} -> {new_status.value}",
        created_by=created_by,
        meta=meta,
    )
    logger.info(f"Order {order.id} moved {previous.value} -> {new_status.value}")
    return True
