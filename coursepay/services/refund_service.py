import logging

from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.constants.order_status import OrderStatus, PaymentStatus
from coursepay.exceptions import ConflictError, GatewayError, InvalidTransitionError, NotFoundError
from coursepay.gateways import GatewayRegistry
from coursepay.models.order import Order
from coursepay.repositories import OrderRepository, PaymentRepository
from coursepay.services.order_event_service import advance_order
from coursepay.services.secure_link_service import SecureContentIssuer
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)

REFUNDABLE_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.PROCESSED})


async def refund_order(
    *,
    session: AsyncSession,
    registry: GatewayRegistry,
    order_id: str,
    created_by: str = "admin",
) -> Order:
    """
    Return the captured payment of a paid or processed order and lock its content.
    """
    orders = OrderRepository(session)
    payments = PaymentRepository(session)

    try:
        order = await orders.get(order_id, for_update=True)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

        status = OrderStatus(order.status)
        if status not in REFUNDABLE_STATUSES:
            raise InvalidTransitionError(status, OrderStatus.REFUNDED)

        payment = await payments.captured_for_order(order.id)
        if payment is None:
            raise ConflictError(f"Order {order_id} has no captured payment", order_id=order_id)

        # Call gateway
        gateway = registry.get(payment.provider)
        result = await gateway.refund(payment.provider_ref, order.amount, order.currency)
        if not result.success:
            raise GatewayError(
                f"Refund for order {order_id} declined: {result.failure_reason}",
                provider=gateway.name,
            )

        # Update states
        payment.status = PaymentStatus.REFUNDED
        payment.updated_at = utcnow()
        session.add(payment)

        await SecureContentIssuer(session).revoke_links(order.id)
        await advance_order(
            session,
            order,
            OrderStatus.REFUNDED,
            created_by=created_by,
            meta={"payment_id": payment.id, "refund_ref": result.refund_ref},
        )

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Order {order_id} refunded ({order.amount} {order.currency}) by {created_by}")
    return order
