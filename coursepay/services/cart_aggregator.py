import logging
from decimal import Decimal
from typing import Optional
from uuid import uuid4

from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.constants.order_status import OrderStatus
from coursepay.exceptions import ConflictError, NotFoundError, ValidationError
from coursepay.models.order import Order, OrderItem
from coursepay.repositories import CartRepository, CatalogRepository, OrderRepository
from coursepay.services.idempotency_service import IdempotencyGuard
from coursepay.services.order_event_service import log_order_event
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)

ORDER_SCOPE = "order_creation"
CENTS = Decimal("0.01")


def order_idempotency_key(cart_id: str, client_key: Optional[str] = None) -> str:
    if client_key:
        return f"order:client:{client_key}"
    return f"order:cart:{cart_id}"


class CartAggregator:
    """Turns a cart into an immutable, priced order snapshot."""

    def __init__(self, session: AsyncSession, guard: Optional[IdempotencyGuard] = None, clock=utcnow):
        self.session = session
        self.carts = CartRepository(session)
        self.catalog = CatalogRepository(session)
        self.orders = OrderRepository(session)
        self.guard = guard or IdempotencyGuard(session, clock=clock)
        self.clock = clock

    async def create_order(self, cart_id: str, idempotency_key: Optional[str] = None) -> str:
        key = order_idempotency_key(cart_id, idempotency_key)

        # the cart key is always recorded too, so any later request for this cart replays
        outcome = await self.guard.check_or_record(
            key,
            lambda: self._snapshot_cart(cart_id),
            scope=ORDER_SCOPE,
            aliases=[order_idempotency_key(cart_id)],
        )
        order_id = outcome.value["order_id"]

        if outcome.replayed:
            logger.info(f"Cart {cart_id} already converted; returning order {order_id}")
        else:
            logger.info(f"Created order {order_id} from cart {cart_id}")
        return order_id

    async def _snapshot_cart(self, cart_id: str) -> dict:
        cart = await self.carts.get_with_items(cart_id)
        if cart is None:
            raise NotFoundError(f"Cart {cart_id} not found", cart_id=cart_id)

        if cart.consumed_order_id:
            raise ConflictError(
                f"Cart {cart_id} was already converted into order {cart.consumed_order_id}",
                cart_id=cart_id,
                order_id=cart.consumed_order_id,
            )

        if not cart.items:
            raise ValidationError("Cart is empty", cart_id=cart_id)

        courses = await self.catalog.get_courses(item.course_id for item in cart.items)

        order_id = str(uuid4())
        now = self.clock()
        currency = None
        amount = Decimal("0")
        items = []

        for line in cart.items:
            if line.quantity < 1:
                raise ValidationError(f"Invalid quantity {line.quantity} for course {line.course_id}")

            course = courses.get(line.course_id)
            if course is None:
                raise NotFoundError(f"Course {line.course_id} not found", course_id=line.course_id)

            if currency is None:
                currency = course.currency
            elif course.currency != currency:
                raise ValidationError("Cart mixes currencies", cart_id=cart_id)

            unit_price = Decimal(course.price).quantize(CENTS)
            amount += unit_price * line.quantity

            items.append(
                OrderItem(
                    order_id=order_id,
                    course_id=course.id,
                    session_id=line.session_id,
                    course_title=course.title,
                    delivery_type=course.delivery_type,
                    unit_price=unit_price,
                    quantity=line.quantity,
                )
            )

        # claim first: a concurrent conversion of the same cart loses here
        if not await self.carts.claim(cart_id, order_id):
            raise ConflictError(f"Cart {cart_id} was converted concurrently", cart_id=cart_id)

        order = Order(
            id=order_id,
            user_id=cart.owner_ref,
            cart_id=cart_id,
            status=OrderStatus.NEW,
            currency=currency,
            amount=amount,
            created_at=now,
            updated_at=now,
        )
        await self.orders.add(order, items)
        log_order_event(
            self.session,
            order_id,
            event_type="order_created",
            label=f"Order created from cart {cart_id}",
            meta={"items": len(items), "amount": str(amount), "currency": currency},
        )
        await self.session.flush()

        return {"order_id": order_id}
