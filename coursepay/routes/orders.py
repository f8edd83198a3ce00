from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.database import get_session
from coursepay.exceptions import NotFoundError
from coursepay.repositories import OrderRepository, PaymentRepository
from coursepay.schemas.orders_schemas import (
    CreateOrderRequest,
    CreateOrderResponse,
    OrderItemOut,
    OrderSummary,
    PaymentOut,
)
from coursepay.services.cart_aggregator import CartAggregator

router = APIRouter()


async def build_order_summary(session: AsyncSession, order_id: str) -> OrderSummary:
    order = await OrderRepository(session).get(order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

    items = await OrderRepository(session).items(order_id)
    payments = await PaymentRepository(session).list_for_order(order_id)

    return OrderSummary(
        order_id=order.id,
        status=order.status,
        amount=order.amount,
        currency=order.currency,
        version=order.version,
        created_at=order.created_at,
        updated_at=order.updated_at,
        items=[
            OrderItemOut(
                course_id=i.course_id,
                session_id=i.session_id,
                course_title=i.course_title,
                delivery_type=i.delivery_type,
                unit_price=i.unit_price,
                quantity=i.quantity,
                line_total=i.line_total,
            )
            for i in items
        ],
        payments=[
            PaymentOut(
                id=p.id,
                provider=p.provider,
                provider_ref=p.provider_ref,
                status=p.status,
                created_at=p.created_at,
                captured_at=p.captured_at,
            )
            for p in payments
        ],
    )


@router.post("", response_model=CreateOrderResponse)
async def create_order(
    data: CreateOrderRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    session: AsyncSession = Depends(get_session),
):
    order_id = await CartAggregator(session).create_order(
        data.cart_id,
        idempotency_key=data.idempotency_key or idempotency_key,
    )
    return CreateOrderResponse(order_id=order_id)


@router.get("/{order_id}", response_model=OrderSummary)
async def get_order(order_id: str, session: AsyncSession = Depends(get_session)):
    return await build_order_summary(session, order_id)
