# coursepay/schemas/orders_schemas.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from coursepay.constants.order_status import OrderStatus, PaymentStatus
from coursepay.models.course import DeliveryType


class CreateOrderRequest(BaseModel):
    cart_id: str
    idempotency_key: Optional[str] = None


class CreateOrderResponse(BaseModel):
    order_id: str


class OrderItemOut(BaseModel):
    course_id: str
    session_id: Optional[str] = None
    course_title: str
    delivery_type: DeliveryType
    unit_price: Decimal
    quantity: int
    line_total: Decimal


class PaymentOut(BaseModel):
    id: str
    provider: str
    provider_ref: str
    status: PaymentStatus
    created_at: datetime
    captured_at: Optional[datetime] = None


class OrderSummary(BaseModel):
    order_id: str
    status: OrderStatus
    amount: Decimal
    currency: str
    version: int
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut]
    payments: List[PaymentOut]
