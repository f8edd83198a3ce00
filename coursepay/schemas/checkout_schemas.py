# coursepay/schemas/checkout_schemas.py
from pydantic import BaseModel

from coursepay.constants.order_status import OrderStatus


class CheckoutRequest(BaseModel):
    order_id: str
    return_url: str


class CheckoutResponse(BaseModel):
    redirect_url: str


class WebhookAck(BaseModel):
    status: str = "ok"
    duplicate: bool = False
    order_status: OrderStatus


class ReconciliationOut(BaseModel):
    checked: int
    captured: int
    failed: int
    expired: int
    errors: int
