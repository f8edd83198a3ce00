from decimal import Decimal
from sqlmodel import SQLModel, Field, Relationship
from typing import List, Optional
from datetime import datetime
from uuid import uuid4

from coursepay.constants.order_status import OrderStatus, INITIAL_STATUS
from coursepay.models.course import DeliveryType
from coursepay.utils.clock import utcnow


class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    cart_id: Optional[str] = Field(default=None, foreign_key="carts.id", index=True)

    status: OrderStatus = Field(default=INITIAL_STATUS, index=True)

    # frozen at creation, never recomputed
    currency: str = Field(max_length=3)
    amount: Decimal = Field(max_digits=12, decimal_places=2)

    # bumped by every status write; guards against lost updates
    version: int = Field(default=1)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    items: List["OrderItem"] = Relationship(back_populates="order")


class OrderItem(SQLModel, table=True):
    __tablename__ = "order_items"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    order_id: str = Field(foreign_key="orders.id", index=True)
    course_id: str = Field(foreign_key="courses.id")
    session_id: Optional[str] = None

    # snapshot of the catalog at order time
    course_title: str
    delivery_type: DeliveryType = Field(default=DeliveryType.DIGITAL)
    unit_price: Decimal = Field(max_digits=12, decimal_places=2)
    quantity: int

    order: Optional[Order] = Relationship(back_populates="items")

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity
