from sqlmodel import SQLModel, Field, Relationship
from typing import List, Optional
from datetime import datetime
from uuid import uuid4

from coursepay.utils.clock import utcnow


class Cart(SQLModel, table=True):
    __tablename__ = "carts"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    user_id: Optional[str] = Field(default=None, index=True)
    anonymous_id: Optional[str] = Field(default=None, index=True)

    # set once, when the cart is converted into an order
    consumed_order_id: Optional[str] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    items: List["CartItem"] = Relationship(back_populates="cart")

    @property
    def owner_ref(self) -> Optional[str]:
        return self.user_id or self.anonymous_id


class CartItem(SQLModel, table=True):
    __tablename__ = "cart_items"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    cart_id: str = Field(foreign_key="carts.id", index=True)
    course_id: str = Field(foreign_key="courses.id")
    session_id: Optional[str] = None
    quantity: int = 1
    created_at: datetime = Field(default_factory=utcnow)

    cart: Optional[Cart] = Relationship(back_populates="items")
