from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON, UniqueConstraint
from typing import Optional
from datetime import datetime
from uuid import uuid4

from coursepay.constants.order_status import PaymentStatus
from coursepay.utils.clock import utcnow


class Payment(SQLModel, table=True):
    """One checkout attempt for an order against one provider."""

    __tablename__ = "payments"
    __table_args__ = (UniqueConstraint("provider", "provider_ref", name="uq_payments_provider_ref"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    order_id: str = Field(foreign_key="orders.id", index=True)

    provider: str = Field(max_length=50)
    provider_ref: str = Field(index=True, max_length=255)

    status: PaymentStatus = Field(default=PaymentStatus.PENDING, index=True)
    raw_payload: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    captured_at: Optional[datetime] = None
