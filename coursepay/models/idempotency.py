from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional
from datetime import datetime

from coursepay.utils.clock import utcnow


class IdempotencyRecord(SQLModel, table=True):
    __tablename__ = "idempotency_records"

    key: str = Field(primary_key=True, max_length=255)
    scope: str = Field(index=True, max_length=50)
    result: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = Field(default=None, index=True)
