from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from datetime import datetime

from coursepay.utils.clock import utcnow


class SecureLink(SQLModel, table=True):
    __tablename__ = "secure_links"
    __table_args__ = (
        UniqueConstraint("order_item_id", "attachment_id", name="uq_secure_links_item_attachment"),
    )

    token: str = Field(primary_key=True, max_length=64)
    order_item_id: str = Field(foreign_key="order_items.id", index=True)
    attachment_id: str = Field(foreign_key="course_attachments.id")

    # fixed at issuance, never extended
    expires_at: datetime
    remaining_uses: int
    is_revoked: bool = False

    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None
