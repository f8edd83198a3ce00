from decimal import Decimal
from enum import Enum
from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import uuid4

from coursepay.utils.clock import utcnow


class DeliveryType(str, Enum):
    DIGITAL = "digital"
    LIVE = "live"


class AttachmentType(str, Enum):
    PDF = "pdf"
    VIDEO = "video"
    DOCUMENT = "document"


# attachment kinds delivered through secure download links
DOWNLOADABLE_ATTACHMENTS = frozenset({AttachmentType.PDF, AttachmentType.DOCUMENT})


class Course(SQLModel, table=True):
    """Read-only projection of the catalog service's course row."""

    __tablename__ = "courses"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    title: str
    price: Decimal = Field(max_digits=12, decimal_places=2)
    currency: str = Field(default="SAR", max_length=3)
    delivery_type: DeliveryType = Field(default=DeliveryType.DIGITAL)
    updated_at: datetime = Field(default_factory=utcnow)


class CourseAttachment(SQLModel, table=True):
    __tablename__ = "course_attachments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    course_id: str = Field(foreign_key="courses.id", index=True)
    file_name: str
    storage_key: str
    attachment_type: AttachmentType = Field(default=AttachmentType.PDF)
    is_revoked: bool = False
    created_at: datetime = Field(default_factory=utcnow)
