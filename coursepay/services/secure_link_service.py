import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import List, Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.config import settings
from coursepay.constants.order_status import OrderStatus
from coursepay.exceptions import ConflictError, ExpiredLinkError, NotFoundError
from coursepay.models.course import DeliveryType
from coursepay.models.secure_link import SecureLink
from coursepay.repositories import CatalogRepository, OrderRepository, SecureLinkRepository
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileReference:
    storage_key: str
    file_name: str


def generate_token() -> str:
    # 32 random bytes, URL-safe base64
    return secrets.token_urlsafe(32)


class SecureContentIssuer:
    """Issues and redeems time- and use-bounded download links for paid content."""

    def __init__(
        self,
        session: AsyncSession,
        clock=utcnow,
        ttl_days: Optional[int] = None,
        max_uses: Optional[int] = None,
    ):
        self.session = session
        self.orders = OrderRepository(session)
        self.catalog = CatalogRepository(session)
        self.links = SecureLinkRepository(session)
        self.clock = clock
        self.ttl = timedelta(days=ttl_days or settings.secure_link_ttl_days)
        self.max_uses = max_uses or settings.secure_link_max_uses

    async def issue_links(self, order_id: str) -> List[SecureLink]:
        """
        One link per downloadable attachment of every digital item.

        Safe to call again: (item, attachment) pairs that already have a link
        keep it. Does not commit; runs inside the caller's transaction.
        """
        order = await self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", order_id=order_id)
        if order.status != OrderStatus.PROCESSED:
            raise ConflictError(
                f"Order {order_id} is {OrderStatus(order.status).value}; links need a processed order",
                order_id=order_id,
            )

        items = [i for i in await self.orders.items(order_id) if i.delivery_type == DeliveryType.DIGITAL]
        if not items:
            return []

        existing = {(link.order_item_id, link.attachment_id): link for link in await self.links.for_items(i.id for i in items)}
        attachments = await self.catalog.downloadable_attachments(i.course_id for i in items)

        now = self.clock()
        issued = []
        created = 0
        for item in items:
            for attachment in attachments:
                if attachment.course_id != item.course_id:
                    continue
                link = existing.get((item.id, attachment.id))
                if link is None:
                    link = SecureLink(
                        token=generate_token(),
                        order_item_id=item.id,
                        attachment_id=attachment.id,
                        expires_at=now + self.ttl,
                        remaining_uses=self.max_uses,
                        created_at=now,
                    )
                    self.links.add(link)
                    created += 1
                issued.append(link)

        await self.session.flush()
        logger.info(f"Order {order_id}: {created} secure links issued, {len(issued) - created} already present")
        return issued

    async def resolve_link(self, token: str) -> FileReference:
        link = await self.links.get(token)
        if link is None:
            raise NotFoundError("Link not found")

        now = self.clock()
        if not await self.links.consume(token, now):
            await self.session.rollback()
            logger.info(f"Rejected secure link {token[:8]}... (expired, exhausted or revoked)")
            raise ExpiredLinkError("This link has expired or is no longer valid")

        attachment = await self.catalog.get_attachment(link.attachment_id)
        if attachment is None:
            await self.session.rollback()
            raise NotFoundError("Link not found")

        await self.session.commit()
        return FileReference(storage_key=attachment.storage_key, file_name=attachment.file_name)

    async def revoke_links(self, order_id: str) -> int:
        items = await self.orders.items(order_id)
        revoked = await self.links.revoke_for_items(i.id for i in items)
        if revoked:
            logger.info(f"Revoked {revoked} secure links for order {order_id}")
        return revoked
