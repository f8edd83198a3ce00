from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.models.secure_link import SecureLink


class SecureLinkRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add(self, link: SecureLink) -> None:
        self.session.add(link)

    async def get(self, token: str) -> Optional[SecureLink]:
        result = await self.session.exec(
            select(SecureLink).where(SecureLink.token == token).execution_options(populate_existing=True)
        )
        return result.first()

    async def for_items(self, order_item_ids: Iterable[str]) -> List[SecureLink]:
        ids = set(order_item_ids)
        if not ids:
            return []
        result = await self.session.exec(select(SecureLink).where(SecureLink.order_item_id.in_(ids)))
        return list(result.all())

    async def consume(self, token: str, now: datetime) -> bool:
        """Atomically spend one use of a live link."""
        result = await self.session.execute(
            update(SecureLink)
            .where(SecureLink.token == token)
            .where(SecureLink.is_revoked == False)  # noqa: E712
            .where(SecureLink.remaining_uses > 0)
            .where(SecureLink.expires_at > now)
            .values(remaining_uses=SecureLink.remaining_uses - 1, last_used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def revoke_for_items(self, order_item_ids: Iterable[str]) -> int:
        ids = set(order_item_ids)
        if not ids:
            return 0
        result = await self.session.execute(
            update(SecureLink)
            .where(SecureLink.order_item_id.in_(ids))
            .where(SecureLink.is_revoked == False)  # noqa: E712
            .values(is_revoked=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
