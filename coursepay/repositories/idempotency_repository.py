from datetime import datetime
from typing import Optional

from sqlalchemy import delete
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.models.idempotency import IdempotencyRecord


class IdempotencyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, key: str) -> Optional[IdempotencyRecord]:
        result = await self.session.exec(
            select(IdempotencyRecord)
            .where(IdempotencyRecord.key == key)
            .execution_options(populate_existing=True)
        )
        return result.first()

    def add(self, record: IdempotencyRecord) -> None:
        self.session.add(record)

    async def purge_expired(self, now: datetime) -> int:
        result = await self.session.execute(
            delete(IdempotencyRecord)
            .where(IdempotencyRecord.expires_at.is_not(None))
            .where(IdempotencyRecord.expires_at < now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
