from datetime import datetime
from typing import List, Optional

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.constants.order_status import PaymentStatus
from coursepay.models.payment import Payment


class PaymentRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    def add(self, payment: Payment) -> None:
        self.session.add(payment)

    async def get(self, payment_id: str) -> Optional[Payment]:
        result = await self.session.exec(
            select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
        )
        return result.first()

    async def get_by_provider_ref(self, provider: str, provider_ref: str) -> Optional[Payment]:
        result = await self.session.exec(
            select(Payment)
            .where(Payment.provider == provider)
            .where(Payment.provider_ref == provider_ref)
            .execution_options(populate_existing=True)
        )
        return result.first()

    async def list_for_order(self, order_id: str) -> List[Payment]:
        result = await self.session.exec(
            select(Payment).where(Payment.order_id == order_id).order_by(Payment.created_at)
        )
        return list(result.all())

    async def captured_for_order(self, order_id: str) -> Optional[Payment]:
        result = await self.session.exec(
            select(Payment)
            .where(Payment.order_id == order_id)
            .where(Payment.status == PaymentStatus.CAPTURED)
        )
        return result.first()

    async def has_other_pending(self, order_id: str, exclude_payment_id: str) -> bool:
        result = await self.session.exec(
            select(Payment.id)
            .where(Payment.order_id == order_id)
            .where(Payment.status == PaymentStatus.PENDING)
            .where(Payment.id != exclude_payment_id)
        )
        return result.first() is not None

    async def stale_pending(self, created_before: datetime, limit: int = 100) -> List[Payment]:
        result = await self.session.exec(
            select(Payment)
            .where(Payment.status == PaymentStatus.PENDING)
            .where(Payment.created_at < created_before)
            .order_by(Payment.created_at)
            .limit(limit)
        )
        return list(result.all())
