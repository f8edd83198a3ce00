from typing import Optional

from sqlalchemy import update
from sqlalchemy.orm import selectinload
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.models.cart import Cart
from coursepay.utils.clock import utcnow


class CartRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_with_items(self, cart_id: str) -> Optional[Cart]:
        result = await self.session.exec(
            select(Cart)
            .where(Cart.id == cart_id)
            .options(selectinload(Cart.items))
            .execution_options(populate_existing=True)
        )
        return result.first()

    async def claim(self, cart_id: str, order_id: str) -> bool:
        """Mark the cart consumed by ``order_id`` unless another order got there first."""
        result = await self.session.execute(
            update(Cart)
            .where(Cart.id == cart_id)
            .where(Cart.consumed_order_id.is_(None))
            .values(consumed_order_id=order_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
