import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.constants.order_status import OrderStatus
from coursepay.exceptions import StaleOrderError
from coursepay.models.order import Order, OrderItem
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)


class OrderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, order_id: str, *, with_items: bool = False, for_update: bool = False) -> Optional[Order]:
        query = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        if with_items:
            query = query.options(selectinload(Order.items))
        if for_update:
            query = query.with_for_update()
        result = await self.session.exec(query)
        return result.first()

    async def items(self, order_id: str) -> List[OrderItem]:
        result = await self.session.exec(select(OrderItem).where(OrderItem.order_id == order_id))
        return list(result.all())

    async def add(self, order: Order, items: List[OrderItem]) -> None:
        self.session.add(order)
        await self.session.flush()
        for item in items:
            self.session.add(item)
        await self.session.flush()

    async def save_status(self, order: Order, status: OrderStatus) -> Order:
        """Compare-and-swap on ``version``; raises StaleOrderError when another writer won."""
        now = utcnow()
        next_version = order.version + 1
        result = await self.session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.version == order.version)
            .values(status=status, version=next_version, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.warning(f"Version conflict on order {order.id} at version {order.version}")
            raise StaleOrderError(f"Order {order.id} was modified concurrently", order_id=order.id)

        set_committed_value(order, "status", status)
        set_committed_value(order, "version", next_version)
        set_committed_value(order, "updated_at", now)
        return order
