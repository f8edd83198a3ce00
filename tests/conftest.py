import os

os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")
os.environ.setdefault("PAYMENT_PROVIDER", "fake")
os.environ.setdefault("ENV", "test")

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional
from unittest.mock import MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlmodel import select

from coursepay.constants.order_status import OrderStatus
from coursepay.database import build_engine, build_session_factory, create_db_and_tables, get_session
from coursepay.gateways import GatewayRegistry, get_gateway_registry
from coursepay.gateways.base import ProviderStatus
from coursepay.gateways.fake_gateway import FakeGateway
from coursepay.main import app
from coursepay.models import (
    Cart,
    CartItem,
    Course,
    CourseAttachment,
    Order,
    OrderItem,
    Payment,
    SecureLink,
)
from coursepay.models.course import AttachmentType, DeliveryType
from coursepay.services.cart_aggregator import CartAggregator
from coursepay.services.payment_orchestrator import PaymentOrchestrator
from coursepay.services.storage_service import FileStorage, get_file_storage

START = datetime(2026, 3, 1, 12, 0, 0)


class FrozenClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


async def no_sleep(delay):
    return None


class Shop:
    """Seeds catalog rows and drives orders through the engine."""

    def __init__(self, session_factory, gateway: FakeGateway, registry: GatewayRegistry, clock: FrozenClock):
        self.session_factory = session_factory
        self.gateway = gateway
        self.registry = registry
        self.clock = clock

    async def course(
        self,
        title: str = "Arabic Calligraphy",
        price: str = "75.00",
        currency: str = "SAR",
        delivery_type: DeliveryType = DeliveryType.DIGITAL,
        attachments=(AttachmentType.PDF,),
    ) -> str:
        async with self.session_factory() as session:
            course = Course(title=title, price=Decimal(price), currency=currency, delivery_type=delivery_type)
            session.add(course)
            await session.flush()
            for n, kind in enumerate(attachments):
                session.add(
                    CourseAttachment(
                        course_id=course.id,
                        file_name=f"{title.lower().replace(' ', '-')}-{n}.{kind.value}",
                        storage_key=f"courses/{course.id}/{n}.{kind.value}",
                        attachment_type=kind,
                    )
                )
            await session.commit()
            return course.id

    async def cart(self, *lines, user_id: Optional[str] = "user-1") -> str:
        async with self.session_factory() as session:
            cart = Cart(user_id=user_id)
            session.add(cart)
            await session.flush()
            for course_id, quantity in lines:
                session.add(CartItem(cart_id=cart.id, course_id=course_id, quantity=quantity))
            await session.commit()
            return cart.id

    async def order(self, *lines) -> str:
        if not lines:
            lines = ((await self.course(), 1),)
        cart_id = await self.cart(*lines)
        async with self.session_factory() as session:
            return await CartAggregator(session, clock=self.clock).create_order(cart_id)

    def orchestrator(self, session, **kwargs) -> PaymentOrchestrator:
        kwargs.setdefault("retry_backoff", 0)
        kwargs.setdefault("sleep", no_sleep)
        return PaymentOrchestrator(session, self.registry, clock=self.clock, **kwargs)

    async def checkout(self, order_id: str, return_url: str = "https://shop.test/orders/done") -> Payment:
        before = {p.id for p in await self.payments(order_id)}
        async with self.session_factory() as session:
            await self.orchestrator(session).create_checkout_session(order_id, return_url)
        return next(p for p in await self.payments(order_id) if p.id not in before)

    async def callback(self, provider_ref: str, outcome: ProviderStatus, event_id: Optional[str] = None):
        body, headers = self.gateway.build_callback(provider_ref, outcome, event_id=event_id)
        async with self.session_factory() as session:
            return await self.orchestrator(session).handle_callback("fake", body, headers)

    async def purchase(self, *lines) -> str:
        """Order paid in full; digital orders come back processed."""
        order_id = await self.order(*lines)
        payment = await self.checkout(order_id)
        await self.callback(payment.provider_ref, ProviderStatus.CAPTURED)
        return order_id

    async def get_order(self, order_id: str) -> Order:
        async with self.session_factory() as session:
            return await session.get(Order, order_id)

    async def items(self, order_id: str) -> List[OrderItem]:
        async with self.session_factory() as session:
            result = await session.exec(select(OrderItem).where(OrderItem.order_id == order_id))
            return list(result.all())

    async def payments(self, order_id: str) -> List[Payment]:
        async with self.session_factory() as session:
            result = await session.exec(
                select(Payment).where(Payment.order_id == order_id).order_by(Payment.created_at)
            )
            return list(result.all())

    async def links(self, order_id: str) -> List[SecureLink]:
        item_ids = [item.id for item in await self.items(order_id)]
        async with self.session_factory() as session:
            result = await session.exec(select(SecureLink).where(SecureLink.order_item_id.in_(item_ids)))
            return list(result.all())

    async def count(self, model) -> int:
        async with self.session_factory() as session:
            result = await session.exec(select(model))
            return len(result.all())

    async def set_status(self, order_id: str, status: OrderStatus) -> None:
        async with self.session_factory() as session:
            order = await session.get(Order, order_id)
            order.status = status
            session.add(order)
            await session.commit()


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'coursepay.db'}")
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fake_gateway():
    return FakeGateway(secret="test-secret", checkout_url="https://pay.test/checkout", timeout=5)


@pytest.fixture
def registry(fake_gateway):
    return GatewayRegistry([fake_gateway], default="fake")


@pytest.fixture
def shop(session_factory, fake_gateway, registry, clock):
    return Shop(session_factory, fake_gateway, registry, clock)


@pytest.fixture
def storage():
    s3 = MagicMock()
    s3.generate_presigned_url.return_value = "https://r2.test/signed/file.pdf?sig=abc"
    return FileStorage(client=s3, bucket="test-bucket")


@pytest.fixture
async def client(session_factory, registry, storage):
    async def override_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_gateway_registry] = lambda: registry
    app.dependency_overrides[get_file_storage] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
