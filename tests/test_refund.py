"""Tests for admin refunds."""

from decimal import Decimal

import pytest

from coursepay.constants.order_status import OrderStatus, PaymentStatus
from coursepay.exceptions import ExpiredLinkError, GatewayError, InvalidTransitionError
from coursepay.models.course import DeliveryType
from coursepay.services.refund_service import refund_order
from coursepay.services.secure_link_service import SecureContentIssuer


async def refund(shop, session_factory, order_id):
    async with session_factory() as session:
        return await refund_order(session=session, registry=shop.registry, order_id=order_id)


class TestRefundOrder:
    async def test_processed_order(self, shop, session_factory, fake_gateway):
        order_id = await shop.purchase()
        (link,) = await shop.links(order_id)

        order = await refund(shop, session_factory, order_id)

        assert order.status == OrderStatus.REFUNDED
        assert (await shop.get_order(order_id)).status == OrderStatus.REFUNDED
        (payment,) = await shop.payments(order_id)
        assert payment.status == PaymentStatus.REFUNDED
        assert fake_gateway.refunds == [
            {"provider_ref": payment.provider_ref, "amount": Decimal("75.00"), "currency": "SAR"}
        ]

        async with session_factory() as session:
            with pytest.raises(ExpiredLinkError):
                await SecureContentIssuer(session).resolve_link(link.token)

    async def test_paid_order(self, shop, session_factory):
        order_id = await shop.purchase((await shop.course(delivery_type=DeliveryType.LIVE), 1))
        # live orders sit in under_process; step back to paid to refund before fulfilment
        await shop.set_status(order_id, OrderStatus.PAID)

        order = await refund(shop, session_factory, order_id)

        assert order.status == OrderStatus.REFUNDED

    @pytest.mark.parametrize("status", [OrderStatus.NEW, OrderStatus.PENDING_PAYMENT])
    async def test_unpaid_orders_cannot_be_refunded(self, shop, session_factory, status):
        order_id = await shop.order()
        await shop.set_status(order_id, status)

        with pytest.raises(InvalidTransitionError):
            await refund(shop, session_factory, order_id)

    async def test_refund_twice(self, shop, session_factory, fake_gateway):
        order_id = await shop.purchase()
        await refund(shop, session_factory, order_id)

        with pytest.raises(InvalidTransitionError):
            await refund(shop, session_factory, order_id)
        assert len(fake_gateway.refunds) == 1

    async def test_declined_refund_changes_nothing(self, shop, session_factory, fake_gateway):
        order_id = await shop.purchase()
        fake_gateway.refunds_succeed = False

        with pytest.raises(GatewayError):
            await refund(shop, session_factory, order_id)

        assert (await shop.get_order(order_id)).status == OrderStatus.PROCESSED
        assert (await shop.payments(order_id))[0].status == PaymentStatus.CAPTURED
