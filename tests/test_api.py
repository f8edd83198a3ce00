"""Integration tests for the HTTP surface."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update

from coursepay.config import settings
from coursepay.gateways.base import ProviderStatus
from coursepay.models import SecureLink
from coursepay.utils.clock import utcnow
from coursepay.utils.token import create_access_token, decode_access_token


@pytest.fixture(autouse=True)
def quick_retries(monkeypatch):
    monkeypatch.setattr(settings, "gateway_retry_backoff_seconds", 0)


def admin_headers(role="admin"):
    token = create_access_token({"sub": "admin-7", "role": role})
    return {"Authorization": f"Bearer {token}"}


async def paid_order(client, shop):
    """Create, check out and capture an order through the API."""
    first = await shop.course(title="Seerah Part 1")
    second = await shop.course(title="Seerah Part 2")
    cart_id = await shop.cart((first, 1), (second, 1))

    response = await client.post("/orders", json={"cart_id": cart_id})
    order_id = response.json()["order_id"]
    await client.post("/payments/checkout", json={"order_id": order_id, "return_url": "https://shop.test/done"})
    (payment,) = await shop.payments(order_id)

    body, headers = shop.gateway.build_callback(payment.provider_ref, ProviderStatus.CAPTURED, event_id="evt_api")
    response = await client.post("/payments/webhook/fake", content=body, headers=headers)
    assert response.status_code == 200
    return order_id


class TestOrdersApi:
    async def test_create_and_fetch_order(self, client, shop):
        first = await shop.course(price="75.00")
        second = await shop.course(price="75.00")
        cart_id = await shop.cart((first, 1), (second, 1))

        response = await client.post("/orders", json={"cart_id": cart_id})
        assert response.status_code == 200
        order_id = response.json()["order_id"]

        response = await client.get(f"/orders/{order_id}")
        assert response.status_code == 200
        body = response.json()
        assert Decimal(body["amount"]) == Decimal("150")
        assert body["currency"] == "SAR"
        assert body["status"] == "new"
        assert len(body["items"]) == 2
        assert body["payments"] == []

    async def test_idempotency_key_header(self, client, shop):
        cart_id = await shop.cart((await shop.course(), 1))

        first = await client.post("/orders", json={"cart_id": cart_id}, headers={"Idempotency-Key": "abc"})
        second = await client.post("/orders", json={"cart_id": cart_id}, headers={"Idempotency-Key": "abc"})

        assert first.json()["order_id"] == second.json()["order_id"]

    async def test_empty_cart(self, client, shop):
        response = await client.post("/orders", json={"cart_id": await shop.cart()})

        assert response.status_code == 400
        assert response.json() == {"detail": "Cart is empty"}

    async def test_unknown_order(self, client):
        response = await client.get("/orders/does-not-exist")

        assert response.status_code == 404


class TestPaymentsApi:
    async def test_checkout_returns_redirect(self, client, shop):
        order_id = await shop.order()

        response = await client.post(
            "/payments/checkout", json={"order_id": order_id, "return_url": "https://shop.test/done"}
        )

        assert response.status_code == 200
        assert response.json()["redirect_url"].startswith("https://pay.test/checkout/")
        assert (await client.get(f"/orders/{order_id}")).json()["status"] == "pending_payment"

    async def test_webhook_and_duplicate(self, client, shop):
        order_id = await shop.order()
        payment = await shop.checkout(order_id)
        body, headers = shop.gateway.build_callback(payment.provider_ref, ProviderStatus.CAPTURED, event_id="evt_1")

        first = await client.post("/payments/webhook/fake", content=body, headers=headers)
        second = await client.post("/payments/webhook/fake", content=body, headers=headers)

        assert first.status_code == 200
        assert first.json() == {"status": "ok", "duplicate": False, "order_status": "processed"}
        assert second.json()["duplicate"] is True

    async def test_webhook_bad_signature_is_generic_400(self, client, shop):
        payment = await shop.checkout(await shop.order())
        body, _ = shop.gateway.build_callback(payment.provider_ref, ProviderStatus.CAPTURED)

        response = await client.post("/payments/webhook/fake", content=body, headers={"x-fake-signature": "nope"})

        assert response.status_code == 400
        assert response.json() == {"detail": "Invalid callback"}

    async def test_webhook_unknown_reference(self, client, shop):
        body, headers = shop.gateway.build_callback("fake_sess_unknown", ProviderStatus.CAPTURED)

        response = await client.post("/payments/webhook/fake", content=body, headers=headers)

        assert response.status_code == 404

    async def test_checkout_on_processed_order_conflicts(self, client, shop):
        order_id = await paid_order(client, shop)

        response = await client.post(
            "/payments/checkout", json={"order_id": order_id, "return_url": "https://shop.test/done"}
        )

        assert response.status_code == 409

    async def test_gateway_down_is_502(self, client, shop, fake_gateway):
        order_id = await shop.order()
        fake_gateway.fail_next(10)

        response = await client.post(
            "/payments/checkout", json={"order_id": order_id, "return_url": "https://shop.test/done"}
        )

        assert response.status_code == 502


class TestSecureLinksApi:
    async def test_redirects_to_presigned_url(self, client, shop, storage):
        order_id = await paid_order(client, shop)
        link = (await shop.links(order_id))[0]

        response = await client.get(f"/secure-links/{link.token}")

        assert response.status_code == 307
        assert response.headers["location"] == "https://r2.test/signed/file.pdf?sig=abc"
        _, kwargs = storage.client.generate_presigned_url.call_args
        assert kwargs["Params"]["Bucket"] == "test-bucket"

    async def test_unknown_token(self, client):
        response = await client.get("/secure-links/unknown")

        assert response.status_code == 404

    async def test_expired_link_is_gone(self, client, shop, session_factory):
        order_id = await paid_order(client, shop)
        link = (await shop.links(order_id))[0]
        async with session_factory() as session:
            await session.execute(
                update(SecureLink)
                .where(SecureLink.token == link.token)
                .values(expires_at=utcnow() - timedelta(days=1))
            )
            await session.commit()

        response = await client.get(f"/secure-links/{link.token}")

        assert response.status_code == 410


class TestAdminApi:
    async def test_refund_requires_token(self, client, shop):
        order_id = await paid_order(client, shop)

        response = await client.post(f"/admin/orders/{order_id}/refund")

        assert response.status_code == 401

    async def test_refund_requires_admin_role(self, client, shop):
        order_id = await paid_order(client, shop)

        response = await client.post(f"/admin/orders/{order_id}/refund", headers=admin_headers(role="student"))

        assert response.status_code == 403

    async def test_refund(self, client, shop):
        order_id = await paid_order(client, shop)

        response = await client.post(f"/admin/orders/{order_id}/refund", headers=admin_headers())

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "refunded"
        assert body["payments"][0]["status"] == "refunded"

    async def test_refund_of_new_order_conflicts(self, client, shop):
        order_id = await shop.order()

        response = await client.post(f"/admin/orders/{order_id}/refund", headers=admin_headers())

        assert response.status_code == 409

    async def test_reconcile(self, client, shop):
        await shop.checkout(await shop.order())

        response = await client.post("/admin/payments/reconcile", headers=admin_headers())

        assert response.status_code == 200
        assert response.json() == {"checked": 1, "captured": 0, "failed": 0, "expired": 1, "errors": 0}


class TestHealth:
    async def test_health_check(self, client):
        response = await client.get("/health/check")

        assert response.status_code == 200
        assert response.json()["database"] == "ok"

    async def test_timestamp_is_utc(self, client):
        response = await client.get("/health/check")

        stamp = datetime.fromisoformat(response.json()["timestamp"])
        assert abs(stamp - utcnow()) < timedelta(seconds=5)


class TestAdminToken:
    def test_expires_thirty_minutes_after_issue(self):
        payload = decode_access_token(create_access_token({"sub": "admin-7", "role": "admin"}))

        expires = datetime.fromtimestamp(payload["exp"], timezone.utc).replace(tzinfo=None)
        assert abs(expires - (utcnow() + timedelta(minutes=30))) < timedelta(seconds=5)
        assert payload["role"] == "admin"
