"""Razorpay adapter built on Payment Links.

Webhooks carry ``X-Razorpay-Signature`` (HMAC-SHA256 of the raw body keyed
with the webhook secret) and ``X-Razorpay-Event-Id``.
"""

import json
import logging
from decimal import Decimal
from typing import Mapping
from uuid import uuid4

import razorpay

from coursepay.config import settings
from coursepay.exceptions import GatewayError, VerificationError
from coursepay.gateways.base import (
    CheckoutSession,
    ParsedEvent,
    PaymentGateway,
    ProviderStatus,
    RefundResult,
    normalize_headers,
    to_minor_units,
)

logger = logging.getLogger(__name__)

EVENT_OUTCOMES = {
    "payment_link.paid": ProviderStatus.CAPTURED,
    "payment_link.expired": ProviderStatus.EXPIRED,
    "payment_link.cancelled": ProviderStatus.FAILED,
    "payment_link.partially_paid": ProviderStatus.PENDING,
}

LINK_STATUSES = {
    "paid": ProviderStatus.CAPTURED,
    "expired": ProviderStatus.EXPIRED,
    "cancelled": ProviderStatus.FAILED,
}


class RazorpayGateway(PaymentGateway):
    name = "razorpay"

    def __init__(self, key_id: str = None, key_secret: str = None, webhook_secret: str = None, client=None, timeout=None):
        super().__init__(timeout=timeout)
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.razorpay_webhook_secret
        self.client = client or razorpay.Client(
            auth=(key_id or settings.razorpay_key_id, key_secret or settings.razorpay_key_secret)
        )

    async def create_session(self, order, return_url: str) -> CheckoutSession:
        link = await self._call(
            "create_session",
            self.client.payment_link.create,
            {
                "amount": to_minor_units(order.amount),
                "currency": order.currency,
                # must be unique per link; an order may open several
                "reference_id": f"{order.id[:24]}-{uuid4().hex[:8]}",
                "description": f"Order {order.id}",
                "callback_url": return_url,
                "callback_method": "get",
                "notes": {"order_id": order.id},
            },
        )
        if not link.get("id") or not link.get("short_url"):
            raise GatewayError("Razorpay returned an incomplete payment link", provider=self.name)

        logger.info(f"Razorpay payment link {link['id']} created for order {order.id}")
        return CheckoutSession(provider_ref=link["id"], redirect_url=link["short_url"])

    async def verify_callback(self, raw_payload: bytes, headers: Mapping[str, str]) -> ParsedEvent:
        headers = normalize_headers(headers)
        signature = headers.get("x-razorpay-signature")
        if not signature or not self.webhook_secret:
            raise VerificationError("Missing Razorpay signature", provider=self.name)

        try:
            body = raw_payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise VerificationError("Razorpay payload is not valid UTF-8", provider=self.name) from exc

        try:
            self.client.utility.verify_webhook_signature(body, signature, self.webhook_secret)
        except razorpay.errors.SignatureVerificationError as exc:
            raise VerificationError("Razorpay signature mismatch", provider=self.name) from exc

        try:
            data = json.loads(body)
            event = data["event"]
            link = data["payload"]["payment_link"]["entity"]
            provider_ref = link["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise VerificationError("Unrecognised Razorpay payload", provider=self.name) from exc

        event_id = headers.get("x-razorpay-event-id") or f"{event}:{provider_ref}"
        return ParsedEvent(
            provider_ref=provider_ref,
            event_id=event_id,
            outcome=EVENT_OUTCOMES.get(event, ProviderStatus.PENDING),
            raw=data,
        )

    async def query_status(self, provider_ref: str) -> ProviderStatus:
        link = await self._call("query_status", self.client.payment_link.fetch, provider_ref)
        return LINK_STATUSES.get(link.get("status"), ProviderStatus.PENDING)

    async def refund(self, provider_ref: str, amount: Decimal, currency: str) -> RefundResult:
        link = await self._call("refund", self.client.payment_link.fetch, provider_ref)
        captured = [p for p in link.get("payments") or [] if p.get("status") == "captured"]
        if not captured:
            return RefundResult(success=False, failure_reason="No captured payment on link")

        refund = await self._call(
            "refund",
            self.client.payment.refund,
            captured[0]["payment_id"],
            {"amount": to_minor_units(amount)},
        )
        return RefundResult(success=bool(refund.get("id")), refund_ref=refund.get("id"))
