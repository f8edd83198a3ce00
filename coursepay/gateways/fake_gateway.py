"""Configurable fake payment gateway for development and testing.

Simulates a hosted-checkout provider without any external calls. Callbacks
are signed with ``x-fake-signature`` (hex HMAC-SHA256 of the body keyed with
``fake_gateway_secret``) so the verification path is exercised for real.
"""

import hashlib
import hmac
import json
import logging
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Tuple
from uuid import uuid4

from coursepay.config import settings
from coursepay.exceptions import GatewayError, VerificationError
from coursepay.gateways.base import (
    CheckoutSession,
    ParsedEvent,
    PaymentGateway,
    ProviderStatus,
    RefundResult,
    normalize_headers,
)

logger = logging.getLogger(__name__)


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    name = "fake"

    def __init__(self, secret: str = None, checkout_url: str = None, timeout=None):
        super().__init__(timeout=timeout)
        self.secret = secret or settings.fake_gateway_secret
        self.checkout_url = checkout_url or settings.fake_gateway_checkout_url
        self.statuses: Dict[str, ProviderStatus] = {}
        self.refunds: List[dict] = []
        self.calls: List[dict] = []
        self.failures_remaining = 0
        self.refunds_succeed = True

    def fail_next(self, times: int = 1) -> None:
        """Make the next ``times`` remote calls raise GatewayError."""
        self.failures_remaining = times

    def set_status(self, provider_ref: str, status: ProviderStatus) -> None:
        self.statuses[provider_ref] = status

    def _maybe_fail(self, method: str) -> None:
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise GatewayError(f"fake {method} unavailable", provider=self.name)

    def sign(self, body: bytes) -> str:
        return hmac.new(self.secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    def build_callback(
        self,
        provider_ref: str,
        outcome: ProviderStatus,
        event_id: Optional[str] = None,
    ) -> Tuple[bytes, Dict[str, str]]:
        """Body and headers of a signed callback, as the provider would send them."""
        body = json.dumps(
            {
                "event_id": event_id or f"evt_{uuid4().hex[:12]}",
                "session_id": provider_ref,
                "status": outcome.value,
            }
        ).encode("utf-8")
        return body, {"x-fake-signature": self.sign(body)}

    async def create_session(self, order, return_url: str) -> CheckoutSession:
        self.calls.append({"method": "create_session", "order_id": order.id, "amount": str(order.amount)})
        self._maybe_fail("create_session")

        provider_ref = f"fake_sess_{uuid4().hex[:12]}"
        self.statuses[provider_ref] = ProviderStatus.PENDING
        return CheckoutSession(
            provider_ref=provider_ref,
            redirect_url=f"{self.checkout_url}/{provider_ref}?return={return_url}",
        )

    async def verify_callback(self, raw_payload: bytes, headers: Mapping[str, str]) -> ParsedEvent:
        signature = normalize_headers(headers).get("x-fake-signature")
        if not signature or not hmac.compare_digest(self.sign(raw_payload), signature):
            raise VerificationError("Invalid fake gateway signature", provider=self.name)

        try:
            data = json.loads(raw_payload)
            return ParsedEvent(
                provider_ref=data["session_id"],
                event_id=data["event_id"],
                outcome=ProviderStatus(data["status"]),
                raw=data,
            )
        except (ValueError, KeyError, TypeError) as exc:
            raise VerificationError("Unrecognised fake gateway payload", provider=self.name) from exc

    async def query_status(self, provider_ref: str) -> ProviderStatus:
        self.calls.append({"method": "query_status", "provider_ref": provider_ref})
        self._maybe_fail("query_status")
        return self.statuses.get(provider_ref, ProviderStatus.PENDING)

    async def refund(self, provider_ref: str, amount: Decimal, currency: str) -> RefundResult:
        self.calls.append({"method": "refund", "provider_ref": provider_ref, "amount": str(amount)})
        self._maybe_fail("refund")
        if not self.refunds_succeed:
            return RefundResult(success=False, failure_reason="Refund declined")

        refund_ref = f"fake_ref_{uuid4().hex[:12]}"
        self.refunds.append({"provider_ref": provider_ref, "amount": Decimal(amount), "currency": currency})
        return RefundResult(success=True, refund_ref=refund_ref)
