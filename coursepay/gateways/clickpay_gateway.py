"""ClickPay hosted payment page adapter.

Callbacks are signed with the profile's server key: the ``signature`` header
holds the hex HMAC-SHA256 of the raw body.
"""

import hashlib
import hmac
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Mapping

import requests

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

# payment_result.response_status
RESPONSE_STATUSES = {
    "A": ProviderStatus.CAPTURED,   # authorised
    "D": ProviderStatus.FAILED,     # declined
    "E": ProviderStatus.FAILED,     # error
    "V": ProviderStatus.FAILED,     # voided
    "X": ProviderStatus.EXPIRED,    # expired
    "H": ProviderStatus.PENDING,    # on hold
    "P": ProviderStatus.PENDING,
}


def compute_signature(raw_payload: bytes, server_key: str) -> str:
    return hmac.new(server_key.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()


class ClickPayGateway(PaymentGateway):
    name = "clickpay"

    def __init__(self, api_url: str = None, profile_id: str = None, server_key: str = None, http=None, timeout=None):
        super().__init__(timeout=timeout)
        self.api_url = (api_url or settings.clickpay_api_url).rstrip("/")
        self.profile_id = profile_id or settings.clickpay_profile_id
        self.server_key = server_key if server_key is not None else settings.clickpay_server_key
        self.http = http or requests

    def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = self.http.post(
            f"{self.api_url}{path}",
            json=payload,
            headers={"authorization": self.server_key, "Content-Type": "application/json"},
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise GatewayError(
                f"ClickPay {path} failed ({response.status_code})",
                provider=self.name,
                body=response.text,
            )
        return response.json()

    async def create_session(self, order, return_url: str) -> CheckoutSession:
        data = await self._call(
            "create_session",
            self._post,
            "/payment/request",
            {
                "profile_id": self.profile_id,
                "tran_type": "sale",
                "tran_class": "ecom",
                "cart_id": order.id,
                "cart_currency": order.currency,
                "cart_amount": f"{Decimal(order.amount):.2f}",
                "cart_description": f"Order {order.id}",
                "return": return_url,
                "callback": f"{settings.base_url}/payments/webhook/{self.name}",
            },
        )
        if not data.get("tran_ref") or not data.get("redirect_url"):
            raise GatewayError("ClickPay returned no redirect", provider=self.name)

        logger.info(f"ClickPay transaction {data['tran_ref']} opened for order {order.id}")
        return CheckoutSession(provider_ref=data["tran_ref"], redirect_url=data["redirect_url"])

    async def verify_callback(self, raw_payload: bytes, headers: Mapping[str, str]) -> ParsedEvent:
        headers = normalize_headers(headers)
        signature = headers.get("signature")
        if not signature or not self.server_key:
            raise VerificationError("Missing ClickPay signature", provider=self.name)

        expected = compute_signature(raw_payload, self.server_key)
        if not hmac.compare_digest(expected, signature.lower()):
            raise VerificationError("ClickPay signature mismatch", provider=self.name)

        try:
            data = json.loads(raw_payload)
            tran_ref = data["tran_ref"]
            status = data["payment_result"]["response_status"]
        except (ValueError, KeyError, TypeError) as exc:
            raise VerificationError("Unrecognised ClickPay payload", provider=self.name) from exc

        return ParsedEvent(
            provider_ref=tran_ref,
            event_id=f"{tran_ref}:{status}",
            outcome=RESPONSE_STATUSES.get(status, ProviderStatus.PENDING),
            raw=data,
        )

    async def query_status(self, provider_ref: str) -> ProviderStatus:
        data = await self._call(
            "query_status",
            self._post,
            "/payment/query",
            {"profile_id": self.profile_id, "tran_ref": provider_ref},
        )
        status = (data.get("payment_result") or {}).get("response_status")
        return RESPONSE_STATUSES.get(status, ProviderStatus.PENDING)

    async def refund(self, provider_ref: str, amount: Decimal, currency: str) -> RefundResult:
        data = await self._call(
            "refund",
            self._post,
            "/payment/request",
            {
                "profile_id": self.profile_id,
                "tran_type": "refund",
                "tran_class": "ecom",
                "tran_ref": provider_ref,
                "cart_id": f"refund-{provider_ref}",
                "cart_currency": currency,
                "cart_amount": f"{Decimal(amount):.2f}",
                "cart_description": f"Refund of {provider_ref}",
            },
        )
        result = data.get("payment_result") or {}
        if result.get("response_status") == "A":
            return RefundResult(success=True, refund_ref=data.get("tran_ref"))
        return RefundResult(success=False, failure_reason=result.get("response_message"))
