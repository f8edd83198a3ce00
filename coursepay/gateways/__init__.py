"""Payment gateway registry.

Adapters are selected by configuration: ``PAYMENT_PROVIDER`` names the
default and ``CURRENCY_PROVIDERS`` may route a currency elsewhere.
"""

from functools import lru_cache
from typing import Dict, Iterable, Optional

from coursepay.config import settings
from coursepay.exceptions import NotFoundError
from coursepay.gateways.base import (
    CheckoutSession,
    ParsedEvent,
    PaymentGateway,
    ProviderStatus,
    RefundResult,
)
from coursepay.gateways.clickpay_gateway import ClickPayGateway
from coursepay.gateways.fake_gateway import FakeGateway
from coursepay.gateways.razorpay_gateway import RazorpayGateway

GATEWAY_CLASSES = {
    RazorpayGateway.name: RazorpayGateway,
    ClickPayGateway.name: ClickPayGateway,
    FakeGateway.name: FakeGateway,
}


class GatewayRegistry:
    def __init__(self, gateways: Iterable[PaymentGateway], default: str, currency_providers: Optional[Dict[str, str]] = None):
        self._gateways = {gateway.name: gateway for gateway in gateways}
        self.default = default
        self.currency_providers = {k.upper(): v for k, v in (currency_providers or {}).items()}

    def get(self, name: str) -> PaymentGateway:
        gateway = self._gateways.get(name)
        if gateway is None:
            raise NotFoundError(f"Unknown payment provider '{name}'", provider=name)
        return gateway

    def for_currency(self, currency: str) -> PaymentGateway:
        return self.get(self.currency_providers.get(currency.upper(), self.default))


def build_registry() -> GatewayRegistry:
    names = {settings.payment_provider, *settings.currency_providers.values()}
    unknown = names - set(GATEWAY_CLASSES)
    if unknown:
        raise ValueError(f"Unsupported payment providers configured: {sorted(unknown)}")
    return GatewayRegistry(
        [GATEWAY_CLASSES[name]() for name in names],
        default=settings.payment_provider,
        currency_providers=settings.currency_providers,
    )


@lru_cache(maxsize=1)
def get_gateway_registry() -> GatewayRegistry:
    return build_registry()
