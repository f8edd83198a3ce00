"""Payment gateway port (abstract interface).

Every provider adapter implements this contract; the rest of the engine only
sees ``CheckoutSession``, ``ParsedEvent``, ``ProviderStatus`` and
``RefundResult``. Signature schemes and payload shapes stay inside each
adapter.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional

from coursepay.config import settings
from coursepay.exceptions import GatewayError

logger = logging.getLogger(__name__)


class ProviderStatus(str, Enum):
    PENDING = "pending"
    CAPTURED = "captured"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CheckoutSession:
    provider_ref: str
    redirect_url: str


@dataclass(frozen=True)
class ParsedEvent:
    """Provider-neutral view of a verified callback."""

    provider_ref: str
    event_id: str
    outcome: ProviderStatus
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_ref: Optional[str] = None
    failure_reason: Optional[str] = None


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def normalize_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    return {str(k).lower(): v for k, v in (headers or {}).items()}


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    name: str = ""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds

    async def _call(self, operation: str, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a blocking SDK/HTTP call off the event loop, bounded by the gateway timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            logger.warning(f"{self.name} {operation} timed out after {self.timeout}s")
            raise GatewayError(f"{self.name} {operation} timed out", provider=self.name) from exc
        except GatewayError:
            raise
        except Exception as exc:
            logger.warning(f"{self.name} {operation} failed: {exc}")
            raise GatewayError(f"{self.name} {operation} failed", provider=self.name) from exc

    @abstractmethod
    async def create_session(self, order, return_url: str) -> CheckoutSession:
        """Open a hosted checkout for ``order`` and return where to send the buyer."""
        ...

    @abstractmethod
    async def verify_callback(self, raw_payload: bytes, headers: Mapping[str, str]) -> ParsedEvent:
        """Authenticate and parse a callback. Raises VerificationError; fails closed."""
        ...

    @abstractmethod
    async def query_status(self, provider_ref: str) -> ProviderStatus:
        """Ask the provider where a checkout stands (used when callbacks are late or lost)."""
        ...

    @abstractmethod
    async def refund(self, provider_ref: str, amount: Decimal, currency: str) -> RefundResult:
        """Return captured funds."""
        ...
