import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.config import settings
from coursepay.constants.order_status import (
    CHECKOUT_STATUSES,
    PAYMENT_TRANSITIONS,
    OrderStatus,
    PaymentStatus,
)
from coursepay.exceptions import (
    ConflictError,
    GatewayError,
    NotFoundError,
    StaleOrderError,
    VerificationError,
)
from coursepay.gateways import GatewayRegistry
from coursepay.gateways.base import PaymentGateway, ProviderStatus, normalize_headers
from coursepay.models.course import DeliveryType
from coursepay.models.payment import Payment
from coursepay.repositories import OrderRepository, PaymentRepository
from coursepay.services.idempotency_service import IdempotencyGuard
from coursepay.services.order_event_service import advance_order, log_order_event
from coursepay.services.secure_link_service import SecureContentIssuer
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)

CALLBACK_SCOPE = "payment_callback"

PAYMENT_OUTCOMES = {
    ProviderStatus.CAPTURED: PaymentStatus.CAPTURED,
    ProviderStatus.FAILED: PaymentStatus.FAILED,
    ProviderStatus.EXPIRED: PaymentStatus.EXPIRED,
}

ORDER_OUTCOMES = {
    ProviderStatus.FAILED: OrderStatus.FAILED,
    ProviderStatus.EXPIRED: OrderStatus.EXPIRED,
}


def webhook_key(provider: str, event_id: str) -> str:
    return f"webhook:{provider}:{event_id}"


def poll_key(provider: str, provider_ref: str, outcome: ProviderStatus) -> str:
    return f"poll:{provider}:{provider_ref}:{outcome.value}"


@dataclass(frozen=True)
class CallbackResult:
    duplicate: bool
    payment_id: str
    order_status: OrderStatus


@dataclass
class ReconciliationReport:
    checked: int = 0
    captured: int = 0
    failed: int = 0
    expired: int = 0
    errors: int = 0

    def record(self, outcome: ProviderStatus) -> None:
        if outcome == ProviderStatus.CAPTURED:
            self.captured += 1
        elif outcome == ProviderStatus.FAILED:
            self.failed += 1
        elif outcome == ProviderStatus.EXPIRED:
            self.expired += 1


class PaymentOrchestrator:
    """
    Drives checkout sessions and applies provider outcomes to payments and orders.

    Every outcome, whether it arrives by webhook or by the reconciliation
    poll, goes through ``_apply_outcome`` under an idempotency key, so each
    provider event has effect at most once.
    """

    def __init__(
        self,
        session: AsyncSession,
        registry: GatewayRegistry,
        clock=utcnow,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        conflict_retries: Optional[int] = None,
        sleep=asyncio.sleep,
    ):
        self.session = session
        self.registry = registry
        self.clock = clock
        self.orders = OrderRepository(session)
        self.payments = PaymentRepository(session)
        self.guard = IdempotencyGuard(session, clock=clock)
        self.issuer = SecureContentIssuer(session, clock=clock)
        self.max_retries = max_retries if max_retries is not None else settings.gateway_max_retries
        self.retry_backoff = retry_backoff if retry_backoff is not None else settings.gateway_retry_backoff_seconds
        self.conflict_retries = (
            conflict_retries if conflict_retries is not None else settings.version_conflict_retries
        )
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_checkout_session(self, order_id: str, return_url: str) -> str:
        try:
            order = await self.orders.get(order_id, for_update=True)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found", order_id=order_id)

            status = OrderStatus(order.status)
            if status not in CHECKOUT_STATUSES:
                raise ConflictError(
                    f"Order {order_id} is {status.value}; checkout is closed",
                    order_id=order_id,
                    status=status.value,
                )

            gateway = self.registry.for_currency(order.currency)
            checkout = await self._open_session(gateway, order, return_url)

            now = self.clock()
            self.payments.add(
                Payment(
                    order_id=order.id,
                    provider=gateway.name,
                    provider_ref=checkout.provider_ref,
                    status=PaymentStatus.PENDING,
                    created_at=now,
                    updated_at=now,
                )
            )

            if status == OrderStatus.NEW:
                await advance_order(self.session, order, OrderStatus.PENDING_PAYMENT)
            else:
                # resumed payment: still bump the version so a concurrent checkout loses
                await self.orders.save_status(order, OrderStatus.PENDING_PAYMENT)
                log_order_event(
                    self.session,
                    order.id,
                    event_type="payment_resumed",
                    label=f"New {gateway.name} checkout opened",
                    meta={"provider_ref": checkout.provider_ref},
                )

            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(f"Checkout {checkout.provider_ref} ({gateway.name}) opened for order {order_id}")
        return checkout.redirect_url

    async def _open_session(self, gateway: PaymentGateway, order, return_url: str):
        attempts = max(self.max_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                return await gateway.create_session(order, return_url)
            except GatewayError as exc:
                if attempt == attempts:
                    logger.error(f"{gateway.name} checkout for order {order.id} failed after {attempt} attempts")
                    raise
                delay = self.retry_backoff * (2 ** (attempt - 1))
                logger.warning(
                    f"{gateway.name} checkout attempt {attempt} for order {order.id} failed ({exc}); "
                    f"retrying in {delay}s"
                )
                await self.sleep(delay)

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    async def handle_callback(self, provider: str, raw_payload: bytes, headers: Mapping[str, str]) -> CallbackResult:
        gateway = self.registry.get(provider)
        try:
            event = await gateway.verify_callback(raw_payload, headers)
        except VerificationError as exc:
            logger.warning(
                f"Rejected {provider} callback: {exc.message} "
                f"(headers: {sorted(normalize_headers(headers))}, {len(raw_payload or b'')} bytes)"
            )
            raise

        return await self._apply_outcome(
            gateway,
            event.provider_ref,
            event.outcome,
            webhook_key(provider, event.event_id),
            raw=event.raw,
        )

    async def _apply_outcome(
        self,
        gateway: PaymentGateway,
        provider_ref: str,
        outcome: ProviderStatus,
        key: str,
        raw: Optional[dict] = None,
    ) -> CallbackResult:
        payment = await self.payments.get_by_provider_ref(gateway.name, provider_ref)
        if payment is None:
            await self.session.rollback()
            logger.warning(f"{gateway.name} event for unknown reference {provider_ref}")
            raise NotFoundError("Unknown payment reference", provider=gateway.name)
        payment_id = payment.id
        order_id = payment.order_id

        for attempt in range(self.conflict_retries + 1):
            try:
                result = await self.guard.check_or_record(
                    key,
                    lambda: self._apply(gateway, key, order_id, payment_id, outcome, raw),
                    scope=CALLBACK_SCOPE,
                )
                break
            except StaleOrderError:
                # guard has rolled back; reload and go again
                if attempt == self.conflict_retries:
                    raise ConflictError(f"Gave up applying {key} after repeated version conflicts")
                logger.info(f"Version conflict applying {key}; retry {attempt + 1}")

        if result.replayed:
            logger.info(f"Duplicate event {key} ignored")
        return CallbackResult(
            duplicate=result.replayed,
            payment_id=result.value["payment_id"],
            order_status=OrderStatus(result.value["order_status"]),
        )

    async def _apply(
        self,
        gateway: PaymentGateway,
        key: str,
        order_id: str,
        payment_id: str,
        outcome: ProviderStatus,
        raw,
    ) -> dict:
        order = await self.orders.get(order_id, for_update=True)

        # an overlapping delivery of this event may have committed while we waited for the lock
        if await self.guard.lookup(key) is not None:
            raise ConflictError(f"Event {key} was applied concurrently", order_id=order_id)

        payment = await self.payments.get(payment_id)

        if raw:
            payment.raw_payload = raw
        payment.updated_at = self.clock()

        if outcome == ProviderStatus.CAPTURED:
            await self._apply_capture(gateway, payment, order)
        elif outcome in ORDER_OUTCOMES:
            await self._apply_failure(payment, order, outcome)
        else:
            logger.info(f"Payment {payment.id} still pending at {gateway.name}")

        self.session.add(payment)
        await self.session.flush()
        return {
            "payment_id": payment.id,
            "order_id": order.id,
            "payment_status": PaymentStatus(payment.status).value,
            "order_status": OrderStatus(order.status).value,
        }

    async def _apply_capture(self, gateway: PaymentGateway, payment: Payment, order) -> None:
        if payment.status in (PaymentStatus.CAPTURED, PaymentStatus.REFUNDED):
            logger.info(f"Payment {payment.id} already {PaymentStatus(payment.status).value}")
            return

        already_paid = await self.payments.captured_for_order(order.id)
        self._move_payment(payment, PaymentStatus.CAPTURED)
        payment.captured_at = self.clock()

        if already_paid is not None or order.status != OrderStatus.PENDING_PAYMENT:
            await self._reverse_capture(gateway, payment, order)
            return

        meta = {"payment_id": payment.id, "provider": gateway.name}
        await advance_order(self.session, order, OrderStatus.PAID, meta=meta)
        await advance_order(self.session, order, OrderStatus.UNDER_PROCESS, meta=meta)

        items = await self.orders.items(order.id)
        if all(item.delivery_type == DeliveryType.DIGITAL for item in items):
            await advance_order(self.session, order, OrderStatus.PROCESSED, meta=meta)
            await self.issuer.issue_links(order.id)

    async def _reverse_capture(self, gateway: PaymentGateway, payment: Payment, order) -> None:
        """Return money captured for an order that can no longer take it."""
        logger.warning(
            f"Capture {payment.provider_ref} arrived for order {order.id} in "
            f"{OrderStatus(order.status).value}; refunding"
        )
        refund = await gateway.refund(payment.provider_ref, order.amount, order.currency)
        if not refund.success:
            raise GatewayError(
                f"Refund of unusable capture {payment.provider_ref} declined: {refund.failure_reason}",
                provider=gateway.name,
            )

        self._move_payment(payment, PaymentStatus.REFUNDED)
        log_order_event(
            self.session,
            order.id,
            event_type="capture_refunded",
            label=f"Extra capture {payment.provider_ref} refunded",
            meta={"payment_id": payment.id, "refund_ref": refund.refund_ref},
        )

    async def _apply_failure(self, payment: Payment, order, outcome: ProviderStatus) -> None:
        if payment.status != PaymentStatus.PENDING:
            logger.info(f"Payment {payment.id} already {PaymentStatus(payment.status).value}; {outcome.value} ignored")
            return

        self._move_payment(payment, PAYMENT_OUTCOMES[outcome])

        if order.status != OrderStatus.PENDING_PAYMENT:
            return
        if await self.payments.has_other_pending(order.id, payment.id):
            logger.info(f"Order {order.id} keeps waiting; another checkout is still open")
            return
        await advance_order(self.session, order, ORDER_OUTCOMES[outcome], meta={"payment_id": payment.id})

    def _move_payment(self, payment: Payment, target: PaymentStatus) -> None:
        current = PaymentStatus(payment.status)
        if target not in PAYMENT_TRANSITIONS[current]:
            raise ConflictError(
                f"Payment {payment.id} cannot move from {current.value} to {target.value}",
                payment_id=payment.id,
            )
        payment.status = target
        logger.info(f"Payment {payment.id} moved {current.value} -> {target.value}")

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_stale_payments(self, older_than: timedelta) -> ReconciliationReport:
        """
        Poll the provider for every pending payment older than ``older_than``.

        Payments the provider still reports as pending are expired. Gateway
        errors skip that payment until the next sweep.
        """
        report = ReconciliationReport()
        stale = await self.payments.stale_pending(self.clock() - older_than)
        candidates = [(p.provider, p.provider_ref) for p in stale]
        await self.session.rollback()

        for provider, provider_ref in candidates:
            report.checked += 1
            try:
                gateway = self.registry.get(provider)
                status = await gateway.query_status(provider_ref)
                if status == ProviderStatus.PENDING:
                    status = ProviderStatus.EXPIRED

                await self._apply_outcome(
                    gateway,
                    provider_ref,
                    status,
                    poll_key(provider, provider_ref, status),
                    raw={"source": "reconciliation", "provider_status": status.value},
                )
            except (GatewayError, ConflictError, NotFoundError) as exc:
                report.errors += 1
                logger.warning(f"Reconciliation skipped {provider}:{provider_ref}: {exc}")
                continue
            report.record(status)

        logger.info(
            f"Reconciliation: {report.checked} checked, {report.captured} captured, "
            f"{report.failed} failed, {report.expired} expired, {report.errors} errors"
        )
        return report
