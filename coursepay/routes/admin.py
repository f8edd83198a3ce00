from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.config import settings
from coursepay.database import get_session
from coursepay.gateways import GatewayRegistry, get_gateway_registry
from coursepay.routes.orders import build_order_summary
from coursepay.schemas.checkout_schemas import ReconciliationOut
from coursepay.schemas.orders_schemas import OrderSummary
from coursepay.services.payment_orchestrator import PaymentOrchestrator
from coursepay.services.refund_service import refund_order
from coursepay.utils.token import get_current_admin

router = APIRouter()


@router.post("/orders/{order_id}/refund", response_model=OrderSummary)
async def admin_refund_order(
    order_id: str,
    session: AsyncSession = Depends(get_session),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    admin: dict = Depends(get_current_admin),
):
    await refund_order(
        session=session,
        registry=registry,
        order_id=order_id,
        created_by=str(admin.get("sub") or "admin"),
    )
    return await build_order_summary(session, order_id)


@router.post("/payments/reconcile", response_model=ReconciliationOut)
async def admin_reconcile_payments(
    session: AsyncSession = Depends(get_session),
    registry: GatewayRegistry = Depends(get_gateway_registry),
    _: dict = Depends(get_current_admin),
):
    report = await PaymentOrchestrator(session, registry).reconcile_stale_payments(
        timedelta(minutes=settings.payment_expiry_minutes)
    )
    return ReconciliationOut(
        checked=report.checked,
        captured=report.captured,
        failed=report.failed,
        expired=report.expired,
        errors=report.errors,
    )
