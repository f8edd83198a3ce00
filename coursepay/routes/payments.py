from fastapi import APIRouter, Depends, Request
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.database import get_session
from coursepay.gateways import GatewayRegistry, get_gateway_registry
from coursepay.schemas.checkout_schemas import CheckoutRequest, CheckoutResponse, WebhookAck
from coursepay.services.payment_orchestrator import PaymentOrchestrator

router = APIRouter()


@router.post("/checkout", response_model=CheckoutResponse)
async def start_checkout(
    data: CheckoutRequest,
    session: AsyncSession = Depends(get_session),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    redirect_url = await PaymentOrchestrator(session, registry).create_checkout_session(
        data.order_id, data.return_url
    )
    return CheckoutResponse(redirect_url=redirect_url)


@router.post("/webhook/{provider}", response_model=WebhookAck)
async def payment_webhook(
    provider: str,
    request: Request,
    session: AsyncSession = Depends(get_session),
    registry: GatewayRegistry = Depends(get_gateway_registry),
):
    # signatures cover the exact bytes sent, so never re-serialise the body
    raw_payload = await request.body()

    result = await PaymentOrchestrator(session, registry).handle_callback(
        provider, raw_payload, dict(request.headers)
    )
    return WebhookAck(duplicate=result.duplicate, order_status=result.order_status)
