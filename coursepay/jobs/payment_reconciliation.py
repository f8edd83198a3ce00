import asyncio
import logging
from datetime import timedelta

from coursepay.config import settings
from coursepay.database import get_session_factory
from coursepay.gateways import get_gateway_registry
from coursepay.jobs.idempotency_purge import purge_expired_idempotency_records
from coursepay.services.payment_orchestrator import PaymentOrchestrator, ReconciliationReport

logger = logging.getLogger(__name__)


async def reconcile_pending_payments(session_factory=None, registry=None) -> ReconciliationReport:
    """One sweep over checkouts whose callback never arrived."""
    session_factory = session_factory or get_session_factory()
    registry = registry or get_gateway_registry()

    async with session_factory() as session:
        orchestrator = PaymentOrchestrator(session, registry)
        return await orchestrator.reconcile_stale_payments(
            timedelta(minutes=settings.payment_expiry_minutes)
        )


async def run_reconciliation_loop(interval_seconds: int = None, session_factory=None, registry=None):
    interval = interval_seconds or settings.reconciliation_interval_seconds
    logger.info(f"Payment reconciliation running every {interval}s")

    while True:
        try:
            await reconcile_pending_payments(session_factory, registry)
            await purge_expired_idempotency_records(session_factory)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Reconciliation sweep failed")
        await asyncio.sleep(interval)
