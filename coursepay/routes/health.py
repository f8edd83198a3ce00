import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.database import get_session
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/check")
async def health_check(session: AsyncSession = Depends(get_session)):
    db_status = "ok"

    try:
        # simple DB ping
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning(f"Health check database ping failed: {exc}")
        db_status = "failed"

    return {
        "status": "ok",
        "database": db_status,
        "timestamp": utcnow().isoformat(),
    }
