import logging

from coursepay.database import get_session_factory
from coursepay.repositories import IdempotencyRepository
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)


async def purge_expired_idempotency_records(session_factory=None, now=None) -> int:
    session_factory = session_factory or get_session_factory()

    async with session_factory() as session:
        purged = await IdempotencyRepository(session).purge_expired(now or utcnow())
        await session.commit()

    if purged:
        logger.info(f"Purged {purged} idempotency records past retention")
    return purged
