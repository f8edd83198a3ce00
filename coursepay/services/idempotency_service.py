import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from coursepay.config import settings
from coursepay.exceptions import ConflictError
from coursepay.models.idempotency import IdempotencyRecord
from coursepay.repositories import IdempotencyRepository
from coursepay.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdempotentResult:
    value: Dict[str, Any]
    replayed: bool = False


class IdempotencyGuard:
    """
    Single mechanism enforcing at-most-once effect per key.

    ``compute`` runs inside the session's open transaction; its writes and the
    idempotency record commit together or not at all.
    """

    def __init__(self, session: AsyncSession, clock=utcnow, retention_days: Optional[int] = None):
        self.session = session
        self.records = IdempotencyRepository(session)
        self.clock = clock
        self.retention = timedelta(days=retention_days or settings.idempotency_retention_days)

    async def lookup(self, key: str) -> Optional[IdempotencyRecord]:
        return await self.records.get(key)

    async def recorded_outcome(self, keys: Sequence[str]) -> Optional[Dict[str, Any]]:
        """Outcome stored under the first of ``keys`` that has one, as a plain dict."""
        for key in keys:
            record = await self.records.get(key)
            if record is not None:
                return dict(record.result or {})
        return None

    async def check_or_record(
        self,
        key: str,
        compute: Callable[[], Awaitable[Dict[str, Any]]],
        *,
        scope: str,
        aliases: Sequence[str] = (),
    ) -> IdempotentResult:
        """
        Replay the outcome recorded under ``key`` (or any of ``aliases``), or
        run ``compute`` and record its outcome under all of them.
        """
        keys = [key, *(alias for alias in aliases if alias != key)]

        existing = await self.recorded_outcome(keys)
        if existing is not None:
            logger.info(f"Idempotent replay for key {key}")
            # rollback expires loaded rows; the outcome is already copied out
            await self.session.rollback()
            return IdempotentResult(value=existing, replayed=True)

        try:
            result = await compute()
            now = self.clock()
            for recorded_key in keys:
                self.records.add(
                    IdempotencyRecord(
                        key=recorded_key,
                        scope=scope,
                        result=result,
                        created_at=now,
                        expires_at=now + self.retention,
                    )
                )
            await self.session.commit()
        except (IntegrityError, ConflictError) as exc:
            # a concurrent request may have recorded this key first
            await self.session.rollback()
            winner = await self.recorded_outcome(keys)
            if winner is None:
                raise
            logger.info(f"Lost race on key {key}; returning recorded outcome ({type(exc).__name__})")
            return IdempotentResult(value=winner, replayed=True)
        except Exception:
            await self.session.rollback()
            raise

        return IdempotentResult(value=result, replayed=False)
