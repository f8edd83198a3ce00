"""Tests for the idempotency guard and the retention purge."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from coursepay.exceptions import ConflictError, ValidationError
from coursepay.jobs.idempotency_purge import purge_expired_idempotency_records
from coursepay.models import IdempotencyRecord
from coursepay.services.idempotency_service import IdempotencyGuard


class TestCheckOrRecord:
    async def test_first_call_computes_and_records(self, session, clock):
        guard = IdempotencyGuard(session, clock=clock, retention_days=30)
        compute = AsyncMock(return_value={"order_id": "ord-1"})

        result = await guard.check_or_record("order:cart:c1", compute, scope="order_creation")

        assert result.value == {"order_id": "ord-1"}
        assert result.replayed is False
        compute.assert_awaited_once()

        record = await guard.lookup("order:cart:c1")
        assert record.scope == "order_creation"
        assert record.created_at == clock.now
        assert record.expires_at == clock.now + timedelta(days=30)

    async def test_replay_skips_compute(self, session, clock):
        guard = IdempotencyGuard(session, clock=clock)
        await guard.check_or_record("k", AsyncMock(return_value={"n": 1}), scope="test")

        compute = AsyncMock(return_value={"n": 2})
        result = await guard.check_or_record("k", compute, scope="test")

        assert result.value == {"n": 1}
        assert result.replayed is True
        compute.assert_not_awaited()

    async def test_replay_returns_a_detached_copy(self, session_factory, clock):
        async with session_factory() as session:
            guard = IdempotencyGuard(session, clock=clock)
            await guard.check_or_record("k", AsyncMock(return_value={"order_id": "ord-1"}), scope="test")

            first = await guard.check_or_record("k", AsyncMock(), scope="test")
            second = await guard.check_or_record("k", AsyncMock(), scope="test")

        assert first.value == second.value == {"order_id": "ord-1"}

    async def test_outcome_is_recorded_under_aliases(self, session, clock):
        guard = IdempotencyGuard(session, clock=clock)
        await guard.check_or_record(
            "order:client:abc", AsyncMock(return_value={"order_id": "ord-1"}), scope="test",
            aliases=["order:cart:c1"],
        )

        compute = AsyncMock()
        result = await guard.check_or_record(
            "order:client:xyz", compute, scope="test", aliases=["order:cart:c1"]
        )

        assert result.value == {"order_id": "ord-1"}
        assert result.replayed is True
        compute.assert_not_awaited()
        assert (await guard.lookup("order:cart:c1")).result == {"order_id": "ord-1"}

    async def test_failed_compute_records_nothing(self, session, clock):
        guard = IdempotencyGuard(session, clock=clock)
        failing = AsyncMock(side_effect=ValidationError("Cart is empty"))

        with pytest.raises(ValidationError):
            await guard.check_or_record("k", failing, scope="test")
        assert await guard.lookup("k") is None

        result = await guard.check_or_record("k", AsyncMock(return_value={"ok": True}), scope="test")
        assert result.replayed is False

    async def test_conflict_without_a_winner_propagates(self, session, clock):
        guard = IdempotencyGuard(session, clock=clock)

        with pytest.raises(ConflictError):
            await guard.check_or_record("k", AsyncMock(side_effect=ConflictError("lost")), scope="test")

    async def test_conflict_with_a_winner_returns_winner(self, session_factory, clock):
        async def lose_to_concurrent_winner():
            # another request records the same key while this one is computing
            async with session_factory() as other:
                await IdempotencyGuard(other, clock=clock).check_or_record(
                    "k", AsyncMock(return_value={"order_id": "winner"}), scope="test"
                )
            raise ConflictError("cart already consumed")

        async with session_factory() as session:
            result = await IdempotencyGuard(session, clock=clock).check_or_record(
                "k", lose_to_concurrent_winner, scope="test"
            )

        assert result.value == {"order_id": "winner"}
        assert result.replayed is True


class TestPurge:
    async def test_purges_only_expired_records(self, session_factory, clock):
        async with session_factory() as session:
            session.add(IdempotencyRecord(key="old", scope="test", result={}, created_at=clock.now,
                                          expires_at=clock.now - timedelta(days=1)))
            session.add(IdempotencyRecord(key="fresh", scope="test", result={}, created_at=clock.now,
                                          expires_at=clock.now + timedelta(days=1)))
            await session.commit()

        purged = await purge_expired_idempotency_records(session_factory, now=clock.now)

        assert purged == 1
        async with session_factory() as session:
            assert await session.get(IdempotencyRecord, "old") is None
            assert await session.get(IdempotencyRecord, "fresh") is not None
