"""Integration tests for the NFT pool sweeps and the worker job."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from wastewise.db.models import ClaimAttemptStatus, NftClaimAttempt, PoolItemStatus
from wastewise.nft import allocation
from wastewise.nft.sweeper import (
    STALE_FAILURE_REASON,
    fail_stale_pending_attempts,
    release_expired_reservations,
)
from wastewise.workers import sweeper as sweeper_worker

pytestmark = pytest.mark.asyncio

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20


def _ago(**delta) -> datetime:
    return datetime.now(timezone.utc) - timedelta(**delta)


def _ahead(**delta) -> datetime:
    return datetime.now(timezone.utc) + timedelta(**delta)


@pytest.fixture
def add_attempt(db):
    async def _add(item_id: int, account: str = ALICE, requested_at: datetime | None = None) -> int:
        attempt = NftClaimAttempt(
            pool_item_id=item_id,
            account=account,
            status=ClaimAttemptStatus.PENDING.value,
            requested_at=requested_at or datetime.now(timezone.utc),
        )
        db.add(attempt)
        await db.commit()
        return attempt.id

    return _add


class TestStalePending:
    async def test_stale_attempt_fails_and_item_returns(self, db, make_pool_item, add_attempt):
        item = await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=ALICE, reserved_until=_ahead(minutes=5)
        )
        item_id = item.id
        attempt_id = await add_attempt(item_id, requested_at=_ago(hours=1))

        assert await fail_stale_pending_attempts(db, timeout_seconds=900) == 1

        attempt = await allocation.get_attempt(db, attempt_id)
        assert attempt.status == ClaimAttemptStatus.FAILED.value
        assert attempt.failure_reason == STALE_FAILURE_REASON
        item = await allocation.get_item(db, item_id)
        assert item.status == PoolItemStatus.AVAILABLE.value
        assert item.reserved_by is None

    async def test_fresh_attempt_is_left_alone(self, db, make_pool_item, add_attempt):
        item = await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=ALICE, reserved_until=_ahead(minutes=5)
        )
        attempt_id = await add_attempt(item.id, requested_at=_ago(seconds=30))

        assert await fail_stale_pending_attempts(db, timeout_seconds=900) == 0
        assert (await allocation.get_attempt(db, attempt_id)).status == ClaimAttemptStatus.PENDING.value

    async def test_other_accounts_reservation_is_kept(self, db, make_pool_item, add_attempt):
        item = await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=BOB, reserved_until=_ahead(minutes=20)
        )
        item_id = item.id
        await add_attempt(item_id, account=ALICE, requested_at=_ago(hours=2))

        assert await fail_stale_pending_attempts(db, timeout_seconds=900) == 1

        item = await allocation.get_item(db, item_id)
        assert item.status == PoolItemStatus.RESERVED.value
        assert item.reserved_by == BOB

    async def test_second_pass_is_a_no_op(self, db, make_pool_item, add_attempt):
        item = await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=ALICE, reserved_until=_ago(minutes=5)
        )
        await add_attempt(item.id, requested_at=_ago(hours=1))

        assert await fail_stale_pending_attempts(db, timeout_seconds=900) == 1
        assert await fail_stale_pending_attempts(db, timeout_seconds=900) == 0


class TestExpiredReservations:
    async def test_expired_rows_are_reset(self, db, make_pool_item):
        expired = await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=ALICE, reserved_until=_ago(minutes=1)
        )
        live = await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=BOB, reserved_until=_ahead(minutes=10)
        )
        expired_id, live_id = expired.id, live.id

        assert await release_expired_reservations(db) == 1

        expired = await allocation.get_item(db, expired_id)
        assert expired.status == PoolItemStatus.AVAILABLE.value
        assert expired.reserved_by is None
        assert expired.reserved_until is None
        assert (await allocation.get_item(db, live_id)).reserved_by == BOB

    async def test_items_with_pending_claims_are_skipped(self, db, make_pool_item, add_attempt):
        item = await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=ALICE, reserved_until=_ago(minutes=1)
        )
        item_id = item.id
        await add_attempt(item_id)

        assert await release_expired_reservations(db) == 0
        assert (await allocation.get_item(db, item_id)).status == PoolItemStatus.RESERVED.value

    async def test_claimed_items_are_untouched(self, db, make_pool_item):
        await make_pool_item(status=PoolItemStatus.CLAIMED.value, reserved_by=ALICE)
        assert await release_expired_reservations(db) == 0


class TestSweepJob:
    async def test_job_runs_both_sweeps(self, db, session_factory, make_pool_item, add_attempt, monkeypatch):
        monkeypatch.setattr(sweeper_worker, "get_session_factory", lambda: session_factory)
        stuck = await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=ALICE, reserved_until=_ago(minutes=1)
        )
        await make_pool_item(
            status=PoolItemStatus.RESERVED.value, reserved_by=BOB, reserved_until=_ago(minutes=1)
        )
        await add_attempt(stuck.id, requested_at=_ago(hours=1))

        result = await sweeper_worker.sweep_nft_pool({})

        assert result == {"failed": 1, "released": 1}

    async def test_cron_minutes_follow_interval(self, monkeypatch):
        monkeypatch.setenv("WASTEWISE_SWEEP_INTERVAL_MINUTES", "15")
        sweeper_worker.get_settings.cache_clear()
        assert sweeper_worker._sweep_minutes() == {0, 15, 30, 45}
