"""Periodic clean-up of the NFT pool.

Both sweeps are single conditional UPDATE batches: safe to run
concurrently, idempotent, and resumable after a crash at any point.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.auth.accounts import format_account
from wastewise.config import get_settings
from wastewise.db.models import ClaimAttemptStatus, NftClaimAttempt, NftPoolItem, PoolItemStatus

logger = logging.getLogger(__name__)

STALE_FAILURE_REASON = "Claim timed out without confirmation"


async def fail_stale_pending_attempts(
    db: AsyncSession,
    timeout_seconds: int | None = None,
    now: datetime | None = None,
) -> int:
    """Resolve PENDING attempts older than the timeout as FAILED.

    The item is released only while it is still reserved by the attempt's
    account, so a fresh reservation by someone else is never clobbered.
    Returns the number of attempts failed.
    """
    now = now or datetime.now(timezone.utc)
    timeout_seconds = timeout_seconds if timeout_seconds is not None else get_settings().pending_claim_timeout_seconds
    cutoff = now - timedelta(seconds=timeout_seconds)

    result = await db.execute(
        select(NftClaimAttempt.id, NftClaimAttempt.pool_item_id, NftClaimAttempt.account).where(
            NftClaimAttempt.status == ClaimAttemptStatus.PENDING.value,
            NftClaimAttempt.requested_at < cutoff,
        )
    )
    stale = result.all()

    failed = 0
    for attempt_id, item_id, account in stale:
        updated = await db.execute(
            update(NftClaimAttempt)
            .where(NftClaimAttempt.id == attempt_id, NftClaimAttempt.status == ClaimAttemptStatus.PENDING.value)
            .values(status=ClaimAttemptStatus.FAILED.value, failed_at=now, failure_reason=STALE_FAILURE_REASON)
            .execution_options(synchronize_session=False)
        )
        if not updated.rowcount:
            continue
        await db.execute(
            update(NftPoolItem)
            .where(
                NftPoolItem.id == item_id,
                NftPoolItem.status == PoolItemStatus.RESERVED.value,
                NftPoolItem.reserved_by == account,
            )
            .values(status=PoolItemStatus.AVAILABLE.value, reserved_by=None, reserved_until=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        # Commit per attempt so a crash mid-sweep loses nothing already resolved.
        await db.commit()
        failed += 1
        logger.warning(
            "Stale claim attempt failed attempt_id=%s item_id=%s account=%s",
            attempt_id,
            item_id,
            format_account(account),
        )

    return failed


async def release_expired_reservations(db: AsyncSession, now: datetime | None = None) -> int:
    """Physically reset RESERVED rows whose reservation has elapsed.

    Items with a PENDING attempt are left to ``fail_stale_pending_attempts``.
    """
    now = now or datetime.now(timezone.utc)
    pending_items = select(NftClaimAttempt.pool_item_id).where(
        NftClaimAttempt.status == ClaimAttemptStatus.PENDING.value
    )
    result = await db.execute(
        update(NftPoolItem)
        .where(
            NftPoolItem.status == PoolItemStatus.RESERVED.value,
            NftPoolItem.reserved_until <= now,
            NftPoolItem.id.not_in(pending_items),
        )
        .values(status=PoolItemStatus.AVAILABLE.value, reserved_by=None, reserved_until=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    released = result.rowcount or 0
    if released:
        logger.info("Released %d expired NFT reservations", released)
    return released
