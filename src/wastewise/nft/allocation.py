"""NFT allocation engine: a reserve/claim state machine over a finite pool.

Pool item progression: AVAILABLE -> RESERVED -> CLAIMED
A RESERVED item whose ``reserved_until`` has passed counts as AVAILABLE
everywhere (lazy expiry); the sweeper only tidies the rows up.

Claiming is three short transactions around one external call:
1. commit a PENDING attempt (partial unique index: one PENDING per item)
2. call the chain transfer with no transaction open
3. commit CONFIRMED + CLAIMED, or FAILED + AVAILABLE as compensation
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import and_, case, exists, func, not_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.achievements.requirements import AccountStats, MinClassifications, MinScore, Predicate
from wastewise.achievements.stats import build_account_stats
from wastewise.config import get_settings
from wastewise.db.models import ClaimAttemptStatus, NftClaimAttempt, NftPoolItem, PoolItemStatus
from wastewise.errors import (
    ClaimInProgress,
    InvariantViolation,
    ItemNotMinted,
    NotAvailable,
    NotEligible,
    NotFoundError,
    ReservationExpired,
    ReservationMismatch,
    UpstreamError,
)
from wastewise.nft.adapters import ChainAdapter, TransferReceipt
from wastewise.redis_client import publish_event

logger = structlog.get_logger()

ALREADY_CLAIMED_MESSAGE = "already holds or is claiming this item"
_HELD_STATUSES = (ClaimAttemptStatus.PENDING.value, ClaimAttemptStatus.CONFIRMED.value)


def effective_status(item: NftPoolItem, now: datetime) -> PoolItemStatus:
    """Status with lazy expiry applied."""
    status = PoolItemStatus(item.status)
    if status == PoolItemStatus.RESERVED and (item.reserved_until is None or item.reserved_until <= now):
        return PoolItemStatus.AVAILABLE
    return status


def _effectively_available(now: datetime) -> Any:  # noqa: ANN401
    """SQL criterion mirroring ``effective_status(...) == AVAILABLE``."""
    return or_(
        NftPoolItem.status == PoolItemStatus.AVAILABLE.value,
        and_(
            NftPoolItem.status == PoolItemStatus.RESERVED.value,
            or_(NftPoolItem.reserved_until.is_(None), NftPoolItem.reserved_until <= now),
        ),
    )


def _no_pending_attempt() -> Any:  # noqa: ANN401
    return not_(
        exists().where(
            NftClaimAttempt.pool_item_id == NftPoolItem.id,
            NftClaimAttempt.status == ClaimAttemptStatus.PENDING.value,
        )
    )


def item_predicates(item: NftPoolItem) -> list[Predicate]:
    """Thresholds an account must meet to reserve ``item``."""
    predicates: list[Predicate] = []
    if item.required_score > 0:
        predicates.append(MinScore(item.required_score))
    if item.required_classifications > 0:
        predicates.append(MinClassifications(item.required_classifications))
    return predicates


async def _holds_item(db: AsyncSession, account: str, item_id: int) -> bool:
    result = await db.execute(
        select(func.count())
        .select_from(NftClaimAttempt)
        .where(
            NftClaimAttempt.account == account,
            NftClaimAttempt.pool_item_id == item_id,
            NftClaimAttempt.status.in_(_HELD_STATUSES),
        )
    )
    return result.scalar_one() > 0


async def missing_requirements(
    db: AsyncSession, account: str, item: NftPoolItem, stats: AccountStats
) -> list[str]:
    """Eligibility messages for ``item``; empty when the account may reserve it."""
    missing = [msg for msg in (p.check(stats) for p in item_predicates(item)) if msg is not None]
    if await _holds_item(db, account, item.id):
        missing.append(ALREADY_CLAIMED_MESSAGE)
    return missing


async def get_item(db: AsyncSession, item_id: int) -> NftPoolItem:
    item = await db.get(NftPoolItem, item_id, populate_existing=True)
    if item is None:
        raise NotFoundError(f"NFT pool item {item_id} not found")
    return item


# ── Eligibility ──


@dataclass
class EligibleItem:
    item: NftPoolItem
    can_claim: bool
    missing: list[str] = field(default_factory=list)


async def list_eligible(db: AsyncSession, account: str, now: datetime | None = None) -> list[EligibleItem]:
    """Every effectively available active item, annotated for ``account``."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(NftPoolItem)
        .where(NftPoolItem.is_active.is_(True), _effectively_available(now))
        .order_by(NftPoolItem.rarity.desc(), NftPoolItem.required_score, NftPoolItem.id)
        .execution_options(populate_existing=True)
    )
    items = list(result.scalars().all())
    stats = await build_account_stats(db, account, now=now)

    eligible = []
    for item in items:
        missing = await missing_requirements(db, account, item, stats)
        eligible.append(EligibleItem(item=item, can_claim=not missing, missing=missing))
    return eligible


# ── Reserve ──


async def reserve(
    db: AsyncSession,
    account: str,
    item_id: int,
    ttl_minutes: int | None = None,
    now: datetime | None = None,
) -> NftPoolItem:
    """Reserve an item for ``account`` until now + ttl.

    Raises NotFoundError, NotAvailable or NotEligible. Concurrent reservations
    of one item race on a conditional UPDATE; exactly one wins.
    """
    now = now or datetime.now(timezone.utc)
    ttl_minutes = ttl_minutes if ttl_minutes is not None else get_settings().reservation_ttl_minutes

    item = await get_item(db, item_id)
    if not item.is_active or effective_status(item, now) != PoolItemStatus.AVAILABLE:
        raise NotAvailable(f"NFT {item_id} is not available")

    stats = await build_account_stats(db, account, now=now)
    missing = await missing_requirements(db, account, item, stats)
    if missing:
        raise NotEligible(f"Account is not eligible for NFT {item_id}", missing=missing)

    reserved_until = now + timedelta(minutes=ttl_minutes)
    result = await db.execute(
        update(NftPoolItem)
        .where(
            NftPoolItem.id == item_id,
            NftPoolItem.is_active.is_(True),
            _effectively_available(now),
            _no_pending_attempt(),
        )
        .values(
            status=PoolItemStatus.RESERVED.value,
            reserved_by=account,
            reserved_until=reserved_until,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if (result.rowcount or 0) == 0:
        await db.rollback()
        raise NotAvailable(f"NFT {item_id} is not available")

    await db.commit()
    await db.refresh(item)
    logger.info("nft_reserved", account=account, item_id=item_id, reserved_until=reserved_until.isoformat())
    return item


# ── Claim ──


async def claim(
    db: AsyncSession,
    chain: ChainAdapter,
    account: str,
    item_id: int,
    transfer_timeout: float | None = None,
    redis: object = None,
    now: datetime | None = None,
) -> NftClaimAttempt:
    """Transfer a reserved item to ``account``.

    Fails fast, without creating an attempt, with NotFoundError,
    NotAvailable, ReservationMismatch, ReservationExpired or ItemNotMinted.
    A transfer failure or timeout releases the item and re-raises as
    UpstreamError carrying the adapter's reason.
    """
    now = now or datetime.now(timezone.utc)
    transfer_timeout = transfer_timeout if transfer_timeout is not None else get_settings().transfer_timeout_seconds

    item = await get_item(db, item_id)
    if item.status == PoolItemStatus.CLAIMED.value:
        raise NotAvailable(f"NFT {item_id} has already been claimed")
    if item.status != PoolItemStatus.RESERVED.value or item.reserved_by != account:
        raise ReservationMismatch(f"NFT {item_id} is not reserved by this account")
    if item.reserved_until is None or item.reserved_until <= now:
        raise ReservationExpired(f"Reservation of NFT {item_id} has expired")
    if not item.mint_reference:
        raise ItemNotMinted(f"NFT {item_id} has not been minted")

    token_ref = item.mint_reference

    # Phase 1: record intent, provided the reservation still holds.
    held = await db.execute(
        update(NftPoolItem)
        .where(
            NftPoolItem.id == item_id,
            NftPoolItem.status == PoolItemStatus.RESERVED.value,
            NftPoolItem.reserved_by == account,
            NftPoolItem.reserved_until > now,
        )
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if (held.rowcount or 0) == 0:
        await db.rollback()
        raise NotAvailable(f"NFT {item_id} is no longer reserved by this account")

    attempt = NftClaimAttempt(
        pool_item_id=item_id,
        account=account,
        status=ClaimAttemptStatus.PENDING.value,
        requested_at=now,
    )
    db.add(attempt)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ClaimInProgress(f"A claim for NFT {item_id} is already in progress") from None
    attempt_id = attempt.id
    logger.info("nft_claim_pending", account=account, item_id=item_id, attempt_id=attempt_id)

    # Phase 2: external transfer, no transaction held.
    try:
        receipt = await asyncio.wait_for(chain.transfer(account, token_ref), timeout=transfer_timeout)
    except Exception as e:
        reason = str(e) or type(e).__name__
        if isinstance(e, asyncio.TimeoutError):
            reason = f"Transfer timed out after {transfer_timeout}s"
        await _compensate(db, attempt_id, item_id, account, reason)
        if isinstance(e, UpstreamError):
            raise
        raise UpstreamError(reason) from e

    # Phase 3: finalise.
    attempt = await _finalize(db, attempt_id, item_id, account, receipt)
    await publish_event(
        redis,
        "nft_claimed",
        {"account": account, "item_id": item_id, "attempt_id": attempt_id, "tx": receipt.tx_ref},
    )
    return attempt


async def _finalize(
    db: AsyncSession,
    attempt_id: int,
    item_id: int,
    account: str,
    receipt: TransferReceipt,
) -> NftClaimAttempt:
    now = datetime.now(timezone.utc)
    attempt_result = await db.execute(
        update(NftClaimAttempt)
        .where(NftClaimAttempt.id == attempt_id, NftClaimAttempt.status == ClaimAttemptStatus.PENDING.value)
        .values(
            status=ClaimAttemptStatus.CONFIRMED.value,
            confirmed_at=now,
            transfer_reference=receipt.tx_ref,
            block_reference=receipt.block_ref,
        )
        .execution_options(synchronize_session=False)
    )
    item_result = await db.execute(
        update(NftPoolItem)
        .where(NftPoolItem.id == item_id, NftPoolItem.status != PoolItemStatus.CLAIMED.value)
        .values(
            status=PoolItemStatus.CLAIMED.value,
            reserved_by=account,
            reserved_until=None,
            claimed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if (attempt_result.rowcount or 0) == 0 or (item_result.rowcount or 0) == 0:
        await db.rollback()
        logger.error(
            "nft_claim_finalize_conflict",
            account=account,
            item_id=item_id,
            attempt_id=attempt_id,
            tx=receipt.tx_ref,
        )
        raise InvariantViolation(
            f"Transfer of NFT {item_id} confirmed on chain but the claim was already resolved",
            transfer_reference=receipt.tx_ref,
        )

    await db.commit()
    logger.info("nft_claim_confirmed", account=account, item_id=item_id, attempt_id=attempt_id, tx=receipt.tx_ref)
    return await get_attempt(db, attempt_id)


async def _compensate(db: AsyncSession, attempt_id: int, item_id: int, account: str, reason: str) -> None:
    """Mark the attempt FAILED and return the item to the pool, in one commit."""
    now = datetime.now(timezone.utc)
    await db.execute(
        update(NftClaimAttempt)
        .where(NftClaimAttempt.id == attempt_id, NftClaimAttempt.status == ClaimAttemptStatus.PENDING.value)
        .values(status=ClaimAttemptStatus.FAILED.value, failed_at=now, failure_reason=reason)
        .execution_options(synchronize_session=False)
    )
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
    await db.commit()
    logger.warning("nft_transfer_failed", account=account, item_id=item_id, attempt_id=attempt_id, reason=reason)


# ── Queries ──


async def get_attempt(db: AsyncSession, attempt_id: int, account: str | None = None) -> NftClaimAttempt:
    """Fetch a claim attempt; scoped to ``account`` when given."""
    attempt = await db.get(NftClaimAttempt, attempt_id, populate_existing=True)
    if attempt is None or (account is not None and attempt.account != account):
        raise NotFoundError(f"Claim {attempt_id} not found")
    return attempt


async def list_claims(db: AsyncSession, account: str, limit: int = 50) -> list[NftClaimAttempt]:
    """Most recent claim attempts of an account."""
    result = await db.execute(
        select(NftClaimAttempt)
        .where(NftClaimAttempt.account == account)
        .order_by(NftClaimAttempt.requested_at.desc(), NftClaimAttempt.id.desc())
        .limit(limit)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def owned_items(db: AsyncSession, account: str) -> list[NftClaimAttempt]:
    """Confirmed claims (with their pool items) of an account."""
    result = await db.execute(
        select(NftClaimAttempt)
        .where(
            NftClaimAttempt.account == account,
            NftClaimAttempt.status == ClaimAttemptStatus.CONFIRMED.value,
        )
        .order_by(NftClaimAttempt.confirmed_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def pool_stats(db: AsyncSession, now: datetime | None = None) -> dict[str, Any]:
    """Overview counts, claim rate and breakdowns by rarity and category."""
    now = now or datetime.now(timezone.utc)
    overview_result = await db.execute(
        select(
            func.count(),
            func.sum(case((_effectively_available(now), 1), else_=0)),
            func.sum(case((NftPoolItem.status == PoolItemStatus.CLAIMED.value, 1), else_=0)),
        ).select_from(NftPoolItem)
    )
    total, available, claimed = overview_result.one()
    total, available, claimed = int(total), int(available or 0), int(claimed or 0)

    pending_result = await db.execute(
        select(func.count())
        .select_from(NftClaimAttempt)
        .where(NftClaimAttempt.status == ClaimAttemptStatus.PENDING.value)
    )

    rarity_result = await db.execute(
        select(NftPoolItem.rarity, func.count()).group_by(NftPoolItem.rarity).order_by(NftPoolItem.rarity)
    )
    category_result = await db.execute(
        select(NftPoolItem.category, func.count())
        .group_by(NftPoolItem.category)
        .order_by(func.count().desc())
    )

    return {
        "overview": {
            "total": total,
            "available": available,
            "reserved": total - available - claimed,
            "claimed": claimed,
            "pending_claims": pending_result.scalar_one(),
            "claim_rate": round(claimed / total * 100) if total else 0,
        },
        "by_rarity": [{"rarity": rarity, "count": count} for rarity, count in rarity_result],
        "by_category": [{"category": category or "general", "count": count} for category, count in category_result],
    }
