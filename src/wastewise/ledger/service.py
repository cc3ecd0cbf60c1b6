"""Point ledger: append-only signed deltas per account.

Balances are always derived from ``sum(amount) where is_valid``; there is no
denormalised total to drift out of sync.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.auth.accounts import format_account
from wastewise.db.models import ScoreTransaction, TransactionKind
from wastewise.errors import NotFoundError, ValidationError, VoidNotAllowed

logger = logging.getLogger(__name__)


async def append(
    db: AsyncSession,
    account: str,
    amount: int,
    kind: TransactionKind,
    reference_kind: str | None = None,
    reference_id: str | int | None = None,
    description: str | None = None,
    idempotency_key: str | None = None,
    metadata: dict | None = None,
) -> ScoreTransaction:
    """Stage a ledger entry and flush it so the id is assigned.

    The caller owns the transaction. A duplicate ``idempotency_key`` surfaces
    as ``IntegrityError`` on flush.
    """
    entry = ScoreTransaction(
        account=account,
        amount=amount,
        kind=kind.value,
        reference_kind=reference_kind,
        reference_id=str(reference_id) if reference_id is not None else None,
        description=description,
        is_valid=True,
        idempotency_key=idempotency_key,
        extra_data=metadata or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    await db.flush()
    return entry


async def sum_valid(db: AsyncSession, account: str, kind: TransactionKind | None = None) -> int:
    """Sum of valid entries for an account, optionally restricted to one kind."""
    stmt = select(func.coalesce(func.sum(ScoreTransaction.amount), 0)).where(
        ScoreTransaction.account == account,
        ScoreTransaction.is_valid.is_(True),
    )
    if kind is not None:
        stmt = stmt.where(ScoreTransaction.kind == kind.value)
    result = await db.execute(stmt)
    return int(result.scalar_one())


async def balance(db: AsyncSession, account: str) -> int:
    """Net point balance for an account."""
    return await sum_valid(db, account)


async def history(
    db: AsyncSession,
    account: str,
    page: int = 1,
    per_page: int = 20,
    kind: TransactionKind | None = None,
) -> tuple[list[ScoreTransaction], int]:
    """Paged ledger entries, newest first. Voided entries are included."""
    filters = [ScoreTransaction.account == account]
    if kind is not None:
        filters.append(ScoreTransaction.kind == kind.value)

    total_result = await db.execute(
        select(func.count()).select_from(ScoreTransaction).where(*filters)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(ScoreTransaction)
        .where(*filters)
        .order_by(ScoreTransaction.created_at.desc(), ScoreTransaction.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def get_entry(db: AsyncSession, entry_id: int) -> ScoreTransaction:
    entry = await db.get(ScoreTransaction, entry_id)
    if entry is None:
        raise NotFoundError(f"Ledger entry {entry_id} not found")
    return entry


async def adjust(
    db: AsyncSession,
    account: str,
    amount: int,
    reason: str,
    actor: str | None = None,
) -> ScoreTransaction:
    """Administrative credit or debit, committed immediately."""
    if amount == 0:
        raise ValidationError("Adjustment amount must be non-zero")
    if not reason or not reason.strip():
        raise ValidationError("Adjustment reason is required")

    entry = await append(
        db,
        account=account,
        amount=amount,
        kind=TransactionKind.ADJUSTMENT,
        reference_kind="admin",
        reference_id=actor,
        description=reason.strip(),
        metadata={"actor": actor} if actor else None,
    )
    await db.commit()
    logger.info("Ledger adjustment id=%s account=%s amount=%s actor=%s", entry.id, format_account(account), amount, actor)
    return entry


async def void(db: AsyncSession, entry_id: int, actor: str | None = None) -> ScoreTransaction:
    """Soft-invalidate an entry. Idempotent for already-voided entries.

    Achievement entries cannot be voided: each one is paired with a claimed
    progress row, and the claim itself is irreversible.
    """
    entry = await get_entry(db, entry_id)
    if entry.kind == TransactionKind.ACHIEVEMENT.value:
        raise VoidNotAllowed(f"Achievement reward entry {entry_id} cannot be voided")
    if not entry.is_valid:
        return entry

    entry.is_valid = False
    await db.commit()
    logger.info("Ledger entry voided id=%s account=%s actor=%s", entry.id, format_account(entry.account), actor)
    return entry


# ── Leaderboard ──


def _account_totals():
    """Per-account sum of valid entries, as a subquery."""
    return (
        select(
            ScoreTransaction.account.label("account"),
            func.sum(ScoreTransaction.amount).label("score"),
            func.max(ScoreTransaction.created_at).label("last_updated"),
        )
        .where(ScoreTransaction.is_valid.is_(True))
        .group_by(ScoreTransaction.account)
        .subquery()
    )


async def leaderboard(db: AsyncSession, page: int = 1, per_page: int = 10) -> dict:
    """Accounts ranked by net points, highest first. Ties fall back to account order."""
    totals = _account_totals()
    start = (page - 1) * per_page

    total_result = await db.execute(select(func.count()).select_from(totals))
    total = total_result.scalar_one()

    result = await db.execute(
        select(totals.c.account, totals.c.score, totals.c.last_updated)
        .order_by(totals.c.score.desc(), totals.c.account)
        .offset(start)
        .limit(per_page)
    )
    entries = [
        {
            "rank": start + offset + 1,
            "account": row.account,
            "score": int(row.score),
            "last_updated": row.last_updated,
        }
        for offset, row in enumerate(result)
    ]
    return {"entries": entries, "total": total, "page": page, "per_page": per_page}


async def ranking(db: AsyncSession, account: str) -> dict:
    """Leaderboard position of one account. Accounts without a positive score are unranked."""
    score = await balance(db, account)
    totals = _account_totals()
    total_result = await db.execute(select(func.count()).select_from(totals))
    total = total_result.scalar_one()

    if score <= 0:
        return {"account": account, "score": 0, "rank": None, "total": total, "percentile": 0}

    ahead_result = await db.execute(
        select(func.count())
        .select_from(totals)
        .where(
            or_(
                totals.c.score > score,
                and_(totals.c.score == score, totals.c.account < account),
            )
        )
    )
    rank = ahead_result.scalar_one() + 1
    return {
        "account": account,
        "score": score,
        "rank": rank,
        "total": total,
        "percentile": round(100 - (rank / total * 100), 2) if total > 0 else 0,
    }
