"""Reward issuer: exactly-once achievement payouts.

A claim first reconciles the achievement for the account. It then re-checks
every guard against persisted state, flips the progress row to claimed with a
compare-and-set UPDATE, and appends the ledger credit in the same
transaction. The ledger ``idempotency_key`` is a second line of
defence: even if two claims slipped past the row update, only one credit
could ever commit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog
from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from wastewise.achievements.reconciler import (
    ProgressState,
    get_progress_row,
    in_validity_window,
    reconcile_achievement,
    state_of,
    validate_transition,
)
from wastewise.db.models import AchievementDefinition, AchievementProgress, TransactionKind
from wastewise.errors import (
    AchievementInactive,
    AlreadyClaimed,
    ClaimCapReached,
    NotCompleted,
    NotFoundError,
    OutsideValidityWindow,
)
from wastewise.ledger import service as ledger
from wastewise.redis_client import publish_event

logger = structlog.get_logger()


@dataclass(frozen=True)
class ClaimResult:
    achievement_id: int
    reward_amount: int
    ledger_entry_id: int
    claimed_at: datetime


def reward_idempotency_key(achievement_id: int, account: str) -> str:
    return f"achievement:{achievement_id}:{account}"


def _claimed_count(achievement_id: int) -> Select:
    """Global number of claimed rows for an achievement (aliased so it never correlates)."""
    claimed = aliased(AchievementProgress)
    return (
        select(func.count())
        .select_from(claimed)
        .where(claimed.achievement_id == achievement_id, claimed.is_claimed.is_(True))
    )


async def _check_guards(
    db: AsyncSession,
    account: str,
    definition: AchievementDefinition,
    now: datetime,
) -> None:
    if not definition.is_active:
        raise AchievementInactive(f"Achievement {definition.code} is not active")
    if not in_validity_window(definition, now):
        raise OutsideValidityWindow(f"Achievement {definition.code} is outside its validity window")

    state = state_of(await get_progress_row(db, account, definition.id))
    if state == ProgressState.CLAIMED:
        raise AlreadyClaimed(f"Achievement {definition.code} already claimed")
    if state != ProgressState.COMPLETED:
        raise NotCompleted(f"Achievement {definition.code} is not completed")
    validate_transition(state, ProgressState.CLAIMED)

    if definition.max_claims is not None:
        claimed = await db.execute(_claimed_count(definition.id))
        if claimed.scalar_one() >= definition.max_claims:
            raise ClaimCapReached(f"Achievement {definition.code} reached its claim limit of {definition.max_claims}")


async def claim(
    db: AsyncSession,
    account: str,
    achievement_id: int,
    redis: object = None,
    now: datetime | None = None,
) -> ClaimResult:
    """Claim a completed achievement's reward.

    Raises NotFoundError, AchievementInactive, OutsideValidityWindow,
    NotCompleted, AlreadyClaimed or ClaimCapReached. Both the row update and
    the ledger credit commit together or not at all.
    """
    now = now or datetime.now(timezone.utc)

    definition = await db.get(AchievementDefinition, achievement_id)
    if definition is None:
        raise NotFoundError(f"Achievement {achievement_id} not found")
    # Points may have arrived through paths that never reconcile (adjustments).
    if definition.is_active:
        await reconcile_achievement(db, account, definition, now)

    # Row lock on the definition serialises claimers so the cap count holds.
    definition = await db.get(AchievementDefinition, achievement_id, with_for_update=True)
    if definition is None:
        await db.rollback()
        raise NotFoundError(f"Achievement {achievement_id} not found")

    try:
        await _check_guards(db, account, definition, now)
    except Exception:
        await db.rollback()
        raise

    # Rollbacks expire the instance; keep plain copies for error messages.
    code, name = definition.code, definition.name
    reward_amount, max_claims = definition.reward_amount, definition.max_claims

    stmt = (
        update(AchievementProgress)
        .where(
            AchievementProgress.account == account,
            AchievementProgress.achievement_id == achievement_id,
            AchievementProgress.is_completed.is_(True),
            AchievementProgress.is_claimed.is_(False),
        )
        .values(is_claimed=True, claimed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if max_claims is not None:
        # The cap is re-checked inside the UPDATE, where writers are serialised.
        stmt = stmt.where(_claimed_count(achievement_id).scalar_subquery() < max_claims)
    result = await db.execute(stmt)
    if (result.rowcount or 0) == 0:
        cap_reached = False
        if max_claims is not None:
            cap_reached = (await db.execute(_claimed_count(achievement_id))).scalar_one() >= max_claims
        await db.rollback()
        if cap_reached:
            raise ClaimCapReached(f"Achievement {code} reached its claim limit of {max_claims}")
        raise AlreadyClaimed(f"Achievement {code} already claimed")

    try:
        entry = await ledger.append(
            db,
            account=account,
            amount=reward_amount,
            kind=TransactionKind.ACHIEVEMENT,
            reference_kind="achievement",
            reference_id=achievement_id,
            description=f'Achievement reward: "{name}"',
            idempotency_key=reward_idempotency_key(achievement_id, account),
            metadata={"code": code, "tier": definition.tier, "category": definition.category},
        )
    except IntegrityError:
        await db.rollback()
        raise AlreadyClaimed(f"Achievement {code} already claimed") from None

    entry_id = entry.id
    await db.commit()

    logger.info(
        "achievement_claimed",
        account=account,
        achievement_id=achievement_id,
        code=code,
        reward=reward_amount,
        ledger_entry_id=entry_id,
    )
    await publish_event(
        redis,
        "achievement_claimed",
        {"account": account, "achievement_id": achievement_id, "code": code, "reward_amount": reward_amount},
    )
    return ClaimResult(
        achievement_id=achievement_id,
        reward_amount=reward_amount,
        ledger_entry_id=entry_id,
        claimed_at=now,
    )
