"""Achievement progress reconciler: a state machine over progress rows.

State progression: NEW -> IN_PROGRESS -> COMPLETED -> CLAIMED
NEW means no row exists yet. CLAIMED is terminal and only reachable through
``reward_issuer.claim``. Evaluation only ever moves progress upwards;
``force_set_progress`` is the administrative escape hatch.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, literal, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.achievements.evaluator import Evaluation, evaluate
from wastewise.achievements.requirements import AccountStats, window_hours
from wastewise.achievements.stats import build_account_stats
from wastewise.db.models import AchievementDefinition, AchievementProgress
from wastewise.db.upsert import insert_or_ignore
from wastewise.errors import (
    AlreadyClaimed,
    InvariantViolation,
    NotFoundError,
    StateConflictError,
    ValidationError,
)

logger = logging.getLogger(__name__)


class ProgressState(str, enum.Enum):
    NEW = "new"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CLAIMED = "claimed"


VALID_TRANSITIONS: dict[ProgressState, list[ProgressState]] = {
    ProgressState.NEW: [ProgressState.IN_PROGRESS, ProgressState.COMPLETED],
    ProgressState.IN_PROGRESS: [ProgressState.COMPLETED],
    ProgressState.COMPLETED: [ProgressState.CLAIMED],
    ProgressState.CLAIMED: [],
}


def validate_transition(current: ProgressState, target: ProgressState) -> None:
    """Validate a state transition. Raises StateConflictError if invalid."""
    valid = VALID_TRANSITIONS.get(current, [])
    if target not in valid:
        raise StateConflictError(
            f"Invalid transition: {current.value} -> {target.value}. "
            f"Valid transitions: {[s.value for s in valid]}"
        )


def state_of(row: AchievementProgress | None) -> ProgressState:
    """Derive the state machine position of a progress row."""
    if row is None:
        return ProgressState.NEW
    if row.is_claimed:
        return ProgressState.CLAIMED
    if row.is_completed:
        return ProgressState.COMPLETED
    return ProgressState.IN_PROGRESS


def in_validity_window(definition: AchievementDefinition, now: datetime) -> bool:
    if definition.valid_from is not None and now < definition.valid_from:
        return False
    if definition.valid_until is not None and now > definition.valid_until:
        return False
    return True


@dataclass
class AchievementView:
    """A definition joined with one account's progress and live evaluation."""

    definition: AchievementDefinition
    progress: int = 0
    is_completed: bool = False
    is_claimed: bool = False
    completed_at: datetime | None = None
    claimed_at: datetime | None = None
    missing: list[str] = field(default_factory=list)
    can_claim: bool = False

    @property
    def state(self) -> ProgressState:
        if self.is_claimed:
            return ProgressState.CLAIMED
        if self.is_completed:
            return ProgressState.COMPLETED
        return ProgressState.IN_PROGRESS if self.progress > 0 else ProgressState.NEW


# ── Queries ──


async def get_definition(db: AsyncSession, achievement_id: int) -> AchievementDefinition:
    definition = await db.get(AchievementDefinition, achievement_id)
    if definition is None:
        raise NotFoundError(f"Achievement {achievement_id} not found")
    return definition


async def get_progress_row(db: AsyncSession, account: str, achievement_id: int) -> AchievementProgress | None:
    """Fetch the progress row for (account, achievement), or None if still NEW."""
    result = await db.execute(
        select(AchievementProgress).where(
            AchievementProgress.account == account,
            AchievementProgress.achievement_id == achievement_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def ensure_progress_row(
    db: AsyncSession, account: str, achievement_id: int, now: datetime | None = None
) -> AchievementProgress:
    """Lazily create the progress row. Safe against concurrent creators."""
    now = now or datetime.now(timezone.utc)
    await insert_or_ignore(
        db,
        AchievementProgress,
        {
            "account": account,
            "achievement_id": achievement_id,
            "progress": 0,
            "is_completed": False,
            "is_claimed": False,
            "updated_at": now,
        },
        conflict_columns=["account", "achievement_id"],
    )
    row = await get_progress_row(db, account, achievement_id)
    if row is None:
        raise InvariantViolation(
            f"Progress row for {account}/{achievement_id} vanished after upsert",
            account=account,
            achievement_id=achievement_id,
        )
    return row


async def claimed_counts(db: AsyncSession, achievement_ids: list[int] | None = None) -> dict[int, int]:
    """Global number of claimed rows per achievement."""
    stmt = (
        select(AchievementProgress.achievement_id, func.count())
        .where(AchievementProgress.is_claimed.is_(True))
        .group_by(AchievementProgress.achievement_id)
    )
    if achievement_ids is not None:
        stmt = stmt.where(AchievementProgress.achievement_id.in_(achievement_ids))
    result = await db.execute(stmt)
    return {achievement_id: count for achievement_id, count in result}


async def _active_definitions(db: AsyncSession) -> list[AchievementDefinition]:
    result = await db.execute(
        select(AchievementDefinition)
        .where(AchievementDefinition.is_active.is_(True))
        .order_by(AchievementDefinition.sort_order, AchievementDefinition.id)
    )
    return list(result.scalars().all())


async def _stats_for(
    db: AsyncSession, account: str, definitions: list[AchievementDefinition], now: datetime
) -> AccountStats:
    windows: set[int] = set()
    for definition in definitions:
        windows |= window_hours(definition.requirement)
    return await build_account_stats(db, account, windows=windows, now=now)


# ── Transitions ──


async def _advance(
    db: AsyncSession,
    account: str,
    definition: AchievementDefinition,
    evaluation: Evaluation,
    now: datetime,
) -> bool:
    """Apply one evaluation to the stored row. Returns True if the row just completed."""
    if evaluation.percent <= 0:
        return False

    await ensure_progress_row(db, account, definition.id, now)

    # Monotonic: a lower evaluation never overwrites a higher stored value.
    await db.execute(
        update(AchievementProgress)
        .where(
            AchievementProgress.account == account,
            AchievementProgress.achievement_id == definition.id,
            AchievementProgress.progress < evaluation.percent,
        )
        .values(progress=evaluation.percent, updated_at=now)
    )
    if not evaluation.is_complete:
        return False

    # completed_at is stamped only on the first completion.
    result = await db.execute(
        update(AchievementProgress)
        .where(
            AchievementProgress.account == account,
            AchievementProgress.achievement_id == definition.id,
            AchievementProgress.is_completed.is_(False),
        )
        .values(is_completed=True, completed_at=now, updated_at=now)
    )
    return (result.rowcount or 0) > 0


async def reconcile_account(db: AsyncSession, account: str, now: datetime | None = None) -> list[int]:
    """Re-evaluate every active achievement for an account and persist progress.

    Commits. Returns the ids of achievements that became completed.
    """
    now = now or datetime.now(timezone.utc)
    definitions = await _active_definitions(db)
    if not definitions:
        return []

    stats = await _stats_for(db, account, definitions, now)
    newly_completed: list[int] = []
    for definition in definitions:
        evaluation = evaluate(definition.requirement, stats)
        if await _advance(db, account, definition, evaluation, now):
            newly_completed.append(definition.id)

    await db.commit()
    for achievement_id in newly_completed:
        logger.info("Achievement completed account=%s achievement_id=%s", account, achievement_id)
    return newly_completed


async def reconcile_achievement(
    db: AsyncSession, account: str, definition: AchievementDefinition, now: datetime | None = None
) -> bool:
    """Re-evaluate a single achievement for an account. Commits.

    Returns True if the achievement became completed.
    """
    now = now or datetime.now(timezone.utc)
    stats = await _stats_for(db, account, [definition], now)
    completed = await _advance(db, account, definition, evaluate(definition.requirement, stats), now)
    await db.commit()
    if completed:
        logger.info("Achievement completed account=%s achievement_id=%s", account, definition.id)
    return completed


async def list_account_achievements(
    db: AsyncSession,
    account: str,
    now: datetime | None = None,
    reconcile: bool = True,
) -> list[AchievementView]:
    """All active achievements with the account's progress, missing list and can_claim."""
    now = now or datetime.now(timezone.utc)
    if reconcile:
        await reconcile_account(db, account, now)

    definitions = await _active_definitions(db)
    stats = await _stats_for(db, account, definitions, now)

    rows_result = await db.execute(
        select(AchievementProgress)
        .where(AchievementProgress.account == account)
        .execution_options(populate_existing=True)
    )
    rows = {row.achievement_id: row for row in rows_result.scalars().unique()}
    counts = await claimed_counts(db, [d.id for d in definitions])

    return [
        _build_view(definition, rows.get(definition.id), evaluate(definition.requirement, stats), counts, now)
        for definition in definitions
    ]


async def get_account_achievement(
    db: AsyncSession,
    account: str,
    achievement_id: int,
    now: datetime | None = None,
    reconcile: bool = True,
) -> AchievementView:
    """Single achievement view for an account (inactive definitions included).

    Active definitions are reconciled first, so a completion earned through
    any ledger path is persisted before the view is built.
    """
    now = now or datetime.now(timezone.utc)
    definition = await get_definition(db, achievement_id)
    if reconcile and definition.is_active:
        await reconcile_achievement(db, account, definition, now)
    stats = await _stats_for(db, account, [definition], now)
    row = await get_progress_row(db, account, achievement_id)
    counts = await claimed_counts(db, [achievement_id])
    return _build_view(definition, row, evaluate(definition.requirement, stats), counts, now)


def _build_view(
    definition: AchievementDefinition,
    row: AchievementProgress | None,
    evaluation: Evaluation,
    counts: dict[int, int],
    now: datetime,
) -> AchievementView:
    state = state_of(row)
    progress = row.progress if row is not None else 0
    # Inactive definitions are never reconciled; completion still follows the evaluation.
    is_completed = state in (ProgressState.COMPLETED, ProgressState.CLAIMED) or evaluation.is_complete
    cap_open = definition.max_claims is None or counts.get(definition.id, 0) < definition.max_claims
    return AchievementView(
        definition=definition,
        progress=100 if is_completed else max(progress, evaluation.percent),
        is_completed=is_completed,
        is_claimed=state == ProgressState.CLAIMED,
        completed_at=row.completed_at if row is not None else None,
        claimed_at=row.claimed_at if row is not None else None,
        missing=[] if is_completed else evaluation.missing,
        can_claim=(
            state == ProgressState.COMPLETED
            and definition.is_active
            and in_validity_window(definition, now)
            and cap_open
        ),
    )


# ── Administrative path ──


async def force_set_progress(
    db: AsyncSession,
    account: str,
    achievement_id: int,
    progress: int,
    force_complete: bool = False,
    actor: str | None = None,
) -> AchievementProgress:
    """Write progress directly, bypassing evaluation and monotonicity.

    Claimed rows are terminal and rejected with AlreadyClaimed.
    """
    if not 0 <= progress <= 100:
        raise ValidationError("Progress must be between 0 and 100")

    now = datetime.now(timezone.utc)
    await get_definition(db, achievement_id)
    row = await ensure_progress_row(db, account, achievement_id, now)
    if row.is_claimed:
        raise AlreadyClaimed(f"Achievement {achievement_id} already claimed by {account}")

    completed = progress >= 100 or force_complete
    values: dict = {"progress": progress, "is_completed": completed, "updated_at": now}
    if completed:
        values["completed_at"] = func.coalesce(
            AchievementProgress.completed_at, literal(now, AchievementProgress.completed_at.type)
        )

    # A claim may commit after the read above; the write only lands on unclaimed rows.
    result = await db.execute(
        update(AchievementProgress)
        .where(
            AchievementProgress.account == account,
            AchievementProgress.achievement_id == achievement_id,
            AchievementProgress.is_claimed.is_(False),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if (result.rowcount or 0) == 0:
        await db.rollback()
        raise AlreadyClaimed(f"Achievement {achievement_id} already claimed by {account}")
    await db.commit()

    logger.info(
        "Achievement progress force-set account=%s achievement_id=%s progress=%s completed=%s actor=%s",
        account, achievement_id, progress, completed, actor,
    )
    return await get_progress_row(db, account, achievement_id)
