"""Achievement catalog administration."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import case, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.achievements.reconciler import get_definition
from wastewise.achievements.requirements import parse_requirements
from wastewise.achievements.schemas import AchievementCreate, AchievementUpdate
from wastewise.db.models import AchievementDefinition
from wastewise.errors import DuplicateCode, ValidationError, WasteWiseError

logger = logging.getLogger(__name__)

CATEGORY_NAMES: dict[str, str] = {
    "milestone": "Milestone",
    "streak": "Streak",
    "accuracy": "Accuracy",
    "social": "Social",
    "seasonal": "Seasonal",
    "special": "Special",
}

TIER_NAMES: dict[int, str] = {
    1: "bronze",
    2: "silver",
    3: "gold",
    4: "platinum",
    5: "diamond",
}

SORT_COLUMNS = {
    "sort_order": AchievementDefinition.sort_order,
    "tier": AchievementDefinition.tier,
    "reward_amount": AchievementDefinition.reward_amount,
    "created_at": AchievementDefinition.created_at,
    "code": AchievementDefinition.code,
}


def _validate_fields(values: dict[str, Any]) -> None:
    if "category" in values and values["category"] not in CATEGORY_NAMES:
        raise ValidationError(f"Unknown achievement category: {values['category']}", field="category")
    if "requirement" in values:
        parse_requirements(values["requirement"])
    valid_from = values.get("valid_from")
    valid_until = values.get("valid_until")
    if valid_from is not None and valid_until is not None and valid_from > valid_until:
        raise ValidationError("valid_from must not be after valid_until")


async def get_by_code(db: AsyncSession, code: str) -> AchievementDefinition | None:
    result = await db.execute(select(AchievementDefinition).where(AchievementDefinition.code == code))
    return result.scalar_one_or_none()


async def create_definition(db: AsyncSession, data: AchievementCreate) -> AchievementDefinition:
    """Create a definition. Raises DuplicateCode if the code is taken."""
    values = data.model_dump()
    _validate_fields(values)

    if await get_by_code(db, data.code) is not None:
        raise DuplicateCode(f"Achievement code {data.code} already exists")

    now = datetime.now(timezone.utc)
    definition = AchievementDefinition(**values, created_at=now, updated_at=now)
    db.add(definition)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateCode(f"Achievement code {data.code} already exists") from None

    await db.refresh(definition)
    logger.info("Achievement created id=%s code=%s", definition.id, definition.code)
    return definition


async def update_definition(db: AsyncSession, achievement_id: int, data: AchievementUpdate) -> AchievementDefinition:
    """Apply a partial update. The code is immutable."""
    definition = await get_definition(db, achievement_id)
    changes = data.model_dump(exclude_unset=True)

    if "code" in changes:
        if changes["code"] != definition.code:
            raise ValidationError("Achievement code is immutable", field="code")
        del changes["code"]

    merged = {
        "valid_from": definition.valid_from,
        "valid_until": definition.valid_until,
        **changes,
    }
    _validate_fields(merged)

    for key, value in changes.items():
        setattr(definition, key, value)
    definition.updated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(definition)
    logger.info("Achievement updated id=%s fields=%s", definition.id, sorted(changes))
    return definition


async def deactivate_definition(db: AsyncSession, achievement_id: int) -> AchievementDefinition:
    """Soft-delete: inactive definitions are neither evaluated nor claimable."""
    definition = await get_definition(db, achievement_id)
    if definition.is_active:
        definition.is_active = False
        definition.updated_at = datetime.now(timezone.utc)
        await db.commit()
        logger.info("Achievement deactivated id=%s code=%s", definition.id, definition.code)
    return definition


async def list_definitions(
    db: AsyncSession,
    category: str | None = None,
    tier: int | None = None,
    is_active: bool | None = True,
    search: str | None = None,
    sort_by: str = "sort_order",
    descending: bool = False,
    page: int = 1,
    per_page: int = 20,
) -> tuple[list[AchievementDefinition], int]:
    """Filtered, sorted, paginated catalog listing."""
    if sort_by not in SORT_COLUMNS:
        raise ValidationError(f"Cannot sort by {sort_by}", field="sort_by")

    filters = []
    if category is not None:
        filters.append(AchievementDefinition.category == category)
    if tier is not None:
        filters.append(AchievementDefinition.tier == tier)
    if is_active is not None:
        filters.append(AchievementDefinition.is_active.is_(is_active))
    if search:
        pattern = f"%{search}%"
        filters.append(
            or_(
                AchievementDefinition.name.ilike(pattern),
                AchievementDefinition.description.ilike(pattern),
                AchievementDefinition.code.ilike(pattern),
            )
        )

    total_result = await db.execute(select(func.count()).select_from(AchievementDefinition).where(*filters))
    total = total_result.scalar_one()

    column = SORT_COLUMNS[sort_by]
    result = await db.execute(
        select(AchievementDefinition)
        .where(*filters)
        .order_by(column.desc() if descending else column, AchievementDefinition.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


@dataclass
class BatchFailure:
    index: int
    code: str
    error: str


@dataclass
class BatchCreateResult:
    attempted: int
    created: list[AchievementDefinition] = field(default_factory=list)
    failures: list[BatchFailure] = field(default_factory=list)


async def batch_create(db: AsyncSession, items: list[AchievementCreate]) -> BatchCreateResult:
    """Create definitions one at a time; failures are logged and skipped."""
    outcome = BatchCreateResult(attempted=len(items))
    for index, item in enumerate(items):
        try:
            outcome.created.append(await create_definition(db, item))
        except WasteWiseError as e:
            logger.warning("Batch achievement create failed index=%s code=%s: %s", index, item.code, e.message)
            outcome.failures.append(BatchFailure(index=index, code=item.code, error=e.message))
    logger.info("Batch achievement create: %s/%s created", len(outcome.created), outcome.attempted)
    return outcome


async def categories_summary(db: AsyncSession) -> list[dict[str, Any]]:
    """Definition counts per category, including empty categories."""
    result = await db.execute(
        select(
            AchievementDefinition.category,
            func.count(),
            func.sum(case((AchievementDefinition.is_active.is_(True), 1), else_=0)),
        ).group_by(AchievementDefinition.category)
    )
    counts = {category: (int(total), int(active or 0)) for category, total, active in result}
    return [
        {
            "category": category,
            "name": name,
            "total": counts.get(category, (0, 0))[0],
            "active": counts.get(category, (0, 0))[1],
        }
        for category, name in CATEGORY_NAMES.items()
    ]
