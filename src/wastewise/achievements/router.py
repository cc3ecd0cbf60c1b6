"""Achievement endpoints: catalog, per-account progress, claiming and administration."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.achievements import catalog, reconciler, reward_issuer
from wastewise.achievements.reconciler import AchievementView
from wastewise.achievements.schemas import (
    AccountAchievementResponse,
    AccountAchievementsResponse,
    AccountStatsResponse,
    AchievementCreate,
    AchievementDefinitionResponse,
    AchievementListResponse,
    AchievementUpdate,
    BatchCreateRequest,
    BatchCreateResponse,
    BatchFailure,
    CategoriesResponse,
    CategorySummary,
    ClaimResponse,
    ForceProgressRequest,
    ProgressRowResponse,
    SeedResponse,
)
from wastewise.achievements.seed import seed_achievements
from wastewise.achievements.summary import account_summary
from wastewise.auth.accounts import normalize_account
from wastewise.auth.dependencies import get_current_account, require_capability
from wastewise.auth.policy import ACHIEVEMENTS_ADMIN
from wastewise.database import get_session
from wastewise.db.models import AchievementDefinition
from wastewise.dependencies import get_redis_dep

router = APIRouter(prefix="/api/v1/achievements", tags=["Achievements"])


def _view_response(view: AchievementView) -> AccountAchievementResponse:
    return AccountAchievementResponse(
        achievement=AchievementDefinitionResponse.model_validate(view.definition),
        state=view.state.value,
        progress=view.progress,
        is_completed=view.is_completed,
        is_claimed=view.is_claimed,
        completed_at=view.completed_at,
        claimed_at=view.claimed_at,
        can_claim=view.can_claim,
        missing=view.missing,
    )


# ── Public catalog ──


@router.get("", response_model=AchievementListResponse)
async def list_achievements(
    category: str | None = Query(None),
    tier: int | None = Query(None, ge=1, le=5),
    search: str | None = Query(None, max_length=100),
    sort_by: str = Query("sort_order"),
    order: Literal["asc", "desc"] = Query("asc"),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """Active achievement definitions (filterable, sortable, paginated)."""
    items, total = await catalog.list_definitions(
        db,
        category=category,
        tier=tier,
        search=search,
        sort_by=sort_by,
        descending=order == "desc",
        page=page,
        per_page=per_page,
    )
    return AchievementListResponse(
        achievements=[AchievementDefinitionResponse.model_validate(d) for d in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/categories", response_model=CategoriesResponse)
async def list_categories(db: AsyncSession = Depends(get_session)):
    """Definition counts per achievement category."""
    summary = await catalog.categories_summary(db)
    return CategoriesResponse(categories=[CategorySummary(**row) for row in summary])


# ── Caller's progress ──


@router.get("/me", response_model=AccountAchievementsResponse)
async def my_achievements(
    status: Literal["all", "in_progress", "completed", "claimable", "claimed"] = Query("all"),
    category: str | None = Query(None),
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Every active achievement with the caller's progress, reconciled first."""
    views = await reconciler.list_account_achievements(db, account)
    if category is not None:
        views = [v for v in views if v.definition.category == category]
    if status == "in_progress":
        views = [v for v in views if not v.is_completed]
    elif status == "completed":
        views = [v for v in views if v.is_completed]
    elif status == "claimable":
        views = [v for v in views if v.can_claim]
    elif status == "claimed":
        views = [v for v in views if v.is_claimed]
    return AccountAchievementsResponse(achievements=[_view_response(v) for v in views], total=len(views))


@router.get("/me/stats", response_model=AccountStatsResponse)
async def my_achievement_stats(
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Completion and reward totals for the caller."""
    return AccountStatsResponse(**await account_summary(db, account))


@router.get("/me/claimable", response_model=AccountAchievementsResponse)
async def my_claimable_achievements(
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Completed, unclaimed achievements the caller can claim right now."""
    views = [v for v in await reconciler.list_account_achievements(db, account) if v.can_claim]
    return AccountAchievementsResponse(achievements=[_view_response(v) for v in views], total=len(views))


@router.get("/{achievement_id}", response_model=AccountAchievementResponse)
async def get_achievement(
    achievement_id: int,
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """One achievement with the caller's progress and missing requirements."""
    return _view_response(await reconciler.get_account_achievement(db, account, achievement_id))


@router.post("/{achievement_id}/claim", response_model=ClaimResponse)
async def claim_achievement(
    achievement_id: int,
    account: str = Depends(get_current_account),
    redis: object = Depends(get_redis_dep),
    db: AsyncSession = Depends(get_session),
):
    """Claim a completed achievement and credit its reward."""
    result = await reward_issuer.claim(db, account, achievement_id, redis=redis)
    return ClaimResponse(
        achievement_id=result.achievement_id,
        reward_amount=result.reward_amount,
        ledger_entry_id=result.ledger_entry_id,
        claimed_at=result.claimed_at,
    )


# ── Administration ──


@router.post("/admin", response_model=AchievementDefinitionResponse, status_code=201)
async def create_achievement(
    body: AchievementCreate,
    _admin: str = Depends(require_capability(ACHIEVEMENTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Create an achievement definition."""
    return AchievementDefinitionResponse.model_validate(await catalog.create_definition(db, body))


@router.post("/admin/batch", response_model=BatchCreateResponse, status_code=201)
async def batch_create_achievements(
    body: BatchCreateRequest,
    _admin: str = Depends(require_capability(ACHIEVEMENTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Create several definitions; individual failures are reported, not fatal."""
    outcome = await catalog.batch_create(db, body.achievements)
    return BatchCreateResponse(
        created=len(outcome.created),
        attempted=outcome.attempted,
        achievements=[AchievementDefinitionResponse.model_validate(d) for d in outcome.created],
        failures=[BatchFailure(index=f.index, code=f.code, error=f.error) for f in outcome.failures],
    )


@router.post("/admin/seed", response_model=SeedResponse)
async def seed_catalog(
    _admin: str = Depends(require_capability(ACHIEVEMENTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Insert any missing stock achievements."""
    created = await seed_achievements(db)
    total = (await db.execute(select(func.count()).select_from(AchievementDefinition))).scalar_one()
    return SeedResponse(created=created, total=total)


@router.patch("/admin/{achievement_id}", response_model=AchievementDefinitionResponse)
async def update_achievement(
    achievement_id: int,
    body: AchievementUpdate,
    _admin: str = Depends(require_capability(ACHIEVEMENTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Update mutable fields of a definition."""
    return AchievementDefinitionResponse.model_validate(await catalog.update_definition(db, achievement_id, body))


@router.delete("/admin/{achievement_id}", response_model=AchievementDefinitionResponse)
async def deactivate_achievement(
    achievement_id: int,
    _admin: str = Depends(require_capability(ACHIEVEMENTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Soft-delete a definition. Progress and ledger history are kept."""
    return AchievementDefinitionResponse.model_validate(await catalog.deactivate_definition(db, achievement_id))


@router.put("/admin/{achievement_id}/progress", response_model=ProgressRowResponse)
async def force_progress(
    achievement_id: int,
    body: ForceProgressRequest,
    admin: str = Depends(require_capability(ACHIEVEMENTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Overwrite an account's progress, bypassing evaluation."""
    row = await reconciler.force_set_progress(
        db,
        normalize_account(body.account),
        achievement_id,
        body.progress,
        force_complete=body.force_complete,
        actor=admin,
    )
    return ProgressRowResponse.model_validate(row)
