"""Classification endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.auth.dependencies import get_current_account
from wastewise.classification import service
from wastewise.classification.oracle import ScoringOracle
from wastewise.classification.schemas import (
    ClassificationCreate,
    ClassificationCreatedResponse,
    ClassificationHistoryResponse,
    ClassificationResponse,
    ClassificationStatsResponse,
    WasteCategory,
)
from wastewise.config import get_settings
from wastewise.database import get_session
from wastewise.dependencies import get_oracle, get_redis_dep

router = APIRouter(prefix="/api/v1/classifications", tags=["Classifications"])


@router.post("", response_model=ClassificationCreatedResponse, status_code=201)
async def create_classification(
    body: ClassificationCreate,
    account: str = Depends(get_current_account),
    oracle: ScoringOracle = Depends(get_oracle),
    redis: object = Depends(get_redis_dep),
    db: AsyncSession = Depends(get_session),
):
    """Grade an image, record the result and credit points."""
    outcome = await service.record_classification(
        db,
        oracle,
        account=account,
        image_url=body.image_url,
        expected_category=body.expected_category,
        user_location=body.user_location or get_settings().default_user_location,
        device_info=body.device_info,
        redis=redis,
    )
    return ClassificationCreatedResponse(
        classification=ClassificationResponse.model_validate(outcome.classification),
        ledger_entry_id=outcome.ledger_entry_id,
        completed_achievements=outcome.completed_achievements,
    )


@router.get("", response_model=ClassificationHistoryResponse)
async def list_my_classifications(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    category: WasteCategory | None = Query(None),
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Classification history of the caller (paginated)."""
    items, total = await service.list_classifications(db, account, page=page, per_page=per_page, category=category)
    return ClassificationHistoryResponse(
        classifications=[ClassificationResponse.model_validate(c) for c in items],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/stats", response_model=ClassificationStatsResponse)
async def get_my_stats(
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Totals, accuracy and per-category breakdown for the caller."""
    return ClassificationStatsResponse(**await service.classification_stats(db, account))


@router.get("/{classification_id}", response_model=ClassificationResponse)
async def get_classification(
    classification_id: int,
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """One of the caller's classifications."""
    return ClassificationResponse.model_validate(await service.get_classification(db, account, classification_id))
