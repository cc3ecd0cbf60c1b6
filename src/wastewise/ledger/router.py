"""Point ledger endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.auth.accounts import normalize_account
from wastewise.auth.dependencies import get_current_account, require_capability
from wastewise.auth.policy import POINTS_ADMIN
from wastewise.database import get_session
from wastewise.db.models import TransactionKind
from wastewise.ledger import service
from wastewise.ledger.schemas import (
    AdjustRequest,
    BalanceResponse,
    LeaderboardResponse,
    LedgerEntryResponse,
    LedgerHistoryResponse,
    RankingResponse,
)

router = APIRouter(prefix="/api/v1/points", tags=["Points"])


@router.get("/balance", response_model=BalanceResponse)
async def get_my_balance(
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Net point balance of the caller."""
    return BalanceResponse(account=account, balance=await service.balance(db, account))


@router.get("/history", response_model=LedgerHistoryResponse)
async def get_my_history(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    kind: TransactionKind | None = Query(None),
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Ledger entries of the caller (paginated, newest first)."""
    entries, total = await service.history(db, account, page=page, per_page=per_page, kind=kind)
    return LedgerHistoryResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        per_page=per_page,
    )


@router.get("/leaderboard", response_model=LeaderboardResponse)
async def get_leaderboard(
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """Accounts ranked by net points."""
    return await service.leaderboard(db, page=page, per_page=per_page)


@router.get("/ranking", response_model=RankingResponse)
async def get_my_ranking(
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Leaderboard position of the caller."""
    return await service.ranking(db, account)


@router.get("/ranking/{address}", response_model=RankingResponse)
async def get_account_ranking(
    address: str,
    db: AsyncSession = Depends(get_session),
):
    """Leaderboard position of any account."""
    return await service.ranking(db, normalize_account(address))


# ── Admin endpoints ──


@router.post("/admin/adjust", response_model=LedgerEntryResponse, status_code=201)
async def adjust_points(
    body: AdjustRequest,
    actor: str = Depends(require_capability(POINTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Credit or debit an account by hand."""
    entry = await service.adjust(
        db, normalize_account(body.account), body.amount, body.reason, actor=actor
    )
    return LedgerEntryResponse.model_validate(entry)


@router.post("/admin/entries/{entry_id}/void", response_model=LedgerEntryResponse)
async def void_entry(
    entry_id: int,
    actor: str = Depends(require_capability(POINTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Soft-invalidate a ledger entry."""
    entry = await service.void(db, entry_id, actor=actor)
    return LedgerEntryResponse.model_validate(entry)
