"""Pydantic models for ledger endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account: str
    amount: int
    kind: str
    reference_kind: str | None = None
    reference_id: str | None = None
    description: str | None = None
    is_valid: bool
    created_at: datetime


class BalanceResponse(BaseModel):
    account: str
    balance: int


class LedgerHistoryResponse(BaseModel):
    entries: list[LedgerEntryResponse]
    total: int
    page: int
    per_page: int


class AdjustRequest(BaseModel):
    account: str
    amount: int
    reason: str = Field(min_length=1, max_length=256)


class LeaderboardEntryResponse(BaseModel):
    rank: int
    account: str
    score: int
    last_updated: datetime


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntryResponse]
    total: int
    page: int
    per_page: int


class RankingResponse(BaseModel):
    account: str
    score: int
    rank: int | None = None
    total: int
    percentile: float
