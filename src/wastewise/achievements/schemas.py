"""Pydantic models for achievement endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# --- Definitions ---


class AchievementCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64, pattern=r"^[a-z0-9_]+$")
    name: str = Field(min_length=1, max_length=128)
    description: str
    reward_amount: int = Field(ge=0)
    icon_url: str | None = None
    category: str
    tier: int = Field(ge=1, le=5)
    requirement: dict[str, Any] = {}
    is_active: bool = True
    max_claims: int | None = Field(default=None, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    sort_order: int = 0


class AchievementUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    code: str | None = None
    name: str | None = Field(default=None, min_length=1, max_length=128)
    description: str | None = None
    reward_amount: int | None = Field(default=None, ge=0)
    icon_url: str | None = None
    category: str | None = None
    tier: int | None = Field(default=None, ge=1, le=5)
    requirement: dict[str, Any] | None = None
    is_active: bool | None = None
    max_claims: int | None = Field(default=None, ge=1)
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    sort_order: int | None = None


class AchievementDefinitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    description: str
    reward_amount: int
    icon_url: str | None = None
    category: str
    tier: int
    requirement: dict[str, Any]
    is_active: bool
    max_claims: int | None = None
    valid_from: datetime | None = None
    valid_until: datetime | None = None
    sort_order: int
    created_at: datetime
    updated_at: datetime


class AchievementListResponse(BaseModel):
    achievements: list[AchievementDefinitionResponse]
    total: int
    page: int
    per_page: int


class CategorySummary(BaseModel):
    category: str
    name: str
    total: int
    active: int


class CategoriesResponse(BaseModel):
    categories: list[CategorySummary]


class BatchCreateRequest(BaseModel):
    achievements: list[AchievementCreate] = Field(min_length=1, max_length=100)


class BatchFailure(BaseModel):
    index: int
    code: str
    error: str


class BatchCreateResponse(BaseModel):
    created: int
    attempted: int
    achievements: list[AchievementDefinitionResponse]
    failures: list[BatchFailure]


class SeedResponse(BaseModel):
    created: int
    total: int


# --- Account progress ---


class AccountAchievementResponse(BaseModel):
    achievement: AchievementDefinitionResponse
    state: str
    progress: int
    is_completed: bool
    is_claimed: bool
    completed_at: datetime | None = None
    claimed_at: datetime | None = None
    can_claim: bool
    missing: list[str] = []


class AccountAchievementsResponse(BaseModel):
    achievements: list[AccountAchievementResponse]
    total: int


class GroupStats(BaseModel):
    total: int
    completed: int
    claimed: int


class AccountStatsResponse(BaseModel):
    account: str
    total: int
    completed: int
    claimed: int
    claimable: int
    completion_rate: float
    unclaimed_rewards: int
    total_earned: int
    average_progress: float
    by_category: dict[str, GroupStats]
    by_tier: dict[str, GroupStats]


class ClaimResponse(BaseModel):
    achievement_id: int
    reward_amount: int
    ledger_entry_id: int
    claimed_at: datetime


class ForceProgressRequest(BaseModel):
    account: str
    progress: int = Field(ge=0, le=100)
    force_complete: bool = False


class ProgressRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    account: str
    achievement_id: int
    progress: int
    is_completed: bool
    is_claimed: bool
    completed_at: datetime | None = None
    claimed_at: datetime | None = None
