"""Pydantic models for NFT reward endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PoolItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None = None
    image_url: str | None = None
    rarity: int
    category: str
    required_score: int
    required_classifications: int
    status: str
    reserved_by: str | None = None
    reserved_until: datetime | None = None
    claimed_at: datetime | None = None
    mint_reference: str | None = None
    metadata_uri: str | None = None
    attributes: list[dict[str, Any]] = []
    created_at: datetime


class EligibleItemResponse(BaseModel):
    item: PoolItemResponse
    can_claim: bool
    missing: list[str] = []


class EligibleItemsResponse(BaseModel):
    items: list[EligibleItemResponse]
    total: int


class ReservationResponse(BaseModel):
    item_id: int
    reserved_by: str
    reserved_until: datetime


class ClaimAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    pool_item_id: int
    account: str
    status: str
    requested_at: datetime
    confirmed_at: datetime | None = None
    failed_at: datetime | None = None
    failure_reason: str | None = None
    transfer_reference: str | None = None
    block_reference: int | None = None


class ClaimAttemptsResponse(BaseModel):
    claims: list[ClaimAttemptResponse]
    total: int


class OwnedItemResponse(BaseModel):
    item: PoolItemResponse
    claim_id: int
    claimed_at: datetime | None = None
    transfer_reference: str | None = None


class OwnedItemsResponse(BaseModel):
    items: list[OwnedItemResponse]
    total: int


# --- Administration ---


class PoolItemCreate(BaseModel):
    name: str = Field(min_length=1, max_length=128)
    description: str | None = None
    image_url: str | None = None
    rarity: int = Field(default=1, ge=1, le=5)
    category: str = "general"
    required_score: int = Field(default=0, ge=0)
    required_classifications: int = Field(default=0, ge=0)
    attributes: list[dict[str, Any]] = []


class PoolBatchRequest(BaseModel):
    items: list[PoolItemCreate] = Field(min_length=1, max_length=50)


class PoolBatchFailure(BaseModel):
    index: int
    name: str
    error: str


class PoolBatchResponse(BaseModel):
    created: int
    attempted: int
    items: list[PoolItemResponse]
    failures: list[PoolBatchFailure]


class PoolOverview(BaseModel):
    total: int
    available: int
    reserved: int
    claimed: int
    pending_claims: int
    claim_rate: int


class RarityCount(BaseModel):
    rarity: int
    count: int


class CategoryCount(BaseModel):
    category: str
    count: int


class PoolStatsResponse(BaseModel):
    overview: PoolOverview
    by_rarity: list[RarityCount]
    by_category: list[CategoryCount]
