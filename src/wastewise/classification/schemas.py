"""Pydantic models for classification endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

WasteCategory = Literal["recyclable", "hazardous", "kitchen", "other"]


class ClassificationCreate(BaseModel):
    image_url: str = Field(min_length=1, max_length=2048)
    expected_category: WasteCategory
    user_location: str | None = Field(default=None, max_length=128)
    device_info: str | None = Field(default=None, max_length=256)


class ClassificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account: str
    image_url: str
    expected_category: str
    detected_category: str | None = None
    confidence: float
    is_correct: bool
    score: int
    analysis: str | None = None
    suggestions: list[str] = []
    user_location: str | None = None
    processing_time_ms: int
    created_at: datetime


class ClassificationCreatedResponse(BaseModel):
    classification: ClassificationResponse
    ledger_entry_id: int | None = None
    completed_achievements: list[int] = []


class ClassificationHistoryResponse(BaseModel):
    classifications: list[ClassificationResponse]
    total: int
    page: int
    per_page: int


class CategoryStats(BaseModel):
    total: int
    correct: int
    accuracy: float


class ClassificationStatsResponse(BaseModel):
    account: str
    total_classifications: int
    correct_classifications: int
    accuracy: float
    total_score: int
    average_score: float
    consecutive_days: int
    category_breakdown: dict[str, CategoryStats]
