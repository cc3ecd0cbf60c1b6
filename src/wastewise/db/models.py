"""ORM models for the ledger, classifications, achievements and the NFT pool.

Every timestamp column is a UTC-aware ``UTCDateTime`` and every JSON column
is JSONB on PostgreSQL, so the same models run against the aiosqlite test store.
"""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wastewise.db.base import Base
from wastewise.db.types import BigIntPK, JSONType, UTCDateTime


class TransactionKind(str, enum.Enum):
    CLASSIFICATION = "classification"
    ACHIEVEMENT = "achievement"
    ADJUSTMENT = "adjustment"
    NFT = "nft"


class PoolItemStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    CLAIMED = "CLAIMED"


class ClaimAttemptStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


class ScoreTransaction(Base):
    """Append-only point ledger. Only ``is_valid`` may change after insert."""

    __tablename__ = "score_transactions"
    __table_args__ = (
        Index("idx_score_tx_account", "account", "is_valid"),
        Index("idx_score_tx_reference", "reference_kind", "reference_id"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account: Mapped[str] = mapped_column(String(42), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    reference_kind: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    idempotency_key: Mapped[str | None] = mapped_column(String(256), unique=True, nullable=True)
    extra_data: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Classification history
# ---------------------------------------------------------------------------


class Classification(Base):
    """One graded image submission."""

    __tablename__ = "classifications"
    __table_args__ = (
        Index("idx_classifications_account_created", "account", "created_at"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account: Mapped[str] = mapped_column(String(42), nullable=False)
    image_url: Mapped[str] = mapped_column(Text, nullable=False)
    expected_category: Mapped[str] = mapped_column(String(32), nullable=False)
    detected_category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    suggestions: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    user_location: Mapped[str | None] = mapped_column(String(128), nullable=True)
    device_info: Mapped[str | None] = mapped_column(String(256), nullable=True)
    processing_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


# ---------------------------------------------------------------------------
# Achievements
# ---------------------------------------------------------------------------


class AchievementDefinition(Base):
    """Administrable achievement definition. ``code`` never changes after create."""

    __tablename__ = "achievement_definitions"
    __table_args__ = (
        Index("idx_achievement_defs_category", "category"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    reward_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    icon_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    tier: Mapped[int] = mapped_column(Integer, nullable=False)
    requirement: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    max_claims: Mapped[int | None] = mapped_column(Integer, nullable=True)
    valid_from: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    valid_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class AchievementProgress(Base):
    """Progress/claim row, UNIQUE(account, achievement_id) makes claims single-slot."""

    __tablename__ = "achievement_progress"
    __table_args__ = (
        UniqueConstraint("account", "achievement_id", name="achievement_progress_account_achievement_key"),
        Index("idx_achievement_progress_claimed", "achievement_id", "is_claimed"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    account: Mapped[str] = mapped_column(String(42), nullable=False)
    achievement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("achievement_definitions.id", ondelete="CASCADE"), nullable=False
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_claimed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    achievement: Mapped[AchievementDefinition] = relationship("AchievementDefinition", lazy="joined")


# ---------------------------------------------------------------------------
# NFT pool
# ---------------------------------------------------------------------------


class NftPoolItem(Base):
    """Pre-minted reward item. Row id is the allocation slot."""

    __tablename__ = "nft_pool_items"
    __table_args__ = (
        Index("idx_nft_pool_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    rarity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[str] = mapped_column(String(32), nullable=False, default="general")
    required_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    required_classifications: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PoolItemStatus.AVAILABLE.value)
    reserved_by: Mapped[str | None] = mapped_column(String(42), nullable=True)
    reserved_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    mint_reference: Mapped[str | None] = mapped_column(String(78), nullable=True)
    mint_tx_reference: Mapped[str | None] = mapped_column(String(66), nullable=True)
    metadata_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    attributes: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_by: Mapped[str | None] = mapped_column(String(42), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class NftClaimAttempt(Base):
    """Audit trail of claim attempts. At most one PENDING attempt per pool item."""

    __tablename__ = "nft_claim_attempts"
    __table_args__ = (
        Index("idx_nft_claims_account", "account", "requested_at"),
        Index(
            "uq_nft_claims_one_pending_per_item",
            "pool_item_id",
            unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    pool_item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("nft_pool_items.id", ondelete="CASCADE"), nullable=False
    )
    account: Mapped[str] = mapped_column(String(42), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=ClaimAttemptStatus.PENDING.value)
    requested_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    transfer_reference: Mapped[str | None] = mapped_column(String(66), nullable=True)
    block_reference: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    pool_item: Mapped[NftPoolItem] = relationship("NftPoolItem", lazy="joined")
