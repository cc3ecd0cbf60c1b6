"""Classification recording: oracle grading, persistence, ledger credit, reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.achievements.reconciler import reconcile_account
from wastewise.classification import history as history_queries
from wastewise.classification.history import WASTE_CATEGORIES
from wastewise.classification.oracle import ScoringOracle
from wastewise.db.models import Classification, TransactionKind
from wastewise.errors import NotFoundError, ValidationError
from wastewise.ledger import service as ledger
from wastewise.redis_client import publish_event

logger = structlog.get_logger()


@dataclass
class ClassificationOutcome:
    classification: Classification
    ledger_entry_id: int | None = None
    completed_achievements: list[int] = field(default_factory=list)


async def record_classification(
    db: AsyncSession,
    oracle: ScoringOracle,
    account: str,
    image_url: str,
    expected_category: str,
    user_location: str,
    device_info: str | None = None,
    redis: object = None,
) -> ClassificationOutcome:
    """Grade an image, store the result and credit points.

    The oracle is called before anything is written, so an UpstreamError
    leaves no trace. The classification and its ledger credit commit
    together; achievement reconciliation runs afterwards in its own commit.
    """
    if expected_category not in WASTE_CATEGORIES:
        raise ValidationError(f"Unknown waste category: {expected_category}", field="expected_category")
    if not image_url or not image_url.strip():
        raise ValidationError("Image URL is required", field="image_url")

    verdict = await oracle.score(image_url, expected_category, user_location)

    classification = Classification(
        account=account,
        image_url=image_url,
        expected_category=expected_category,
        detected_category=verdict.detected_category,
        confidence=verdict.confidence,
        is_correct=verdict.is_match,
        score=verdict.score,
        analysis=verdict.analysis_text,
        suggestions=verdict.suggestions,
        user_location=user_location,
        device_info=device_info,
        processing_time_ms=verdict.processing_time_ms,
        created_at=datetime.now(timezone.utc),
    )
    db.add(classification)
    await db.flush()

    entry_id = None
    if verdict.score > 0:
        entry = await ledger.append(
            db,
            account=account,
            amount=verdict.score,
            kind=TransactionKind.CLASSIFICATION,
            reference_kind="classification",
            reference_id=classification.id,
            description=f"Classification reward ({'correct' if verdict.is_match else 'attempt'})",
        )
        entry_id = entry.id
    await db.commit()

    logger.info(
        "classification_recorded",
        account=account,
        classification_id=classification.id,
        category=expected_category,
        correct=verdict.is_match,
        score=verdict.score,
    )

    completed = await reconcile_account(db, account)
    for achievement_id in completed:
        await publish_event(redis, "achievement_completed", {"account": account, "achievement_id": achievement_id})

    return ClassificationOutcome(
        classification=classification,
        ledger_entry_id=entry_id,
        completed_achievements=completed,
    )


async def get_classification(db: AsyncSession, account: str, classification_id: int) -> Classification:
    classification = await db.get(Classification, classification_id)
    if classification is None or classification.account != account:
        raise NotFoundError(f"Classification {classification_id} not found")
    return classification


async def list_classifications(
    db: AsyncSession,
    account: str,
    page: int = 1,
    per_page: int = 10,
    category: str | None = None,
) -> tuple[list[Classification], int]:
    """Paged classification history, newest first."""
    filters = [Classification.account == account]
    if category is not None:
        filters.append(Classification.expected_category == category)

    total_result = await db.execute(select(func.count()).select_from(Classification).where(*filters))
    total = total_result.scalar_one()

    result = await db.execute(
        select(Classification)
        .where(*filters)
        .order_by(Classification.created_at.desc(), Classification.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    return list(result.scalars().all()), total


async def classification_stats(db: AsyncSession, account: str) -> dict[str, Any]:
    """Totals, accuracy, scoring and the per-category breakdown for an account."""
    total = await history_queries.count(db, account)
    correct = await history_queries.count(db, account, correct_only=True)
    score_result = await db.execute(
        select(func.coalesce(func.sum(Classification.score), 0)).where(Classification.account == account)
    )
    total_score = int(score_result.scalar_one())

    return {
        "account": account,
        "total_classifications": total,
        "correct_classifications": correct,
        "accuracy": round(correct / total * 100, 2) if total else 0.0,
        "total_score": total_score,
        "average_score": round(total_score / total, 2) if total else 0.0,
        "consecutive_days": await history_queries.consecutive_days(db, account),
        "category_breakdown": await history_queries.category_breakdown(db, account),
    }
