"""Integration tests for recording classifications."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from wastewise.achievements.reconciler import get_progress_row
from wastewise.classification import service
from wastewise.classification.oracle import OracleVerdict
from wastewise.db.models import Classification, ScoreTransaction
from wastewise.errors import NotFoundError, UpstreamError, ValidationError
from wastewise.ledger import service as ledger

pytestmark = pytest.mark.asyncio

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20


def _wrong_verdict() -> OracleVerdict:
    return OracleVerdict(detected_category="other", confidence=0.8, is_match=False, score=0)


class TestRecordClassification:
    async def test_correct_classification_credits_points(self, db, oracle):
        outcome = await service.record_classification(
            db, oracle, ALICE, "https://img.example/bottle.jpg", "recyclable", "China"
        )

        assert outcome.classification.id is not None
        assert outcome.classification.is_correct is True
        assert outcome.classification.score == 10
        assert outcome.ledger_entry_id is not None
        assert await ledger.balance(db, ALICE) == 10
        assert oracle.calls == [("https://img.example/bottle.jpg", "recyclable", "China")]

    async def test_wrong_classification_records_without_credit(self, db, oracle):
        oracle.queue(_wrong_verdict())
        outcome = await service.record_classification(
            db, oracle, ALICE, "https://img.example/battery.jpg", "kitchen", "China"
        )

        assert outcome.classification.is_correct is False
        assert outcome.ledger_entry_id is None
        assert await ledger.balance(db, ALICE) == 0

    async def test_oracle_failure_leaves_no_trace(self, db, oracle):
        oracle.queue(UpstreamError("Scoring oracle timed out"))
        with pytest.raises(UpstreamError):
            await service.record_classification(db, oracle, ALICE, "https://img.example/x.jpg", "other", "China")

        count = (await db.execute(select(func.count()).select_from(Classification))).scalar_one()
        entries = (await db.execute(select(func.count()).select_from(ScoreTransaction))).scalar_one()
        assert count == 0
        assert entries == 0

    async def test_unknown_category_rejected_before_oracle(self, db, oracle):
        with pytest.raises(ValidationError):
            await service.record_classification(db, oracle, ALICE, "https://img.example/x.jpg", "plastic", "China")
        assert oracle.calls == []

    async def test_blank_image_rejected(self, db, oracle):
        with pytest.raises(ValidationError):
            await service.record_classification(db, oracle, ALICE, "  ", "other", "China")

    async def test_completes_achievements(self, db, oracle, make_achievement):
        first = await make_achievement({"min_classifications": 1})
        later = await make_achievement({"min_classifications": 5})

        outcome = await service.record_classification(db, oracle, ALICE, "https://img.example/a.jpg", "recyclable", "China")

        assert outcome.completed_achievements == [first.id]
        row = await get_progress_row(db, ALICE, later.id)
        assert row is None or row.is_completed is False

    async def test_second_classification_does_not_recomplete(self, db, oracle, make_achievement):
        await make_achievement({"min_classifications": 1})
        await service.record_classification(db, oracle, ALICE, "https://img.example/a.jpg", "recyclable", "China")
        outcome = await service.record_classification(db, oracle, ALICE, "https://img.example/b.jpg", "recyclable", "China")
        assert outcome.completed_achievements == []


class TestQueries:
    async def test_get_is_scoped_to_owner(self, db, add_classification):
        classification = await add_classification(account=ALICE)
        assert (await service.get_classification(db, ALICE, classification.id)).id == classification.id
        with pytest.raises(NotFoundError):
            await service.get_classification(db, BOB, classification.id)

    async def test_list_filters_and_paginates(self, db, add_classification):
        base = datetime.now(timezone.utc) - timedelta(hours=1)
        for i in range(3):
            await add_classification(category="recyclable", created_at=base + timedelta(minutes=i))
        await add_classification(category="hazardous", created_at=base + timedelta(minutes=10))

        items, total = await service.list_classifications(db, ALICE, page=1, per_page=2)
        assert total == 4
        assert items[0].expected_category == "hazardous"
        assert len(items) == 2

        items, total = await service.list_classifications(db, ALICE, category="recyclable")
        assert total == 3

    async def test_stats(self, db, add_classification):
        await add_classification(category="recyclable", score=20)
        await add_classification(category="recyclable", correct=False)
        await add_classification(category="kitchen", score=10)

        stats = await service.classification_stats(db, ALICE)

        assert stats["total_classifications"] == 3
        assert stats["correct_classifications"] == 2
        assert stats["accuracy"] == pytest.approx(66.67)
        assert stats["total_score"] == 30
        assert stats["average_score"] == 10.0
        assert stats["consecutive_days"] == 1
        assert stats["category_breakdown"]["recyclable"] == {"total": 2, "correct": 1, "accuracy": 50.0}
        assert stats["category_breakdown"]["hazardous"]["total"] == 0
