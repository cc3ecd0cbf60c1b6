"""Integration tests for achievement progress, completion and claiming."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from wastewise.achievements import catalog, reconciler, reward_issuer
from wastewise.achievements.reconciler import ProgressState, get_progress_row
from wastewise.achievements.schemas import AchievementCreate, AchievementUpdate
from wastewise.achievements.seed import ACHIEVEMENT_SEED_DATA, seed_achievements
from wastewise.achievements.summary import account_summary
from wastewise.db.models import AchievementDefinition, ScoreTransaction, TransactionKind
from wastewise.errors import (
    AchievementInactive,
    AlreadyClaimed,
    ClaimCapReached,
    DuplicateCode,
    InvariantViolation,
    NotCompleted,
    NotFoundError,
    OutsideValidityWindow,
    ValidationError,
)
from wastewise.ledger import service as ledger

pytestmark = pytest.mark.asyncio

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20


class TestReconcile:
    async def test_partial_progress_creates_row(self, db, make_achievement, add_classification):
        definition = await make_achievement({"min_classifications": 1, "min_score": 100})
        await add_classification(score=10)

        completed = await reconciler.reconcile_account(db, ALICE)

        row = await get_progress_row(db, ALICE, definition.id)
        assert completed == []
        assert row.progress == 50
        assert row.is_completed is False

    async def test_no_progress_creates_no_row(self, db, make_achievement):
        definition = await make_achievement({"min_classifications": 3})
        await reconciler.reconcile_account(db, ALICE)
        assert await get_progress_row(db, ALICE, definition.id) is None

    async def test_progress_never_decreases(self, db, make_achievement):
        definition = await make_achievement({"min_score": 50, "min_accuracy": 0})
        entry = await ledger.adjust(db, ALICE, 60, "Bonus")
        await reconciler.reconcile_account(db, ALICE)
        assert (await get_progress_row(db, ALICE, definition.id)).is_completed is True

        # Points drop below the threshold: the completion sticks.
        await ledger.void(db, entry.id)
        await reconciler.reconcile_account(db, ALICE)
        row = await get_progress_row(db, ALICE, definition.id)
        assert row.progress == 100
        assert row.is_completed is True

    async def test_completed_at_stamped_once(self, db, make_achievement, add_classification):
        definition = await make_achievement({"min_classifications": 1})
        await add_classification()
        first = datetime.now(timezone.utc) - timedelta(hours=2)
        await reconciler.reconcile_account(db, ALICE, now=first)
        await add_classification()
        await reconciler.reconcile_account(db, ALICE)

        row = await get_progress_row(db, ALICE, definition.id)
        assert row.completed_at == first

    async def test_missing_row_after_upsert_is_invariant_violation(self, db, make_achievement, monkeypatch):
        definition = await make_achievement()

        async def no_row(session, account, achievement_id):
            return None

        monkeypatch.setattr(reconciler, "get_progress_row", no_row)

        with pytest.raises(InvariantViolation) as exc_info:
            await reconciler.ensure_progress_row(db, ALICE, definition.id)
        assert exc_info.value.status_code == 500
        assert exc_info.value.extra == {"account": ALICE, "achievement_id": definition.id}

    async def test_inactive_definitions_not_evaluated(self, db, make_achievement, add_classification):
        definition = await make_achievement({"min_classifications": 1}, is_active=False)
        await add_classification()
        assert await reconciler.reconcile_account(db, ALICE) == []
        assert await get_progress_row(db, ALICE, definition.id) is None

    async def test_time_window_requirement(self, db, make_achievement, add_classification):
        definition = await make_achievement({"min_classifications": 3, "time_window": 1})
        base = datetime.now(timezone.utc) - timedelta(hours=5)
        for minutes in (0, 90, 200):
            await add_classification(created_at=base + timedelta(minutes=minutes))

        view = await reconciler.get_account_achievement(db, ALICE, definition.id)
        assert view.is_completed is False
        assert "needs 3 correct classifications within 1h, has 1" in view.missing

        for minutes in (210, 220):
            await add_classification(created_at=base + timedelta(minutes=minutes))
        assert await reconciler.reconcile_account(db, ALICE) == [definition.id]

    async def test_list_view_reports_missing_and_state(self, db, make_achievement, add_classification):
        done = await make_achievement({"min_classifications": 1})
        pending = await make_achievement({"specific_categories": ["recyclable", "hazardous"]})
        await add_classification(category="recyclable")

        views = {v.definition.id: v for v in await reconciler.list_account_achievements(db, ALICE)}

        assert views[done.id].state == ProgressState.COMPLETED
        assert views[done.id].can_claim is True
        assert views[pending.id].state == ProgressState.NEW
        assert views[pending.id].missing == ["needs correct classifications in: hazardous"]
        assert views[pending.id].can_claim is False


class TestClaim:
    async def _completed(self, db, make_achievement, add_classification, **overrides):
        definition = await make_achievement({"min_classifications": 1}, reward_amount=75, **overrides)
        await add_classification(score=10)
        await reconciler.reconcile_account(db, ALICE)
        return definition

    async def test_claim_credits_reward_once(self, db, make_achievement, add_classification):
        definition = await self._completed(db, make_achievement, add_classification)

        result = await reward_issuer.claim(db, ALICE, definition.id)

        assert result.reward_amount == 75
        assert await ledger.balance(db, ALICE) == 85
        entry = await ledger.get_entry(db, result.ledger_entry_id)
        assert entry.kind == TransactionKind.ACHIEVEMENT.value
        assert entry.idempotency_key == reward_issuer.reward_idempotency_key(definition.id, ALICE)
        row = await get_progress_row(db, ALICE, definition.id)
        assert row.is_claimed is True
        assert row.claimed_at is not None

    async def test_double_claim_rejected(self, db, make_achievement, add_classification):
        definition = await self._completed(db, make_achievement, add_classification)
        await reward_issuer.claim(db, ALICE, definition.id)

        with pytest.raises(AlreadyClaimed):
            await reward_issuer.claim(db, ALICE, definition.id)

        rewards = await db.execute(
            select(func.count()).select_from(ScoreTransaction).where(
                ScoreTransaction.kind == TransactionKind.ACHIEVEMENT.value
            )
        )
        assert rewards.scalar_one() == 1

    async def test_adjustment_completes_without_classification(self, db, make_achievement):
        definition = await make_achievement({"min_score": 100}, reward_amount=20)
        definition_id = definition.id
        await ledger.adjust(db, ALICE, 100, "Bonus")

        view = await reconciler.get_account_achievement(db, ALICE, definition_id)
        assert view.progress == 100
        assert view.is_completed is True
        assert view.can_claim is True

        result = await reward_issuer.claim(db, ALICE, definition_id)
        assert result.reward_amount == 20
        assert await ledger.balance(db, ALICE) == 120

    async def test_claim_reconciles_before_guards(self, db, make_achievement):
        definition = await make_achievement({"min_score": 50})
        definition_id = definition.id
        await ledger.adjust(db, ALICE, 60, "Bonus")

        await reward_issuer.claim(db, ALICE, definition_id)

        row = await get_progress_row(db, ALICE, definition_id)
        assert row.is_completed is True
        assert row.is_claimed is True

    async def test_inactive_view_follows_evaluation(self, db, make_achievement):
        definition = await make_achievement({"min_score": 10}, is_active=False)
        definition_id = definition.id
        await ledger.adjust(db, ALICE, 10, "Bonus")

        view = await reconciler.get_account_achievement(db, ALICE, definition_id)

        assert view.progress == 100
        assert view.is_completed is True
        assert view.can_claim is False
        assert await get_progress_row(db, ALICE, definition_id) is None

    async def test_claim_before_completion_rejected(self, db, make_achievement):
        definition = await make_achievement({"min_classifications": 5})
        with pytest.raises(NotCompleted):
            await reward_issuer.claim(db, ALICE, definition.id)
        assert await ledger.balance(db, ALICE) == 0

    async def test_claim_unknown_achievement(self, db):
        with pytest.raises(NotFoundError):
            await reward_issuer.claim(db, ALICE, 12345)

    async def test_inactive_achievement_not_claimable(self, db, make_achievement, add_classification):
        definition = await self._completed(db, make_achievement, add_classification)
        await catalog.deactivate_definition(db, definition.id)
        with pytest.raises(AchievementInactive):
            await reward_issuer.claim(db, ALICE, definition.id)

    async def test_claim_outside_validity_window(self, db, make_achievement, add_classification):
        now = datetime.now(timezone.utc)
        definition = await self._completed(
            db, make_achievement, add_classification,
            valid_from=now - timedelta(days=10), valid_until=now + timedelta(days=1),
        )
        with pytest.raises(OutsideValidityWindow):
            await reward_issuer.claim(db, ALICE, definition.id, now=now + timedelta(days=2))

    async def test_claim_cap(self, db, make_achievement, add_classification):
        definition = await make_achievement({"min_classifications": 1}, max_claims=1)
        definition_id = definition.id
        await add_classification(account=ALICE)
        await add_classification(account=BOB)
        await reconciler.reconcile_account(db, ALICE)
        await reconciler.reconcile_account(db, BOB)

        await reward_issuer.claim(db, ALICE, definition_id)
        with pytest.raises(ClaimCapReached):
            await reward_issuer.claim(db, BOB, definition_id)

        view = await reconciler.get_account_achievement(db, BOB, definition_id)
        assert view.is_completed is True
        assert view.can_claim is False


class TestForceSetProgress:
    async def test_force_complete(self, db, make_achievement):
        definition = await make_achievement({"min_classifications": 50})
        row = await reconciler.force_set_progress(db, ALICE, definition.id, 40, force_complete=True, actor=BOB)
        assert row.progress == 40
        assert row.is_completed is True
        assert row.completed_at is not None

        result = await reward_issuer.claim(db, ALICE, definition.id)
        assert result.reward_amount == definition.reward_amount

    async def test_force_can_lower_progress(self, db, make_achievement, add_classification):
        definition = await make_achievement({"min_classifications": 1, "min_score": 500})
        await add_classification()
        await reconciler.reconcile_account(db, ALICE)

        row = await reconciler.force_set_progress(db, ALICE, definition.id, 10)
        assert row.progress == 10

    async def test_claimed_row_rejected(self, db, make_achievement, add_classification):
        definition = await make_achievement({"min_classifications": 1})
        await add_classification()
        await reconciler.reconcile_account(db, ALICE)
        await reward_issuer.claim(db, ALICE, definition.id)

        with pytest.raises(AlreadyClaimed):
            await reconciler.force_set_progress(db, ALICE, definition.id, 0)

    async def test_claim_committed_after_read_wins(
        self, db, session_factory, make_achievement, add_classification, monkeypatch
    ):
        definition = await make_achievement({"min_classifications": 1})
        definition_id = definition.id
        await add_classification()
        await reconciler.reconcile_account(db, ALICE)
        ensure_row = reconciler.ensure_progress_row

        async def ensure_then_claim(session, account, achievement_id, now=None):
            monkeypatch.setattr(reconciler, "ensure_progress_row", ensure_row)
            row = await ensure_row(session, account, achievement_id, now)
            await session.commit()
            async with session_factory() as other:
                await reward_issuer.claim(other, account, achievement_id)
            return row

        monkeypatch.setattr(reconciler, "ensure_progress_row", ensure_then_claim)

        with pytest.raises(AlreadyClaimed):
            await reconciler.force_set_progress(db, ALICE, definition_id, 10)

        row = await get_progress_row(db, ALICE, definition_id)
        assert row.is_claimed is True
        assert row.is_completed is True
        assert row.progress == 100

    async def test_out_of_range(self, db, make_achievement):
        definition = await make_achievement()
        with pytest.raises(ValidationError):
            await reconciler.force_set_progress(db, ALICE, definition.id, 101)


class TestCatalog:
    def _create(self, **overrides) -> AchievementCreate:
        data = {
            "code": "plastic_hunter",
            "name": "Plastic Hunter",
            "description": "Classify 10 recyclables",
            "reward_amount": 40,
            "category": "milestone",
            "tier": 2,
            "requirement": {"min_classifications": 10},
        }
        data.update(overrides)
        return AchievementCreate(**data)

    async def test_create_and_duplicate(self, db):
        definition = await catalog.create_definition(db, self._create())
        assert definition.id is not None
        with pytest.raises(DuplicateCode):
            await catalog.create_definition(db, self._create(name="Other"))

    async def test_invalid_requirement_rejected(self, db):
        with pytest.raises(ValidationError):
            await catalog.create_definition(db, self._create(requirement={"min_karma": 1}))

    async def test_unknown_category_rejected(self, db):
        with pytest.raises(ValidationError):
            await catalog.create_definition(db, self._create(category="bogus"))

    async def test_inverted_window_rejected(self, db):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            await catalog.create_definition(db, self._create(valid_from=now, valid_until=now - timedelta(days=1)))

    async def test_code_is_immutable(self, db):
        definition = await catalog.create_definition(db, self._create())
        with pytest.raises(ValidationError, match="immutable"):
            await catalog.update_definition(db, definition.id, AchievementUpdate(code="renamed"))

        updated = await catalog.update_definition(db, definition.id, AchievementUpdate(reward_amount=90))
        assert updated.reward_amount == 90
        assert updated.code == "plastic_hunter"

    async def test_list_filters_search_and_sort(self, db):
        await catalog.create_definition(db, self._create(code="a_one", name="Alpha", tier=1, reward_amount=10))
        await catalog.create_definition(db, self._create(code="b_two", name="Beta", tier=3, reward_amount=30))
        inactive = await catalog.create_definition(db, self._create(code="c_three", name="Gamma", tier=3))
        await catalog.deactivate_definition(db, inactive.id)

        items, total = await catalog.list_definitions(db, tier=3)
        assert total == 1
        assert items[0].code == "b_two"

        items, _ = await catalog.list_definitions(db, search="alph")
        assert [d.code for d in items] == ["a_one"]

        items, _ = await catalog.list_definitions(db, sort_by="reward_amount", descending=True)
        assert [d.code for d in items] == ["b_two", "a_one"]

        with pytest.raises(ValidationError):
            await catalog.list_definitions(db, sort_by="name; drop table")

    async def test_batch_create_skips_failures(self, db):
        outcome = await catalog.batch_create(
            db,
            [self._create(code="one"), self._create(code="one"), self._create(code="two", category="bogus")],
        )
        assert outcome.attempted == 3
        assert [d.code for d in outcome.created] == ["one"]
        assert [f.index for f in outcome.failures] == [1, 2]

    async def test_categories_summary(self, db):
        await catalog.create_definition(db, self._create(code="one"))
        summary = {row["category"]: row for row in await catalog.categories_summary(db)}
        assert summary["milestone"]["total"] == 1
        assert summary["milestone"]["active"] == 1
        assert summary["streak"]["total"] == 0

    async def test_seed_is_idempotent(self, db):
        assert await seed_achievements(db) == len(ACHIEVEMENT_SEED_DATA)
        assert await seed_achievements(db) == 0
        total = (await db.execute(select(func.count()).select_from(AchievementDefinition))).scalar_one()
        assert total == len(ACHIEVEMENT_SEED_DATA)


class TestSummary:
    async def test_account_summary(self, db, make_achievement, add_classification):
        claimed = await make_achievement({"min_classifications": 1}, reward_amount=30, tier=1)
        await make_achievement({"min_classifications": 1}, reward_amount=20, tier=2)
        await make_achievement({"min_classifications": 10}, tier=3)
        await add_classification()
        await reconciler.reconcile_account(db, ALICE)
        await reward_issuer.claim(db, ALICE, claimed.id)

        summary = await account_summary(db, ALICE)

        assert summary["total"] == 3
        assert summary["completed"] == 2
        assert summary["claimed"] == 1
        assert summary["claimable"] == 1
        assert summary["unclaimed_rewards"] == 20
        assert summary["total_earned"] == 30
        assert summary["by_tier"]["bronze"] == {"total": 1, "completed": 1, "claimed": 1}
