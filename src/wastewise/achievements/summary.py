"""Per-account achievement statistics."""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.achievements.catalog import TIER_NAMES
from wastewise.achievements.reconciler import AchievementView, list_account_achievements
from wastewise.db.models import TransactionKind
from wastewise.ledger import service as ledger


def summarize(views: list[AchievementView]) -> dict[str, Any]:
    """Aggregate a list of views into totals and per-category/tier groups."""
    total = len(views)
    completed = sum(1 for v in views if v.is_completed)
    claimed = sum(1 for v in views if v.is_claimed)

    by_category: dict[str, dict[str, int]] = defaultdict(lambda: {"total": 0, "completed": 0, "claimed": 0})
    by_tier: dict[str, dict[str, int]] = defaultdict(lambda: {"total": 0, "completed": 0, "claimed": 0})
    for v in views:
        tier = TIER_NAMES.get(v.definition.tier, str(v.definition.tier))
        for group in (by_category[v.definition.category], by_tier[tier]):
            group["total"] += 1
            group["completed"] += int(v.is_completed)
            group["claimed"] += int(v.is_claimed)

    return {
        "total": total,
        "completed": completed,
        "claimed": claimed,
        "claimable": sum(1 for v in views if v.can_claim),
        "completion_rate": round(completed / total * 100, 2) if total else 0.0,
        "unclaimed_rewards": sum(v.definition.reward_amount for v in views if v.can_claim),
        "average_progress": round(sum(v.progress for v in views) / total, 2) if total else 0.0,
        "by_category": dict(by_category),
        "by_tier": dict(by_tier),
    }


async def account_summary(db: AsyncSession, account: str) -> dict[str, Any]:
    """Reconcile, then summarise an account's achievements."""
    views = await list_account_achievements(db, account)
    return {
        "account": account,
        **summarize(views),
        "total_earned": await ledger.sum_valid(db, account, TransactionKind.ACHIEVEMENT),
    }
