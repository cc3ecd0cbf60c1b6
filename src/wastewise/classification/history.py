"""Read-side queries over the classification log."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.db.models import Classification

WASTE_CATEGORIES: tuple[str, ...] = ("recyclable", "hazardous", "kitchen", "other")


async def count(
    db: AsyncSession,
    account: str,
    category: str | None = None,
    correct_only: bool = False,
    since: datetime | None = None,
) -> int:
    """Count an account's classifications matching the filters."""
    stmt = select(func.count()).select_from(Classification).where(Classification.account == account)
    if category is not None:
        stmt = stmt.where(Classification.expected_category == category)
    if correct_only:
        stmt = stmt.where(Classification.is_correct.is_(True))
    if since is not None:
        stmt = stmt.where(Classification.created_at >= since)
    result = await db.execute(stmt)
    return result.scalar_one()


async def accuracy(db: AsyncSession, account: str) -> float:
    """Percentage of correct classifications, 0.0 when there are none."""
    total = await count(db, account)
    if total == 0:
        return 0.0
    correct = await count(db, account, correct_only=True)
    return round(correct / total * 100, 2)


def streak_from_dates(active_days: set[date], today: date) -> int:
    """Length of the run of consecutive days ending today (or yesterday)."""
    if today in active_days:
        cursor = today
    elif today - timedelta(days=1) in active_days:
        cursor = today - timedelta(days=1)
    else:
        return 0

    streak = 0
    while cursor in active_days:
        streak += 1
        cursor -= timedelta(days=1)
    return streak


async def consecutive_days(db: AsyncSession, account: str, now: datetime | None = None) -> int:
    """Current streak of UTC days with at least one classification."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(Classification.created_at).where(Classification.account == account)
    )
    active_days = {ts.astimezone(timezone.utc).date() for ts in result.scalars()}
    return streak_from_dates(active_days, now.date())


async def correct_categories(db: AsyncSession, account: str) -> frozenset[str]:
    """Categories with at least one correct classification."""
    result = await db.execute(
        select(Classification.expected_category)
        .where(Classification.account == account, Classification.is_correct.is_(True))
        .distinct()
    )
    return frozenset(result.scalars())


def best_window(timestamps: list[datetime], hours: int) -> int:
    """Largest number of timestamps falling inside any span of ``hours`` hours.

    ``timestamps`` must be sorted ascending.
    """
    span = timedelta(hours=hours)
    best = 0
    start = 0
    for end, ts in enumerate(timestamps):
        while ts - timestamps[start] > span:
            start += 1
        best = max(best, end - start + 1)
    return best


async def best_window_count(db: AsyncSession, account: str, hours: int) -> int:
    """Best count of correct classifications within a sliding window of ``hours``."""
    result = await db.execute(
        select(Classification.created_at)
        .where(Classification.account == account, Classification.is_correct.is_(True))
        .order_by(Classification.created_at)
    )
    return best_window(list(result.scalars()), hours)


async def category_breakdown(db: AsyncSession, account: str) -> dict[str, dict[str, float]]:
    """Per-category totals, correct counts and accuracy."""
    result = await db.execute(
        select(
            Classification.expected_category,
            func.count(),
            func.sum(case((Classification.is_correct.is_(True), 1), else_=0)),
        )
        .where(Classification.account == account)
        .group_by(Classification.expected_category)
    )
    rows = {category: (int(total), int(correct or 0)) for category, total, correct in result}

    breakdown: dict[str, dict[str, float]] = {}
    for category in WASTE_CATEGORIES:
        total, correct = rows.get(category, (0, 0))
        breakdown[category] = {
            "total": total,
            "correct": correct,
            "accuracy": round(correct / total * 100, 2) if total else 0.0,
        }
    return breakdown
