"""Build the ``AccountStats`` snapshot from the ledger and classification log."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.achievements.requirements import AccountStats
from wastewise.classification import history
from wastewise.ledger import service as ledger


async def build_account_stats(
    db: AsyncSession,
    account: str,
    windows: Iterable[int] = (),
    now: datetime | None = None,
) -> AccountStats:
    """Snapshot every fact a requirement may ask about.

    ``windows`` lists the sliding-window sizes (hours) to precompute; only
    definitions with a ``time_window`` need them.
    """
    window_counts = {hours: await history.best_window_count(db, account, hours) for hours in set(windows)}
    return AccountStats(
        net_score=await ledger.sum_valid(db, account),
        classification_count=await history.count(db, account),
        accuracy=await history.accuracy(db, account),
        consecutive_days=await history.consecutive_days(db, account, now=now),
        correct_categories=await history.correct_categories(db, account),
        window_counts=window_counts,
    )
