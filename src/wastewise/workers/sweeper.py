"""NFT pool sweeper arq worker.

Every sweep interval:
- fail PENDING claim attempts older than the pending-claim timeout
- reset RESERVED items whose reservation has elapsed
"""

from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from wastewise.config import get_settings
from wastewise.database import close_db, get_session_factory, init_db
from wastewise.nft.sweeper import fail_stale_pending_attempts, release_expired_reservations

logger = logging.getLogger(__name__)


async def sweep_nft_pool(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Resolve stale claims first so their items become releasable in the same pass."""
    async with get_session_factory()() as db:
        failed = await fail_stale_pending_attempts(db)
        released = await release_expired_reservations(db)
    if failed or released:
        logger.info("NFT pool sweep: %d stale claims failed, %d reservations released", failed, released)
    return {"failed": failed, "released": released}


async def sweeper_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize the DB engine on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    logger.info("NFT pool sweeper started (interval=%d min)", settings.sweep_interval_minutes)


async def sweeper_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    await close_db()
    logger.info("NFT pool sweeper shut down")


def _sweep_minutes() -> set[int]:
    interval = max(1, get_settings().sweep_interval_minutes)
    return set(range(0, 60, interval))


class SweeperWorkerSettings:
    """arq worker settings for the NFT pool sweeper."""

    functions = [sweep_nft_pool]
    cron_jobs = [
        cron(sweep_nft_pool, minute=_sweep_minutes(), second=0, run_at_startup=True, unique=True),
    ]
    on_startup = sweeper_startup
    on_shutdown = sweeper_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 1
    job_timeout = 300  # 5 minutes max per sweep
