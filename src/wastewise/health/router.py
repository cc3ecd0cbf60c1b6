"""Health, readiness, and version endpoints."""

from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import case, func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.config import get_settings
from wastewise.database import get_session
from wastewise.db.models import ClaimAttemptStatus, NftClaimAttempt, NftPoolItem, PoolItemStatus
from wastewise.redis_client import get_redis_optional

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness check: returns 200 if the process is alive."""
    return {"status": "healthy"}


async def _pool_backlog(db: AsyncSession, stale_after_seconds: int) -> dict[str, int]:
    """Counts the sweeper acts on: free items and PENDING claims, stale ones split out."""
    available = await db.execute(
        select(func.count())
        .select_from(NftPoolItem)
        .where(NftPoolItem.is_active.is_(True), NftPoolItem.status == PoolItemStatus.AVAILABLE.value)
    )
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=stale_after_seconds)
    pending = await db.execute(
        select(
            func.count(),
            func.coalesce(func.sum(case((NftClaimAttempt.requested_at < cutoff, 1), else_=0)), 0),
        )
        .select_from(NftClaimAttempt)
        .where(NftClaimAttempt.status == ClaimAttemptStatus.PENDING.value)
    )
    pending_total, stale = pending.one()
    return {"available_items": available.scalar_one(), "pending_claims": pending_total, "stale_claims": int(stale)}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness check: database and Redis connectivity, plus the NFT pool backlog.

    Redis is optional for this service; an uninitialised client reports
    ``disabled`` without degrading readiness. Stale PENDING claims mean the
    sweeper is not running and do degrade it.
    """
    settings = get_settings()
    checks: dict[str, object] = {}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
        checks["nft_pool"] = await _pool_backlog(db, settings.pending_claim_timeout_seconds)
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    redis = get_redis_optional()
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    pool = checks.get("nft_pool")
    all_ok = (
        checks["database"] == "ok"
        and checks["redis"] in ("ok", "disabled")
        and isinstance(pool, dict)
        and pool["stale_claims"] == 0
    )
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return service version, environment and the configured NFT contract."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
        "nft_contract": settings.nft_contract_address,
    }
