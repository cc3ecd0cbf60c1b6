"""NFT reward endpoints: eligibility, reservation, claiming and pool administration."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.auth.dependencies import get_current_account, require_capability
from wastewise.auth.policy import NFTS_ADMIN
from wastewise.database import get_session
from wastewise.dependencies import get_chain, get_content_store, get_redis_dep
from wastewise.nft import allocation, ingestion
from wastewise.nft.adapters import ChainAdapter, ContentStore
from wastewise.nft.schemas import (
    ClaimAttemptResponse,
    ClaimAttemptsResponse,
    EligibleItemResponse,
    EligibleItemsResponse,
    OwnedItemResponse,
    OwnedItemsResponse,
    PoolBatchFailure,
    PoolBatchRequest,
    PoolBatchResponse,
    PoolItemCreate,
    PoolItemResponse,
    PoolStatsResponse,
    ReservationResponse,
)

router = APIRouter(prefix="/api/v1/nfts", tags=["NFT Rewards"])


def _spec(body: PoolItemCreate) -> ingestion.PoolItemSpec:
    return ingestion.PoolItemSpec(**body.model_dump())


# ── Caller ──


@router.get("/eligible", response_model=EligibleItemsResponse)
async def eligible_items(
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Available items with the caller's eligibility for each."""
    eligible = await allocation.list_eligible(db, account)
    return EligibleItemsResponse(
        items=[
            EligibleItemResponse(
                item=PoolItemResponse.model_validate(e.item),
                can_claim=e.can_claim,
                missing=e.missing,
            )
            for e in eligible
        ],
        total=len(eligible),
    )


@router.get("/claims", response_model=ClaimAttemptsResponse)
async def my_claims(
    limit: int = Query(50, ge=1, le=200),
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """The caller's claim attempts, newest first."""
    claims = await allocation.list_claims(db, account, limit=limit)
    return ClaimAttemptsResponse(
        claims=[ClaimAttemptResponse.model_validate(c) for c in claims],
        total=len(claims),
    )


@router.get("/claims/{claim_id}", response_model=ClaimAttemptResponse)
async def get_claim(
    claim_id: int,
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Status of one of the caller's claim attempts."""
    return ClaimAttemptResponse.model_validate(await allocation.get_attempt(db, claim_id, account=account))


@router.get("/owned", response_model=OwnedItemsResponse)
async def owned_items(
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Items the caller has successfully claimed."""
    attempts = await allocation.owned_items(db, account)
    return OwnedItemsResponse(
        items=[
            OwnedItemResponse(
                item=PoolItemResponse.model_validate(a.pool_item),
                claim_id=a.id,
                claimed_at=a.confirmed_at,
                transfer_reference=a.transfer_reference,
            )
            for a in attempts
        ],
        total=len(attempts),
    )


@router.post("/{item_id}/reserve", response_model=ReservationResponse)
async def reserve_item(
    item_id: int,
    account: str = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
):
    """Hold an item for the caller for the reservation TTL."""
    item = await allocation.reserve(db, account, item_id)
    return ReservationResponse(item_id=item.id, reserved_by=item.reserved_by, reserved_until=item.reserved_until)


@router.post("/{item_id}/claim", response_model=ClaimAttemptResponse)
async def claim_item(
    item_id: int,
    account: str = Depends(get_current_account),
    chain: ChainAdapter = Depends(get_chain),
    redis: object = Depends(get_redis_dep),
    db: AsyncSession = Depends(get_session),
):
    """Transfer a reserved item to the caller."""
    attempt = await allocation.claim(db, chain, account, item_id, redis=redis)
    return ClaimAttemptResponse.model_validate(attempt)


# ── Administration ──


@router.post("/admin/items", response_model=PoolItemResponse, status_code=201)
async def add_pool_item(
    body: PoolItemCreate,
    admin: str = Depends(require_capability(NFTS_ADMIN)),
    chain: ChainAdapter = Depends(get_chain),
    store: ContentStore = Depends(get_content_store),
    db: AsyncSession = Depends(get_session),
):
    """Mint one item to the treasury and add it to the pool."""
    item = await ingestion.add_item(db, chain, store, _spec(body), created_by=admin)
    return PoolItemResponse.model_validate(item)


@router.post("/admin/items/batch", response_model=PoolBatchResponse, status_code=201)
async def batch_add_pool_items(
    body: PoolBatchRequest,
    admin: str = Depends(require_capability(NFTS_ADMIN)),
    chain: ChainAdapter = Depends(get_chain),
    store: ContentStore = Depends(get_content_store),
    db: AsyncSession = Depends(get_session),
):
    """Mint and add several items one after another."""
    outcome = await ingestion.batch_add(db, chain, store, [_spec(i) for i in body.items], created_by=admin)
    return PoolBatchResponse(
        created=outcome.created,
        attempted=outcome.attempted,
        items=[PoolItemResponse.model_validate(i) for i in outcome.items],
        failures=[PoolBatchFailure(index=f.index, name=f.name, error=f.error) for f in outcome.failures],
    )


@router.get("/admin/stats", response_model=PoolStatsResponse)
async def pool_stats(
    _admin: str = Depends(require_capability(NFTS_ADMIN)),
    db: AsyncSession = Depends(get_session),
):
    """Pool overview with breakdowns by rarity and category."""
    return PoolStatsResponse(**await allocation.pool_stats(db))
