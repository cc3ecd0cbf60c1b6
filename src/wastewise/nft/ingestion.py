"""Pool ingestion: metadata -> content store -> mint -> persist."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from wastewise.auth.accounts import normalize_account
from wastewise.config import get_settings
from wastewise.db.models import NftPoolItem, PoolItemStatus
from wastewise.errors import UpstreamError, ValidationError
from wastewise.nft.adapters import ChainAdapter, ContentStore
from wastewise.nft.metadata import build_metadata, gateway_url, slugify

logger = structlog.get_logger()


@dataclass
class PoolItemSpec:
    """What an administrator supplies for one new pool item."""

    name: str
    description: str | None = None
    image_url: str | None = None
    rarity: int = 1
    category: str = "general"
    required_score: int = 0
    required_classifications: int = 0
    attributes: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class IngestFailure:
    index: int
    name: str
    error: str


@dataclass
class IngestResult:
    attempted: int
    items: list[NftPoolItem] = field(default_factory=list)
    failures: list[IngestFailure] = field(default_factory=list)

    @property
    def created(self) -> int:
        return len(self.items)


def _validate(spec: PoolItemSpec) -> None:
    if not spec.name or not spec.name.strip():
        raise ValidationError("NFT name is required", field="name")
    if not 1 <= spec.rarity <= 5:
        raise ValidationError("Rarity must be between 1 and 5", field="rarity")
    if spec.required_score < 0 or spec.required_classifications < 0:
        raise ValidationError("Requirements must be non-negative")


async def add_item(
    db: AsyncSession,
    chain: ChainAdapter,
    store: ContentStore,
    spec: PoolItemSpec,
    created_by: str | None = None,
    treasury_account: str | None = None,
    frontend_base_url: str | None = None,
) -> NftPoolItem:
    """Mint one item to the treasury and add it to the pool as AVAILABLE.

    Nothing is written to the database unless both the content store and
    the mint succeed.
    """
    _validate(spec)
    settings = get_settings()
    treasury = normalize_account(treasury_account or settings.treasury_account)
    base_url = frontend_base_url if frontend_base_url is not None else settings.frontend_base_url

    metadata = build_metadata(
        name=spec.name,
        description=spec.description,
        image_url=spec.image_url,
        rarity=spec.rarity,
        category=spec.category,
        attributes=spec.attributes,
        frontend_base_url=base_url,
    )
    metadata_uri = await store.put(metadata, name=f"{slugify(spec.name)}.json")
    receipt = await chain.mint(treasury, metadata_uri, spec.name, spec.category, spec.rarity)

    now = datetime.now(timezone.utc)
    item = NftPoolItem(
        name=spec.name,
        description=spec.description,
        image_url=metadata["image"],
        rarity=spec.rarity,
        category=spec.category,
        required_score=spec.required_score,
        required_classifications=spec.required_classifications,
        status=PoolItemStatus.AVAILABLE.value,
        mint_reference=receipt.token_ref,
        mint_tx_reference=receipt.tx_ref,
        metadata_uri=metadata_uri,
        attributes=metadata["attributes"],
        is_active=True,
        created_by=created_by,
        created_at=now,
        updated_at=now,
    )
    db.add(item)
    await db.commit()
    await db.refresh(item)
    logger.info(
        "nft_pool_item_added",
        item_id=item.id,
        token=receipt.token_ref,
        uri=metadata_uri,
        gateway=gateway_url(metadata_uri, settings.pinata_gateway),
    )
    return item


async def batch_add(
    db: AsyncSession,
    chain: ChainAdapter,
    store: ContentStore,
    specs: list[PoolItemSpec],
    created_by: str | None = None,
    delay_seconds: float | None = None,
) -> IngestResult:
    """Add items strictly one after another; failures are logged and skipped.

    Mints share one treasury nonce sequence, so items are never minted
    concurrently and a pause separates consecutive mints.
    """
    delay = delay_seconds if delay_seconds is not None else get_settings().mint_batch_delay_seconds
    outcome = IngestResult(attempted=len(specs))
    for index, spec in enumerate(specs):
        try:
            outcome.items.append(await add_item(db, chain, store, spec, created_by=created_by))
        except (UpstreamError, ValidationError) as e:
            logger.error("nft_batch_item_failed", index=index, name=spec.name, error=e.message)
            outcome.failures.append(IngestFailure(index=index, name=spec.name, error=e.message))
            continue
        if delay > 0 and index < len(specs) - 1:
            await asyncio.sleep(delay)

    logger.info("nft_batch_completed", created=outcome.created, attempted=outcome.attempted)
    return outcome
