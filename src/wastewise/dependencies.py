"""Shared FastAPI dependencies.

External adapters are built from settings here and nowhere else, so tests
replace them through ``app.dependency_overrides``.
"""

from collections.abc import AsyncGenerator
from functools import lru_cache

from wastewise.classification.oracle import HttpScoringOracle, ScoringOracle
from wastewise.config import get_settings
from wastewise.nft.adapters import ChainAdapter, ContentStore, PinataContentStore, Web3ChainAdapter
from wastewise.redis_client import get_redis_optional


async def get_redis_dep() -> AsyncGenerator[object, None]:
    """Yield the Redis client (or None when Redis is not configured)."""
    yield get_redis_optional()


@lru_cache
def get_oracle() -> ScoringOracle:
    settings = get_settings()
    return HttpScoringOracle(settings.oracle_url, timeout=settings.oracle_timeout_seconds)


@lru_cache
def get_chain() -> ChainAdapter:
    settings = get_settings()
    return Web3ChainAdapter(
        rpc_url=settings.chain_rpc_url,
        private_key=settings.chain_private_key,
        contract_address=settings.nft_contract_address,
        receipt_timeout=settings.chain_receipt_timeout_seconds,
    )


@lru_cache
def get_content_store() -> ContentStore:
    settings = get_settings()
    return PinataContentStore(settings.pinata_jwt, api_url=settings.pinata_api_url)
