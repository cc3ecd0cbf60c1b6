"""Shared test fixtures.

Every test gets a fresh file-backed SQLite database (aiosqlite, one
connection per session) and in-memory fakes for the scoring oracle, the
chain and the content store.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from wastewise.auth.dependencies import get_policy
from wastewise.auth.policy import AllowlistPolicy
from wastewise.classification.oracle import OracleVerdict, ScoringOracle
from wastewise.config import get_settings
from wastewise.database import get_session
from wastewise.db.base import Base
from wastewise.db.models import (
    AchievementDefinition,
    Classification,
    NftPoolItem,
    PoolItemStatus,
    TransactionKind,
)
from wastewise.dependencies import get_chain, get_content_store, get_oracle
from wastewise.ledger import service as ledger
from wastewise.main import create_app
from wastewise.nft.adapters import ChainAdapter, ContentStore, MintReceipt, TransferReceipt

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
ADMIN = "0x" + "ad" * 20
TREASURY = "0x" + "7e" * 20


@pytest.fixture(autouse=True)
def _settings(monkeypatch):
    """Deterministic settings: a treasury to mint to and no batch pauses."""
    monkeypatch.setenv("WASTEWISE_TREASURY_ACCOUNT", TREASURY)
    monkeypatch.setenv("WASTEWISE_MINT_BATCH_DELAY_SECONDS", "0")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ── Fakes ──


class FakeOracle(ScoringOracle):
    """Returns queued verdicts, or a correct 10-point verdict by default."""

    def __init__(self) -> None:
        self.verdicts: list[OracleVerdict | Exception] = []
        self.calls: list[tuple[str, str, str]] = []

    def queue(self, verdict: OracleVerdict | Exception) -> None:
        self.verdicts.append(verdict)

    async def score(self, image_url: str, expected_category: str, user_location: str) -> OracleVerdict:
        self.calls.append((image_url, expected_category, user_location))
        if self.verdicts:
            verdict = self.verdicts.pop(0)
            if isinstance(verdict, Exception):
                raise verdict
            return verdict
        return OracleVerdict(
            detected_category=expected_category,
            confidence=0.9,
            is_match=True,
            score=10,
            analysis_text="Looks right",
            suggestions=["Rinse before recycling"],
            processing_time_ms=120,
        )


class FakeChain(ChainAdapter):
    """Mints sequential token ids; transfers can be made to fail or hang."""

    def __init__(self) -> None:
        self._token_ids = itertools.count(1)
        self._blocks = itertools.count(100)
        self.minted: list[dict[str, Any]] = []
        self.transfers: list[tuple[str, str]] = []
        self.fail_mint: Exception | None = None
        self.fail_transfer: Exception | None = None
        self.hang_transfer = False

    async def mint(self, to_account: str, metadata_uri: str, name: str, category: str, rarity: int) -> MintReceipt:
        if self.fail_mint is not None:
            raise self.fail_mint
        token_id = next(self._token_ids)
        self.minted.append({"to": to_account, "uri": metadata_uri, "name": name, "token_id": token_id})
        return MintReceipt(token_ref=str(token_id), tx_ref=f"0xmint{token_id:060x}", block_ref=next(self._blocks))

    async def transfer(self, to_account: str, token_ref: str) -> TransferReceipt:
        if self.hang_transfer:
            await asyncio.sleep(3600)
        if self.fail_transfer is not None:
            raise self.fail_transfer
        self.transfers.append((to_account, token_ref))
        return TransferReceipt(tx_ref=f"0xtransfer{len(self.transfers):056x}", block_ref=next(self._blocks))


class FakeContentStore(ContentStore):
    def __init__(self) -> None:
        self.documents: dict[str, Any] = {}
        self.fail: Exception | None = None

    async def put(self, content: dict[str, Any] | bytes, name: str) -> str:
        if self.fail is not None:
            raise self.fail
        cid = f"bafyfake{len(self.documents) + 1}"
        self.documents[cid] = content
        return f"ipfs://{cid}"


# ── Database ──


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'wastewise.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Adapters ──


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def store() -> FakeContentStore:
    return FakeContentStore()


# ── HTTP client ──


@pytest_asyncio.fixture
async def client(session_factory, oracle, chain, store) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with every external dependency faked."""
    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_oracle] = lambda: oracle
    app.dependency_overrides[get_chain] = lambda: chain
    app.dependency_overrides[get_content_store] = lambda: store
    app.dependency_overrides[get_policy] = lambda: AllowlistPolicy.administrators([ADMIN])

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def wallet(account: str) -> dict[str, str]:
    return {"X-Wallet-Address": account}


@pytest.fixture
def as_alice() -> dict[str, str]:
    return wallet(ALICE)


@pytest.fixture
def as_bob() -> dict[str, str]:
    return wallet(BOB)


@pytest.fixture
def as_admin() -> dict[str, str]:
    return wallet(ADMIN)


# ── Data builders ──


@pytest.fixture
def make_achievement(db):
    """Insert an achievement definition directly."""
    counter = itertools.count(1)

    async def _make(requirement: dict[str, Any] | None = None, reward_amount: int = 50, **overrides: Any):
        n = next(counter)
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {
            "code": f"test_achievement_{n}",
            "name": f"Test Achievement {n}",
            "description": "Test achievement",
            "reward_amount": reward_amount,
            "category": "milestone",
            "tier": 1,
            "requirement": requirement if requirement is not None else {"min_classifications": 1},
            "is_active": True,
            "sort_order": n,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        definition = AchievementDefinition(**values)
        db.add(definition)
        await db.commit()
        return definition

    return _make


@pytest.fixture
def add_classification(db):
    """Insert a classification (and its ledger credit) without calling the oracle."""

    async def _add(
        account: str = ALICE,
        category: str = "recyclable",
        correct: bool = True,
        score: int = 10,
        created_at: datetime | None = None,
    ) -> Classification:
        classification = Classification(
            account=account,
            image_url="https://img.example/photo.jpg",
            expected_category=category,
            detected_category=category if correct else "other",
            confidence=0.9,
            is_correct=correct,
            score=score if correct else 0,
            suggestions=[],
            processing_time_ms=100,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db.add(classification)
        await db.flush()
        if classification.score > 0:
            await ledger.append(
                db,
                account=account,
                amount=classification.score,
                kind=TransactionKind.CLASSIFICATION,
                reference_kind="classification",
                reference_id=classification.id,
            )
        await db.commit()
        return classification

    return _add


@pytest.fixture
def make_pool_item(db):
    """Insert a minted, AVAILABLE pool item directly."""
    counter = itertools.count(1)

    async def _make(**overrides: Any) -> NftPoolItem:
        n = next(counter)
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {
            "name": f"Eco Token {n}",
            "description": "Test reward",
            "image_url": "https://img.example/token.png",
            "rarity": 1,
            "category": "general",
            "required_score": 0,
            "required_classifications": 0,
            "status": PoolItemStatus.AVAILABLE.value,
            "mint_reference": str(1000 + n),
            "mint_tx_reference": f"0xmint{n}",
            "metadata_uri": f"ipfs://bafyitem{n}",
            "attributes": [],
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        values.update(overrides)
        item = NftPoolItem(**values)
        db.add(item)
        await db.commit()
        return item

    return _make
