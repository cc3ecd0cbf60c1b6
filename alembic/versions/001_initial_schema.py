"""Initial schema: points ledger, classifications, achievements and NFT pool.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_initial_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Score Ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS score_transactions (
            id BIGSERIAL PRIMARY KEY,
            account VARCHAR(42) NOT NULL,
            amount INTEGER NOT NULL,
            kind VARCHAR(32) NOT NULL,
            reference_kind VARCHAR(32),
            reference_id VARCHAR(64),
            description VARCHAR(256),
            is_valid BOOLEAN NOT NULL DEFAULT true,
            idempotency_key VARCHAR(256) UNIQUE,
            metadata JSONB NOT NULL DEFAULT '{}',
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_score_tx_account
        ON score_transactions(account, is_valid)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_score_tx_reference
        ON score_transactions(reference_kind, reference_id)
    """)

    # --- Classifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS classifications (
            id BIGSERIAL PRIMARY KEY,
            account VARCHAR(42) NOT NULL,
            image_url TEXT NOT NULL,
            expected_category VARCHAR(32) NOT NULL,
            detected_category VARCHAR(64),
            confidence DOUBLE PRECISION NOT NULL DEFAULT 0,
            is_correct BOOLEAN NOT NULL DEFAULT false,
            score INTEGER NOT NULL DEFAULT 0,
            analysis TEXT,
            suggestions JSONB NOT NULL DEFAULT '[]',
            user_location VARCHAR(128),
            device_info VARCHAR(256),
            processing_time_ms INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_classifications_account_created
        ON classifications(account, created_at)
    """)

    # --- Achievement Definitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_definitions (
            id SERIAL PRIMARY KEY,
            code VARCHAR(64) UNIQUE NOT NULL,
            name VARCHAR(128) NOT NULL,
            description TEXT NOT NULL,
            reward_amount INTEGER NOT NULL,
            icon_url VARCHAR(512),
            category VARCHAR(32) NOT NULL,
            tier INTEGER NOT NULL,
            requirement JSONB NOT NULL DEFAULT '{}',
            is_active BOOLEAN NOT NULL DEFAULT true,
            max_claims INTEGER,
            valid_from TIMESTAMPTZ,
            valid_until TIMESTAMPTZ,
            sort_order INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_achievement_defs_category
        ON achievement_definitions(category)
    """)

    # --- Achievement Progress ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS achievement_progress (
            id BIGSERIAL PRIMARY KEY,
            account VARCHAR(42) NOT NULL,
            achievement_id INTEGER NOT NULL REFERENCES achievement_definitions(id) ON DELETE CASCADE,
            progress INTEGER NOT NULL DEFAULT 0,
            is_completed BOOLEAN NOT NULL DEFAULT false,
            is_claimed BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            claimed_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            CONSTRAINT achievement_progress_account_achievement_key UNIQUE (account, achievement_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_achievement_progress_claimed
        ON achievement_progress(achievement_id, is_claimed)
    """)

    # --- NFT Pool ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS nft_pool_items (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            image_url TEXT,
            rarity INTEGER NOT NULL DEFAULT 1,
            category VARCHAR(32) NOT NULL DEFAULT 'general',
            required_score INTEGER NOT NULL DEFAULT 0,
            required_classifications INTEGER NOT NULL DEFAULT 0,
            status VARCHAR(16) NOT NULL DEFAULT 'AVAILABLE',
            reserved_by VARCHAR(42),
            reserved_until TIMESTAMPTZ,
            claimed_at TIMESTAMPTZ,
            mint_reference VARCHAR(78),
            mint_tx_reference VARCHAR(66),
            metadata_uri TEXT,
            attributes JSONB NOT NULL DEFAULT '[]',
            is_active BOOLEAN NOT NULL DEFAULT true,
            created_by VARCHAR(42),
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_nft_pool_status
        ON nft_pool_items(status)
    """)

    # --- NFT Claim Attempts ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS nft_claim_attempts (
            id BIGSERIAL PRIMARY KEY,
            pool_item_id INTEGER NOT NULL REFERENCES nft_pool_items(id) ON DELETE CASCADE,
            account VARCHAR(42) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'PENDING',
            requested_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            confirmed_at TIMESTAMPTZ,
            failed_at TIMESTAMPTZ,
            failure_reason TEXT,
            transfer_reference VARCHAR(66),
            block_reference BIGINT
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_nft_claims_account
        ON nft_claim_attempts(account, requested_at)
    """)
    # At most one in-flight claim per pool item
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_nft_claims_one_pending_per_item
        ON nft_claim_attempts(pool_item_id)
        WHERE status = 'PENDING'
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS nft_claim_attempts CASCADE")
    op.execute("DROP TABLE IF EXISTS nft_pool_items CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_progress CASCADE")
    op.execute("DROP TABLE IF EXISTS achievement_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS classifications CASCADE")
    op.execute("DROP TABLE IF EXISTS score_transactions CASCADE")
