"""Pool event ingestion, points ledger and sync tracking tables

Revision ID: 20261018_01
Revises:
Create Date: 2026-10-18 10:00:00
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

# revision identifiers, used by Alembic.
revision = "20261018_01"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=sa.func.current_timestamp(),
    )


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("smart_wallet_address", sa.String(length=42), nullable=True),
        sa.Column("twitter_username", sa.String(length=64), nullable=True),
        sa.Column("funded_amount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("selected_nft_collection", sa.String(length=64), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("idx_users_wallet", "users", ["smart_wallet_address"], unique=False)

    op.create_table(
        "user_nft_holdings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("collection_id", sa.String(length=64), nullable=False),
        _timestamp("verified_at"),
        sa.UniqueConstraint("user_id", "collection_id", name="uq_user_nft_holdings_user_collection"),
    )
    op.create_index("ix_user_nft_holdings_user_id", "user_nft_holdings", ["user_id"], unique=False)

    op.create_table(
        "blockchain_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("network", sa.String(length=64), nullable=False),
        sa.Column("contract_address", sa.String(length=42), nullable=False),
        sa.Column("event_topic", sa.String(length=66), nullable=True),
        sa.Column("topics", JSON_TYPE, nullable=False),
        sa.Column("data", sa.Text(), nullable=False, server_default="0x"),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("transaction_hash", sa.String(length=66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        sa.Column("removed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="webhook"),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint(
            "network", "transaction_hash", "log_index", name="uq_blockchain_events_network_tx_log"
        ),
    )
    op.create_index("idx_blockchain_events_status", "blockchain_events", ["status"], unique=False)
    op.create_index("idx_blockchain_events_contract", "blockchain_events", ["contract_address"], unique=False)
    op.create_index("ix_blockchain_events_event_topic", "blockchain_events", ["event_topic"], unique=False)
    op.create_index("ix_blockchain_events_block_number", "blockchain_events", ["block_number"], unique=False)
    op.create_index(
        "ix_blockchain_events_transaction_hash", "blockchain_events", ["transaction_hash"], unique=False
    )

    op.create_table(
        "pools",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("contract_address", sa.String(length=42), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("unique_id", sa.String(length=255), nullable=True),
        sa.Column("creator_address", sa.String(length=42), nullable=False),
        sa.Column(
            "creator_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("owner_address", sa.String(length=42), nullable=True),
        sa.Column("deposit_token", sa.String(length=42), nullable=True),
        sa.Column("target_amount", sa.BigInteger(), nullable=False),
        sa.Column("cap_amount", sa.BigInteger(), nullable=True),
        sa.Column("raised_amount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        sa.Column("currency", sa.String(length=16), nullable=False, server_default="USDC"),
        sa.Column("blockchain_tx_hash", sa.String(length=66), nullable=False),
        sa.Column("blockchain_network", sa.String(length=64), nullable=False),
        sa.Column("last_processed_block_number", sa.BigInteger(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("blockchain_tx_hash", name="uq_pools_blockchain_tx_hash"),
    )
    op.create_index("ix_pools_contract_address", "pools", ["contract_address"], unique=True)
    op.create_index("ix_pools_creator_id", "pools", ["creator_id"], unique=False)
    op.create_index("idx_pools_status", "pools", ["status"], unique=False)
    op.create_index("idx_pools_creator", "pools", ["creator_address"], unique=False)

    op.create_table(
        "tier_commitments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_address", sa.String(length=42), nullable=False),
        sa.Column("pool_address", sa.String(length=42), nullable=False),
        sa.Column("tier_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("blockchain_tx_hash", sa.String(length=66), nullable=False),
        sa.Column("blockchain_network", sa.String(length=64), nullable=False),
        sa.Column("last_processed_block_number", sa.BigInteger(), nullable=True),
        _timestamp("committed_at"),
        sa.UniqueConstraint("blockchain_tx_hash", name="uq_tier_commitments_blockchain_tx_hash"),
    )
    op.create_index("idx_tier_commitments_pool", "tier_commitments", ["pool_address"], unique=False)
    op.create_index("idx_tier_commitments_user", "tier_commitments", ["user_address"], unique=False)

    op.create_table(
        "point_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("point_type", sa.String(length=20), nullable=False),
        sa.Column("action_type", sa.String(length=128), nullable=False),
        sa.Column("amount", sa.BigInteger(), nullable=False),
        sa.Column("tx_hash", sa.String(length=128), nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        _timestamp("created_at"),
        sa.UniqueConstraint("user_id", "action_type", "tx_hash", name="uq_point_transactions_user_action_tx"),
    )
    op.create_index(
        "idx_point_transactions_user_type", "point_transactions", ["user_id", "point_type"], unique=False
    )
    op.create_index(
        "idx_point_transactions_user_action",
        "point_transactions",
        ["user_id", "action_type", "created_at"],
        unique=False,
    )

    op.create_table(
        "user_points",
        sa.Column(
            "user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("funded_points", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("raised_points", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("onboarding_points", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("checkin_points", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("referral_points", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("checkin_streak", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_checkin_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("updated_at"),
    )

    op.create_table(
        "referral_grants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=32), nullable=False),
        sa.Column(
            "referrer_user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "referred_user_id",
            sa.String(length=36),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("pool_address", sa.String(length=42), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_tx_hash", sa.String(length=66), nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("ix_referral_grants_code", "referral_grants", ["code"], unique=True)
    op.create_index(
        "idx_referral_grants_referred_pool",
        "referral_grants",
        ["referred_user_id", "pool_address"],
        unique=False,
    )

    op.create_table(
        "blockchain_pool_sync_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("job_name", sa.String(length=128), nullable=False),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="api"),
        sa.Column("start_block", sa.BigInteger(), nullable=True),
        sa.Column("end_block", sa.BigInteger(), nullable=True),
        _timestamp("start_time"),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="running"),
        sa.Column("events_found", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("events_processed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("events_skipped", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("events_failed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("duration_ms", sa.BigInteger(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata", JSON_TYPE, nullable=True),
        _timestamp("created_at"),
    )
    op.create_index("idx_sync_runs_status", "blockchain_pool_sync_runs", ["status"], unique=False)
    op.create_index("idx_sync_runs_start_time", "blockchain_pool_sync_runs", ["start_time"], unique=False)

    op.create_table(
        "blockchain_indexer_state",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("indexer_key", sa.String(length=128), nullable=False),
        sa.Column("network", sa.String(length=64), nullable=False),
        sa.Column("last_processed_block", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        _timestamp("updated_at"),
        sa.UniqueConstraint("indexer_key", name="uq_blockchain_indexer_state_key"),
    )
    op.create_index(
        "ix_blockchain_indexer_state_indexer_key", "blockchain_indexer_state", ["indexer_key"], unique=False
    )


def downgrade() -> None:
    op.drop_index("ix_blockchain_indexer_state_indexer_key", table_name="blockchain_indexer_state")
    op.drop_table("blockchain_indexer_state")

    op.drop_index("idx_sync_runs_start_time", table_name="blockchain_pool_sync_runs")
    op.drop_index("idx_sync_runs_status", table_name="blockchain_pool_sync_runs")
    op.drop_table("blockchain_pool_sync_runs")

    op.drop_index("idx_referral_grants_referred_pool", table_name="referral_grants")
    op.drop_index("ix_referral_grants_code", table_name="referral_grants")
    op.drop_table("referral_grants")

    op.drop_table("user_points")

    op.drop_index("idx_point_transactions_user_action", table_name="point_transactions")
    op.drop_index("idx_point_transactions_user_type", table_name="point_transactions")
    op.drop_table("point_transactions")

    op.drop_index("idx_tier_commitments_user", table_name="tier_commitments")
    op.drop_index("idx_tier_commitments_pool", table_name="tier_commitments")
    op.drop_table("tier_commitments")

    op.drop_index("idx_pools_creator", table_name="pools")
    op.drop_index("idx_pools_status", table_name="pools")
    op.drop_index("ix_pools_creator_id", table_name="pools")
    op.drop_index("ix_pools_contract_address", table_name="pools")
    op.drop_table("pools")

    op.drop_index("ix_blockchain_events_transaction_hash", table_name="blockchain_events")
    op.drop_index("ix_blockchain_events_block_number", table_name="blockchain_events")
    op.drop_index("ix_blockchain_events_event_topic", table_name="blockchain_events")
    op.drop_index("idx_blockchain_events_contract", table_name="blockchain_events")
    op.drop_index("idx_blockchain_events_status", table_name="blockchain_events")
    op.drop_table("blockchain_events")

    op.drop_index("ix_user_nft_holdings_user_id", table_name="user_nft_holdings")
    op.drop_table("user_nft_holdings")

    op.drop_index("idx_users_wallet", table_name="users")
    op.drop_table("users")
