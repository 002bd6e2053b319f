from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("idx_users_wallet", "smart_wallet_address"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    smart_wallet_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    twitter_username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    funded_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    selected_nft_collection: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    points: Mapped[Optional["UserPoints"]] = relationship(back_populates="user", uselist=False)
    nft_holdings: Mapped[list["UserNftHolding"]] = relationship(back_populates="user")


class UserNftHolding(Base):
    __tablename__ = "user_nft_holdings"
    __table_args__ = (
        UniqueConstraint("user_id", "collection_id", name="uq_user_nft_holdings_user_collection"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    collection_id: Mapped[str] = mapped_column(String(64))
    verified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    user: Mapped["User"] = relationship(back_populates="nft_holdings")


class BlockchainEvent(Base):
    __tablename__ = "blockchain_events"
    __table_args__ = (
        Index("idx_blockchain_events_status", "status"),
        Index("idx_blockchain_events_contract", "contract_address"),
        Index("idx_blockchain_events_retry", "status", "retryable", "attempts"),
        UniqueConstraint(
            "network", "transaction_hash", "log_index", name="uq_blockchain_events_network_tx_log"
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    network: Mapped[str] = mapped_column(String(64))
    contract_address: Mapped[str] = mapped_column(String(42))
    event_topic: Mapped[Optional[str]] = mapped_column(String(66), nullable=True, index=True)
    topics: Mapped[list] = mapped_column(JSON_TYPE)
    data: Mapped[str] = mapped_column(Text, default="0x")
    block_number: Mapped[int] = mapped_column(BigInteger, index=True)
    transaction_hash: Mapped[str] = mapped_column(String(66), index=True)
    log_index: Mapped[int] = mapped_column(Integer)
    removed: Mapped[bool] = mapped_column(Boolean, default=False)
    source: Mapped[str] = mapped_column(String(32), default="webhook")
    status: Mapped[str] = mapped_column(String(20), default="pending")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    retryable: Mapped[bool] = mapped_column(Boolean, default=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Pool(Base):
    __tablename__ = "pools"
    __table_args__ = (
        Index("idx_pools_status", "status"),
        Index("idx_pools_creator", "creator_address"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    contract_address: Mapped[str] = mapped_column(String(42), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255))
    unique_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    creator_address: Mapped[str] = mapped_column(String(42))
    creator_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    owner_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    deposit_token: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    target_amount: Mapped[int] = mapped_column(BigInteger)
    cap_amount: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    raised_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    ends_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE")
    currency: Mapped[str] = mapped_column(String(16), default="USDC")
    blockchain_tx_hash: Mapped[str] = mapped_column(String(66), unique=True)
    blockchain_network: Mapped[str] = mapped_column(String(64))
    last_processed_block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )


class TierCommitment(Base):
    __tablename__ = "tier_commitments"
    __table_args__ = (
        Index("idx_tier_commitments_pool", "pool_address"),
        Index("idx_tier_commitments_user", "user_address"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_address: Mapped[str] = mapped_column(String(42))
    pool_address: Mapped[str] = mapped_column(String(42))
    tier_id: Mapped[int] = mapped_column(Integer)
    amount: Mapped[int] = mapped_column(BigInteger)
    blockchain_tx_hash: Mapped[str] = mapped_column(String(66), unique=True)
    blockchain_network: Mapped[str] = mapped_column(String(64))
    last_processed_block_number: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    committed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class PointTransaction(Base):
    __tablename__ = "point_transactions"
    __table_args__ = (
        Index("idx_point_transactions_user_type", "user_id", "point_type"),
        Index("idx_point_transactions_user_action", "user_id", "action_type", "created_at"),
        UniqueConstraint("user_id", "action_type", "tx_hash", name="uq_point_transactions_user_action_tx"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    point_type: Mapped[str] = mapped_column(String(20))
    action_type: Mapped[str] = mapped_column(String(128))
    amount: Mapped[int] = mapped_column(BigInteger)
    tx_hash: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON_TYPE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class UserPoints(Base):
    __tablename__ = "user_points"

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    funded_points: Mapped[int] = mapped_column(BigInteger, default=0)
    raised_points: Mapped[int] = mapped_column(BigInteger, default=0)
    onboarding_points: Mapped[int] = mapped_column(BigInteger, default=0)
    checkin_points: Mapped[int] = mapped_column(BigInteger, default=0)
    referral_points: Mapped[int] = mapped_column(BigInteger, default=0)
    checkin_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_checkin_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    user: Mapped["User"] = relationship(back_populates="points")

    @property
    def total_points(self) -> int:
        return int(
            (self.funded_points or 0)
            + (self.raised_points or 0)
            + (self.onboarding_points or 0)
            + (self.checkin_points or 0)
            + (self.referral_points or 0)
        )


class ReferralGrant(Base):
    __tablename__ = "referral_grants"
    __table_args__ = (
        Index("idx_referral_grants_referred_pool", "referred_user_id", "pool_address"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    referrer_user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    referred_user_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    pool_address: Mapped[str] = mapped_column(String(42))
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    used_tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class BlockchainPoolSyncRun(Base):
    __tablename__ = "blockchain_pool_sync_runs"
    __table_args__ = (
        Index("idx_sync_runs_status", "status"),
        Index("idx_sync_runs_start_time", "start_time"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    job_name: Mapped[str] = mapped_column(String(128))
    source: Mapped[str] = mapped_column(String(32), default="api")
    start_block: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    end_block: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default="running")
    events_found: Mapped[int] = mapped_column(Integer, default=0)
    events_processed: Mapped[int] = mapped_column(Integer, default=0)
    events_skipped: Mapped[int] = mapped_column(Integer, default=0)
    events_failed: Mapped[int] = mapped_column(Integer, default=0)
    duration_ms: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column("metadata", JSON_TYPE)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class BlockchainIndexerState(Base):
    __tablename__ = "blockchain_indexer_state"
    __table_args__ = (
        UniqueConstraint("indexer_key", name="uq_blockchain_indexer_state_key"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    indexer_key: Mapped[str] = mapped_column(String(128), index=True)
    network: Mapped[str] = mapped_column(String(64))
    last_processed_block: Mapped[int] = mapped_column(BigInteger, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )
