from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PointsBalanceSchema(BaseModel):
    funded: int = 0
    raised: int = 0
    onboarding: int = 0
    checkin: int = 0
    referral: int = 0


class MultipliersSchema(BaseModel):
    """Multiplier components as decimal strings."""

    level: str
    leaderboard: str
    streak: str
    nft: str
    total: str


class PointsBreakdownEntry(BaseModel):
    base: int
    bonus: int
    total: int


class CheckinStatusSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    streak: int
    streakTier: Optional[str] = Field(default=None, validation_alias=AliasChoices("streakTier", "streak_tier"))
    lastCheckinAt: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("lastCheckinAt", "last_checkin_at")
    )
    nextCheckinAt: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("nextCheckinAt", "next_checkin_at")
    )
    nextTierAt: Optional[int] = Field(default=None, validation_alias=AliasChoices("nextTierAt", "next_tier_at"))


class PointsSummaryResponse(BaseModel):
    """Balance row, current multiplier stack and ledger-derived base/bonus split."""

    model_config = ConfigDict(populate_by_name=True)

    userId: str = Field(validation_alias=AliasChoices("userId", "user_id"))
    totalPoints: int = Field(validation_alias=AliasChoices("totalPoints", "total_points"))
    balances: PointsBalanceSchema
    multipliers: MultipliersSchema
    breakdown: Dict[str, PointsBreakdownEntry]
    totalBase: int = Field(validation_alias=AliasChoices("totalBase", "total_base"))
    totalBonus: int = Field(validation_alias=AliasChoices("totalBonus", "total_bonus"))
    checkin: CheckinStatusSchema


class CheckinResponse(BaseModel):
    success: bool
    points: int = 0
    basePoints: int = 0
    multiplier: str = "1"
    streakTier: Optional[str] = None
    newStreak: int = 0
    nextAvailableAt: Optional[datetime] = None
    nextTierAt: Optional[int] = None
    nextTierMultiplier: Optional[str] = None
    message: Optional[str] = None


class MissionResponse(BaseModel):
    success: bool
    missionId: str
    status: str
    points: int = 0


class SyncRunSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    jobName: str = Field(validation_alias=AliasChoices("jobName", "job_name"))
    source: str
    startBlock: Optional[int] = Field(default=None, validation_alias=AliasChoices("startBlock", "start_block"))
    endBlock: Optional[int] = Field(default=None, validation_alias=AliasChoices("endBlock", "end_block"))
    startTime: datetime = Field(validation_alias=AliasChoices("startTime", "start_time"))
    endTime: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("endTime", "end_time"))
    status: str
    eventsFound: int = Field(default=0, validation_alias=AliasChoices("eventsFound", "events_found"))
    eventsProcessed: int = Field(
        default=0, validation_alias=AliasChoices("eventsProcessed", "events_processed")
    )
    eventsSkipped: int = Field(default=0, validation_alias=AliasChoices("eventsSkipped", "events_skipped"))
    eventsFailed: int = Field(default=0, validation_alias=AliasChoices("eventsFailed", "events_failed"))
    durationMs: Optional[int] = Field(default=None, validation_alias=AliasChoices("durationMs", "duration_ms"))
    errorMessage: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("errorMessage", "error_message")
    )
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SyncRunsResponse(BaseModel):
    runs: List[SyncRunSchema]
    stats: Dict[str, Any]


class BackfillRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    fromBlock: Optional[int] = Field(
        default=None, ge=0, validation_alias=AliasChoices("fromBlock", "from_block")
    )
    toBlock: Optional[int] = Field(default=None, ge=0, validation_alias=AliasChoices("toBlock", "to_block"))
    contract: Optional[str] = None
    chunkSize: Optional[int] = Field(
        default=None, gt=0, le=10_000, validation_alias=AliasChoices("chunkSize", "chunk_size")
    )
    incremental: bool = False


class ReprocessRequest(BaseModel):
    limit: Optional[int] = Field(default=None, gt=0, le=5_000)


class IngestionResponse(BaseModel):
    """Outcome of one ingestion batch."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    status: str
    counts: Dict[str, int]
    results: List[Dict[str, Any]] = Field(default_factory=list)
    syncRunId: Optional[int] = Field(default=None, validation_alias=AliasChoices("syncRunId", "sync_run_id"))
    error: Optional[str] = None


class ReferralGrantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    poolAddress: str = Field(validation_alias=AliasChoices("poolAddress", "pool_address"))


class ReferralClaimRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(min_length=1, max_length=32)
    userId: str = Field(validation_alias=AliasChoices("userId", "user_id"))


class ReferralGrantSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    code: str
    referrerUserId: str = Field(validation_alias=AliasChoices("referrerUserId", "referrer_user_id"))
    referredUserId: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("referredUserId", "referred_user_id")
    )
    poolAddress: str = Field(validation_alias=AliasChoices("poolAddress", "pool_address"))
    expiresAt: datetime = Field(validation_alias=AliasChoices("expiresAt", "expires_at"))
    usedAt: Optional[datetime] = Field(default=None, validation_alias=AliasChoices("usedAt", "used_at"))
    usedTxHash: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("usedTxHash", "used_tx_hash")
    )
    createdAt: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("createdAt", "created_at")
    )


class ReferralGrantsResponse(BaseModel):
    grants: List[ReferralGrantSchema]
