"""Points ledger.

Every award appends one immutable ``point_transactions`` row keyed by
``(user_id, action_type, tx_hash)`` and bumps the matching ``user_points``
column by the same amount, both inside the caller's transaction. A conflict on
the ledger key means the award was already applied and nothing else is written.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.config import settings
from poolsync.models.database import PointTransaction, User, UserPoints, utcnow
from poolsync.services.database import insert_ignore
from poolsync.services.multipliers import (
    NO_MULTIPLIER,
    MultiplierBreakdown,
    MultiplierConfig,
    load_multiplier_config,
    resolve_multipliers,
)


logger = logging.getLogger(__name__)


class PointType(str, Enum):
    FUNDED = "funded"
    RAISED = "raised"
    ONBOARDING = "onboarding"
    CHECKIN = "checkin"
    REFERRAL = "referral"


POINT_COLUMNS: dict[PointType, str] = {
    PointType.FUNDED: "funded_points",
    PointType.RAISED: "raised_points",
    PointType.ONBOARDING: "onboarding_points",
    PointType.CHECKIN: "checkin_points",
    PointType.REFERRAL: "referral_points",
}

POOL_CREATION_POINTS = 50
FUNDED_POINTS_PER_USDC = 15
RAISED_POINTS_PER_USDC = 25
EXECUTING_POINTS_PER_USDC = 30
REFERRAL_POINTS_PER_USDC = 10
DAILY_CHECKIN_POINTS = 100

MISSION_POINTS: dict[str, int] = {
    "link_x": 1_000,
    "follow_x": 1_000,
    "create_pool": 5_000,
}


@dataclass
class AwardResult:
    status: str
    user_id: Optional[str] = None
    point_type: Optional[str] = None
    action_type: Optional[str] = None
    base_amount: int = 0
    awarded: int = 0
    multiplier: Decimal = Decimal("1")
    reason: Optional[str] = None

    @property
    def awarded_now(self) -> bool:
        return self.status == "awarded"

    @property
    def duplicate(self) -> bool:
        return self.status == "duplicate"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "point_type": self.point_type,
            "action_type": self.action_type,
            "base_amount": self.base_amount,
            "awarded": self.awarded,
            "multiplier": str(self.multiplier),
            "reason": self.reason,
        }


@dataclass
class CheckinResult:
    status: str
    streak: int = 0
    awarded: int = 0
    base_amount: int = DAILY_CHECKIN_POINTS
    multiplier: Decimal = Decimal("1")
    streak_tier: Optional[str] = None
    next_checkin_at: Optional[datetime] = None
    next_tier_at: Optional[int] = None
    next_tier_multiplier: Optional[Decimal] = None


def points_from_amount(amount: int, rate: int, decimals: Optional[int] = None) -> int:
    """floor(rate * amount / 10**decimals) in exact integer arithmetic."""
    decimals = settings.usdc_decimals if decimals is None else decimals
    if amount <= 0:
        return 0
    return (rate * int(amount)) // (10**decimals)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def _ledger_entry_exists(db: AsyncSession, user_id: str, action_type: str, tx_hash: str) -> bool:
    result = await db.execute(
        select(PointTransaction.id).where(
            PointTransaction.user_id == user_id,
            PointTransaction.action_type == action_type,
            PointTransaction.tx_hash == tx_hash,
        )
    )
    return result.first() is not None


async def _increment_balance(db: AsyncSession, user_id: str, column: str, delta: int) -> None:
    created = await insert_ignore(
        db,
        UserPoints,
        {"user_id": user_id, column: delta, "updated_at": utcnow()},
        index_elements=["user_id"],
    )
    if created:
        return
    await db.execute(
        update(UserPoints)
        .where(UserPoints.user_id == user_id)
        .values({column: getattr(UserPoints, column) + delta, "updated_at": utcnow()})
    )


async def award_points(
    db: AsyncSession,
    user_id: str,
    point_type: PointType | str,
    base_amount: int,
    action: str,
    metadata: Optional[dict] = None,
    multiplier: Optional[MultiplierBreakdown] = None,
    tx_hash: Optional[str] = None,
) -> AwardResult:
    point_type = PointType(point_type)
    action_type = f"{point_type.value}:{action}"
    metadata = dict(metadata or {})
    tx_hash = tx_hash or metadata.get("txHash")

    if base_amount < 1:
        return AwardResult(
            status="rejected",
            user_id=user_id,
            point_type=point_type.value,
            action_type=action_type,
            base_amount=base_amount,
            reason="base_amount_below_minimum",
        )

    if tx_hash and await _ledger_entry_exists(db, user_id, action_type, tx_hash):
        return AwardResult(
            status="duplicate",
            user_id=user_id,
            point_type=point_type.value,
            action_type=action_type,
            base_amount=base_amount,
        )

    breakdown = multiplier or NO_MULTIPLIER
    awarded = breakdown.apply(base_amount)
    metadata.update(
        {
            "base_amount": base_amount,
            "bonus_amount": awarded - base_amount,
            "multiplier": str(breakdown.total),
            "multipliers": breakdown.as_metadata(),
        }
    )

    inserted = await insert_ignore(
        db,
        PointTransaction,
        {
            "user_id": user_id,
            "point_type": point_type.value,
            "action_type": action_type,
            "amount": awarded,
            "tx_hash": tx_hash,
            "metadata": metadata,
            "created_at": utcnow(),
        },
        index_elements=["user_id", "action_type", "tx_hash"],
    )
    if not inserted:
        return AwardResult(
            status="duplicate",
            user_id=user_id,
            point_type=point_type.value,
            action_type=action_type,
            base_amount=base_amount,
        )

    await _increment_balance(db, user_id, POINT_COLUMNS[point_type], awarded)
    logger.info(
        "Awarded %s %s points to %s for %s (base %s, x%s)",
        awarded,
        point_type.value,
        user_id,
        action,
        base_amount,
        breakdown.total,
    )
    return AwardResult(
        status="awarded",
        user_id=user_id,
        point_type=point_type.value,
        action_type=action_type,
        base_amount=base_amount,
        awarded=awarded,
        multiplier=breakdown.total,
    )


async def award_points_for_pool_creation(
    db: AsyncSession, user_id: str, pool_address: str, tx_hash: str
) -> AwardResult:
    return await award_points(
        db,
        user_id,
        PointType.RAISED,
        POOL_CREATION_POINTS,
        "pool_created",
        metadata={"txHash": tx_hash, "poolAddress": pool_address},
    )


async def award_points_for_commitment(
    db: AsyncSession,
    committer_user_id: Optional[str],
    creator_user_id: Optional[str],
    amount: int,
    pool_address: str,
    tx_hash: str,
    config: Optional[MultiplierConfig] = None,
) -> list[AwardResult]:
    """Funded points for the committer and raised points for the pool creator."""
    config = config or load_multiplier_config()
    metadata = {"txHash": tx_hash, "poolAddress": pool_address, "amount": str(amount)}
    results: list[AwardResult] = []

    if committer_user_id:
        breakdown = await resolve_multipliers(db, committer_user_id, config)
        results.append(
            await award_points(
                db,
                committer_user_id,
                PointType.FUNDED,
                points_from_amount(amount, FUNDED_POINTS_PER_USDC),
                "commitment",
                metadata=metadata,
                multiplier=breakdown,
            )
        )

    if creator_user_id:
        breakdown = await resolve_multipliers(db, creator_user_id, config)
        results.append(
            await award_points(
                db,
                creator_user_id,
                PointType.RAISED,
                points_from_amount(amount, RAISED_POINTS_PER_USDC),
                "commitment_received",
                metadata={**metadata, "committer": committer_user_id},
                multiplier=breakdown,
            )
        )
    return results


async def award_points_for_pool_executing(
    db: AsyncSession,
    creator_user_id: str,
    pool_address: str,
    raised_amount: int,
    tx_hash: str,
    config: Optional[MultiplierConfig] = None,
) -> AwardResult:
    """One-time bonus when a pool enters EXECUTING; keyed per pool, not per transaction."""
    breakdown = await resolve_multipliers(db, creator_user_id, config)
    return await award_points(
        db,
        creator_user_id,
        PointType.RAISED,
        points_from_amount(raised_amount, EXECUTING_POINTS_PER_USDC),
        "pool_executing",
        metadata={"txHash": tx_hash, "poolAddress": pool_address, "raisedAmount": str(raised_amount)},
        multiplier=breakdown,
        tx_hash=f"pool:{pool_address.lower()}",
    )


async def daily_checkin(
    db: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
    config: Optional[MultiplierConfig] = None,
) -> CheckinResult:
    config = config or load_multiplier_config()
    now = _as_utc(now) or utcnow()
    interval = timedelta(hours=settings.checkin_interval_hours)
    window = timedelta(hours=settings.checkin_streak_window_hours)

    if await db.get(User, user_id) is None:
        return CheckinResult(status="user_not_found")

    points = await db.get(UserPoints, user_id)
    last_checkin = _as_utc(points.last_checkin_at) if points else None
    current_streak = int(points.checkin_streak or 0) if points else 0

    if last_checkin is not None and now < last_checkin + interval:
        return CheckinResult(
            status="too_early",
            streak=current_streak,
            next_checkin_at=last_checkin + interval,
        )

    if last_checkin is not None and now - last_checkin < window:
        streak = current_streak + 1
    else:
        streak = 1

    tier = config.streak.tier_for(streak)
    next_tier = config.streak.next_tier(streak)
    breakdown = MultiplierBreakdown(streak=tier.multiplier)
    award = await award_points(
        db,
        user_id,
        PointType.CHECKIN,
        DAILY_CHECKIN_POINTS,
        "daily_checkin",
        metadata={"streak": streak, "streakTier": tier.name, "checkinAt": now.isoformat()},
        multiplier=breakdown,
        tx_hash=f"checkin:{now.date().isoformat()}",
    )
    if not award.awarded_now:
        return CheckinResult(status=award.status, streak=current_streak, next_checkin_at=now + interval)

    await db.execute(
        update(UserPoints)
        .where(UserPoints.user_id == user_id)
        .values(checkin_streak=streak, last_checkin_at=now, updated_at=utcnow())
    )
    return CheckinResult(
        status="awarded",
        streak=streak,
        awarded=award.awarded,
        multiplier=award.multiplier,
        streak_tier=tier.name,
        next_checkin_at=now + interval,
        next_tier_at=next_tier.threshold if next_tier else None,
        next_tier_multiplier=next_tier.multiplier if next_tier else None,
    )


async def award_mission_points(db: AsyncSession, user_id: str, mission_id: str) -> AwardResult:
    base_amount = MISSION_POINTS.get(mission_id)
    if base_amount is None:
        return AwardResult(status="rejected", user_id=user_id, reason="unknown_mission")
    if await db.get(User, user_id) is None:
        return AwardResult(status="rejected", user_id=user_id, reason="user_not_found")
    return await award_points(
        db,
        user_id,
        PointType.ONBOARDING,
        base_amount,
        f"mission_{mission_id}",
        metadata={"missionId": mission_id},
        tx_hash=f"mission:{mission_id}",
    )


@dataclass
class _TypeBreakdown:
    base: int = 0
    bonus: int = 0
    total: int = 0


@dataclass
class _LedgerBreakdown:
    by_type: dict[str, _TypeBreakdown] = field(
        default_factory=lambda: {point_type.value: _TypeBreakdown() for point_type in PointType}
    )

    def add(self, point_type: str, amount: int, metadata: Optional[dict]) -> None:
        bucket = self.by_type.setdefault(point_type, _TypeBreakdown())
        metadata = metadata or {}
        if "base_amount" in metadata and "bonus_amount" in metadata:
            bucket.base += int(metadata["base_amount"])
            bucket.bonus += int(metadata["bonus_amount"])
        else:
            bucket.base += amount
        bucket.total += amount


async def get_points_summary(
    db: AsyncSession,
    user_id: str,
    config: Optional[MultiplierConfig] = None,
) -> Optional[dict]:
    config = config or load_multiplier_config()
    if await db.get(User, user_id) is None:
        return None

    points = await db.get(UserPoints, user_id)
    balances = {
        point_type.value: int(getattr(points, column) or 0) if points else 0
        for point_type, column in POINT_COLUMNS.items()
    }
    breakdown = await resolve_multipliers(db, user_id, config)

    ledger = _LedgerBreakdown()
    rows = await db.execute(
        select(PointTransaction.point_type, PointTransaction.amount, PointTransaction.metadata_json).where(
            PointTransaction.user_id == user_id
        )
    )
    for point_type, amount, metadata in rows.all():
        ledger.add(point_type, int(amount), metadata)

    streak = int(points.checkin_streak or 0) if points else 0
    last_checkin = _as_utc(points.last_checkin_at) if points else None
    streak_tier = config.streak.tier_for(streak)
    next_tier = config.streak.next_tier(streak)

    return {
        "user_id": user_id,
        "total_points": sum(balances.values()),
        "balances": balances,
        "multipliers": {**breakdown.as_metadata(), "total": str(breakdown.total)},
        "breakdown": {
            key: {"base": value.base, "bonus": value.bonus, "total": value.total}
            for key, value in ledger.by_type.items()
        },
        "total_base": sum(value.base for value in ledger.by_type.values()),
        "total_bonus": sum(value.bonus for value in ledger.by_type.values()),
        "checkin": {
            "streak": streak,
            "streak_tier": streak_tier.name,
            "last_checkin_at": last_checkin,
            "next_checkin_at": (
                last_checkin + timedelta(hours=settings.checkin_interval_hours) if last_checkin else None
            ),
            "next_tier_at": next_tier.threshold if next_tier else None,
        },
    }
