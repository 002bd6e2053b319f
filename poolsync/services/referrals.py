from __future__ import annotations

import logging
import secrets
import string
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.models.database import ReferralGrant, utcnow
from poolsync.services.points import (
    REFERRAL_POINTS_PER_USDC,
    AwardResult,
    PointType,
    award_points,
    points_from_amount,
)


logger = logging.getLogger(__name__)

CODE_PREFIX = "SF-"
CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
DEFAULT_GRANT_TTL = timedelta(days=7)
MAX_CODE_ATTEMPTS = 10


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def generate_referral_code() -> str:
    return CODE_PREFIX + "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))


def grant_is_redeemable(grant: ReferralGrant, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return grant.used_at is None and _as_utc(grant.expires_at) > now


async def create_referral_grant(
    db: AsyncSession,
    referrer_user_id: str,
    pool_address: str,
    ttl: timedelta = DEFAULT_GRANT_TTL,
) -> ReferralGrant:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = generate_referral_code()
        existing = await db.execute(select(ReferralGrant.id).where(ReferralGrant.code == code))
        if existing.first() is None:
            break
    else:
        raise RuntimeError("Could not generate a unique referral code")

    grant = ReferralGrant(
        code=code,
        referrer_user_id=referrer_user_id,
        pool_address=pool_address.lower(),
        expires_at=utcnow() + ttl,
    )
    db.add(grant)
    await db.flush()
    return grant


async def get_referral_grant(db: AsyncSession, code: str) -> Optional[ReferralGrant]:
    result = await db.execute(select(ReferralGrant).where(ReferralGrant.code == code.strip().upper()))
    return result.scalar_one_or_none()


async def list_referral_grants(db: AsyncSession, referrer_user_id: str) -> list[ReferralGrant]:
    result = await db.execute(
        select(ReferralGrant)
        .where(ReferralGrant.referrer_user_id == referrer_user_id)
        .order_by(ReferralGrant.created_at.desc(), ReferralGrant.id.desc())
    )
    return list(result.scalars().all())


async def claim_referral_grant(
    db: AsyncSession, code: str, referred_user_id: str
) -> Optional[ReferralGrant]:
    """Attach a referred user to an open grant. Returns None if the code is not claimable."""
    grant = await get_referral_grant(db, code)
    if grant is None or not grant_is_redeemable(grant):
        return None
    if grant.referrer_user_id == referred_user_id:
        return None
    if grant.referred_user_id and grant.referred_user_id != referred_user_id:
        return None

    claimed = await db.execute(
        update(ReferralGrant)
        .where(ReferralGrant.id == grant.id, ReferralGrant.referred_user_id.is_(None))
        .values(referred_user_id=referred_user_id)
    )
    if claimed.rowcount == 0 and grant.referred_user_id != referred_user_id:
        return None
    await db.refresh(grant)
    return grant


async def redeem_referral_for_commitment(
    db: AsyncSession,
    referred_user_id: str,
    pool_address: str,
    amount: int,
    tx_hash: str,
) -> Optional[AwardResult]:
    """Consume the referred user's open grant for this pool and reward the referrer.

    Commitments too small to earn a referral point leave the grant open.
    """
    base_amount = points_from_amount(amount, REFERRAL_POINTS_PER_USDC)
    if base_amount < 1:
        return None

    now = utcnow()
    result = await db.execute(
        select(ReferralGrant)
        .where(
            ReferralGrant.referred_user_id == referred_user_id,
            func.lower(ReferralGrant.pool_address) == pool_address.lower(),
            ReferralGrant.used_at.is_(None),
        )
        .order_by(ReferralGrant.created_at.asc())
    )
    grant = next((row for row in result.scalars().all() if grant_is_redeemable(row, now)), None)
    if grant is None:
        return None

    consumed = await db.execute(
        update(ReferralGrant)
        .where(ReferralGrant.id == grant.id, ReferralGrant.used_at.is_(None))
        .values(used_at=now, used_tx_hash=tx_hash)
    )
    if consumed.rowcount == 0:
        logger.info("Referral grant %s was already redeemed", grant.code)
        return None

    return await award_points(
        db,
        grant.referrer_user_id,
        PointType.REFERRAL,
        base_amount,
        "referral",
        metadata={
            "txHash": tx_hash,
            "poolAddress": pool_address.lower(),
            "referredUserId": referred_user_id,
            "grantCode": grant.code,
        },
    )
