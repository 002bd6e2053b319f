from __future__ import annotations

import re

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.models.schemas import (
    ReferralClaimRequest,
    ReferralGrantRequest,
    ReferralGrantSchema,
    ReferralGrantsResponse,
)
from poolsync.services.database import get_db
from poolsync.services.referrals import (
    claim_referral_grant,
    create_referral_grant,
    get_referral_grant,
    list_referral_grants,
)
from poolsync.services.users import get_user


router = APIRouter(prefix="/api/referrals", tags=["Referrals"])

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def normalize_address(address: str) -> str:
    if not ADDRESS_RE.match(address):
        raise HTTPException(status_code=422, detail="Invalid address")
    return address.lower()


async def _require_user(db: AsyncSession, user_id: str) -> None:
    if await get_user(db, user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")


@router.get(
    "/{user_id}/grants",
    response_model=ReferralGrantsResponse,
    summary="List referral grants created by a user",
)
async def referral_grants_for_user(
    user_id: str = Path(..., description="Referrer user id"),
    db: AsyncSession = Depends(get_db),
):
    await _require_user(db, user_id)
    grants = await list_referral_grants(db, user_id)
    return ReferralGrantsResponse(grants=[ReferralGrantSchema.model_validate(grant) for grant in grants])


@router.post(
    "/{user_id}/grants",
    response_model=ReferralGrantSchema,
    status_code=status.HTTP_201_CREATED,
    summary="Generate a single-use referral code for one pool",
)
async def generate_referral_grant(
    body: ReferralGrantRequest,
    user_id: str = Path(..., description="Referrer user id"),
    db: AsyncSession = Depends(get_db),
):
    pool_address = normalize_address(body.poolAddress)
    await _require_user(db, user_id)
    grant = await create_referral_grant(db, user_id, pool_address)
    payload = ReferralGrantSchema.model_validate(grant)
    await db.commit()
    return payload


@router.post(
    "/claim",
    response_model=ReferralGrantSchema,
    summary="Attach the calling user to a referral code",
)
async def claim_referral(body: ReferralClaimRequest, db: AsyncSession = Depends(get_db)):
    await _require_user(db, body.userId)
    if await get_referral_grant(db, body.code) is None:
        raise HTTPException(status_code=404, detail="Referral code not found")

    grant = await claim_referral_grant(db, body.code, body.userId)
    if grant is None:
        await db.rollback()
        raise HTTPException(status_code=409, detail="Referral code cannot be claimed")
    payload = ReferralGrantSchema.model_validate(grant)
    await db.commit()
    return payload
