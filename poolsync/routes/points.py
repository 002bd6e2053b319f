from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.models.schemas import CheckinResponse, MissionResponse, PointsSummaryResponse
from poolsync.services.database import get_db
from poolsync.services.points import (
    DAILY_CHECKIN_POINTS,
    MISSION_POINTS,
    award_mission_points,
    daily_checkin,
    get_points_summary,
)

router = APIRouter(prefix="/api/points", tags=["Points"])


@router.get("/{user_id}", response_model=PointsSummaryResponse)
async def get_points(user_id: str, db: AsyncSession = Depends(get_db)) -> PointsSummaryResponse:
    summary = await get_points_summary(db, user_id)
    if summary is None:
        raise HTTPException(status_code=404, detail="User not found")
    return PointsSummaryResponse.model_validate(summary)


@router.post("/{user_id}/checkin", response_model=CheckinResponse)
async def checkin(user_id: str, db: AsyncSession = Depends(get_db)):
    result = await daily_checkin(db, user_id)
    if result.status == "user_not_found":
        raise HTTPException(status_code=404, detail="User not found")
    if result.status != "awarded":
        await db.rollback()
        payload = CheckinResponse(
            success=False,
            basePoints=DAILY_CHECKIN_POINTS,
            newStreak=result.streak,
            nextAvailableAt=result.next_checkin_at,
            message="Daily check-in already claimed",
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=payload.model_dump(mode="json"),
        )

    await db.commit()
    return CheckinResponse(
        success=True,
        points=result.awarded,
        basePoints=result.base_amount,
        multiplier=str(result.multiplier),
        streakTier=result.streak_tier,
        newStreak=result.streak,
        nextAvailableAt=result.next_checkin_at,
        nextTierAt=result.next_tier_at,
        nextTierMultiplier=str(result.next_tier_multiplier) if result.next_tier_multiplier is not None else None,
    )


@router.post("/{user_id}/missions/{mission_id}", response_model=MissionResponse)
async def complete_mission(user_id: str, mission_id: str, db: AsyncSession = Depends(get_db)):
    if mission_id not in MISSION_POINTS:
        raise HTTPException(status_code=404, detail=f"Unknown mission '{mission_id}'")
    result = await award_mission_points(db, user_id, mission_id)
    if result.reason == "user_not_found":
        raise HTTPException(status_code=404, detail="User not found")
    if result.duplicate:
        await db.rollback()
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content=MissionResponse(success=False, missionId=mission_id, status="duplicate").model_dump(),
        )
    await db.commit()
    return MissionResponse(success=True, missionId=mission_id, status=result.status, points=result.awarded)
