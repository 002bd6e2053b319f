from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.models.database import User


async def find_user_by_wallet(db: AsyncSession, address: Optional[str]) -> Optional[User]:
    if not address:
        return None
    result = await db.execute(
        select(User).where(func.lower(User.smart_wallet_address) == address.lower()).limit(1)
    )
    return result.scalar_one_or_none()


async def get_user(db: AsyncSession, user_id: str) -> Optional[User]:
    return await db.get(User, user_id)


async def adjust_funded_amount(db: AsyncSession, user_id: str, delta: int) -> None:
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(funded_amount=User.funded_amount + delta)
    )
