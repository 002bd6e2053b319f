"""Apply decoded pool events to relational state.

Handlers are idempotent: a redelivered log is detected through the unique
transaction hash on ``pools`` and ``tier_commitments`` and returns a
``duplicate`` result before any accumulator is touched. Accumulators are only
changed with relative SQL updates. Reorg removals undo what the first
delivery applied, except for points already written to the ledger.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.events.models import (
    HandlerResult,
    HandlerStatus,
    PoolCreatedEvent,
    PoolStatusUpdatedEvent,
    TierCommittedEvent,
)
from poolsync.models.database import Pool, TierCommitment, utcnow
from poolsync.services.database import insert_ignore
from poolsync.services.points import (
    award_points_for_commitment,
    award_points_for_pool_creation,
    award_points_for_pool_executing,
)
from poolsync.services.referrals import redeem_referral_for_commitment
from poolsync.services.users import adjust_funded_amount, find_user_by_wallet


logger = logging.getLogger(__name__)

POOL_STATUS_MAP: dict[int, str] = {
    0: "INACTIVE",
    1: "ACTIVE",
    2: "PAUSED",
    3: "CLOSED",
    4: "FUNDED",
    5: "FULLY_FUNDED",
    6: "FAILED",
    7: "EXECUTING",
    8: "COMPLETED",
    9: "CANCELLED",
}

EXECUTING_STATUS_CODE = 7

POOL_STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "INACTIVE": frozenset({"ACTIVE"}),
    "ACTIVE": frozenset({"FUNDED", "FULLY_FUNDED", "FAILED", "PAUSED", "CLOSED", "CANCELLED"}),
    "PAUSED": frozenset({"ACTIVE", "CLOSED", "CANCELLED"}),
    "FUNDED": frozenset({"EXECUTING", "FULLY_FUNDED", "FAILED"}),
    "FULLY_FUNDED": frozenset({"EXECUTING", "FAILED"}),
    "EXECUTING": frozenset({"COMPLETED"}),
    "FAILED": frozenset(),
    "COMPLETED": frozenset(),
    "CLOSED": frozenset(),
    "CANCELLED": frozenset(),
}


def is_allowed_transition(current: Optional[str], new: str) -> bool:
    if current is None or current == new:
        return True
    return new in POOL_STATUS_TRANSITIONS.get(current, frozenset())


def _ends_at(end_time: int) -> Optional[datetime]:
    if not end_time:
        return None
    try:
        return datetime.fromtimestamp(int(end_time), tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


async def _find_pool(db: AsyncSession, pool_address: str) -> Optional[Pool]:
    result = await db.execute(
        select(Pool).where(func.lower(Pool.contract_address) == pool_address.lower())
    )
    return result.scalar_one_or_none()


async def handle_pool_created(
    db: AsyncSession, event: PoolCreatedEvent, is_removed: bool, block_number: int
) -> HandlerResult:
    tx_hash = event.raw.transaction_hash
    name = event.event_name

    if is_removed:
        result = await db.execute(delete(Pool).where(Pool.blockchain_tx_hash == tx_hash))
        logger.info("Reorg removed PoolCreated %s (%s rows deleted)", tx_hash, result.rowcount)
        return HandlerResult(
            event=name,
            status=HandlerStatus.SUCCESS,
            action="removed",
            details={"pool_address": event.pool_address, "deleted": int(result.rowcount or 0)},
        )

    creator = await find_user_by_wallet(db, event.creator)
    inserted = await insert_ignore(
        db,
        Pool,
        {
            "contract_address": event.pool_address.lower(),
            "name": event.name,
            "unique_id": event.unique_id or None,
            "creator_address": event.creator.lower(),
            "creator_id": creator.id if creator else None,
            "owner_address": event.owner.lower(),
            "deposit_token": event.deposit_token.lower(),
            "target_amount": event.target_amount,
            "cap_amount": event.cap_amount or None,
            "raised_amount": 0,
            "ends_at": _ends_at(event.end_time),
            "status": POOL_STATUS_MAP[1],
            "currency": "USDC",
            "blockchain_tx_hash": tx_hash,
            "blockchain_network": event.raw.network,
            "last_processed_block_number": block_number,
            "created_at": utcnow(),
            "updated_at": utcnow(),
        },
        index_elements=["blockchain_tx_hash"],
    )
    if not inserted:
        return HandlerResult(
            event=name,
            status=HandlerStatus.DUPLICATE,
            action="already_applied",
            details={"pool_address": event.pool_address},
        )

    details: dict = {"pool_address": event.pool_address}
    if creator is not None:
        award = await award_points_for_pool_creation(db, creator.id, event.pool_address, tx_hash)
        details["points"] = [award.to_dict()]
    else:
        logger.info("No user linked to pool creator %s; skipping creation points", event.creator)

    return HandlerResult(event=name, status=HandlerStatus.SUCCESS, action="created", details=details)


async def handle_tier_committed(
    db: AsyncSession, event: TierCommittedEvent, is_removed: bool, block_number: int
) -> HandlerResult:
    tx_hash = event.raw.transaction_hash
    name = event.event_name
    committer = await find_user_by_wallet(db, event.user)

    if is_removed:
        result = await db.execute(
            delete(TierCommitment).where(TierCommitment.blockchain_tx_hash == tx_hash)
        )
        deleted = int(result.rowcount or 0)
        if deleted:
            await db.execute(
                update(Pool)
                .where(func.lower(Pool.contract_address) == event.pool_address.lower())
                .values(raised_amount=Pool.raised_amount - event.amount, updated_at=utcnow())
            )
            if committer is not None:
                await adjust_funded_amount(db, committer.id, -event.amount)
        logger.info("Reorg removed TierCommitted %s (%s rows deleted)", tx_hash, deleted)
        return HandlerResult(
            event=name,
            status=HandlerStatus.SUCCESS,
            action="removed",
            details={"pool_address": event.pool_address, "deleted": deleted},
        )

    pool = await _find_pool(db, event.pool_address)
    if pool is None:
        return HandlerResult(
            event=name,
            status=HandlerStatus.SKIPPED,
            action="pool_not_found",
            error=f"Pool {event.pool_address} not found",
            retryable=True,
        )

    inserted = await insert_ignore(
        db,
        TierCommitment,
        {
            "user_address": event.user.lower(),
            "pool_address": event.pool_address.lower(),
            "tier_id": event.tier_id,
            "amount": event.amount,
            "blockchain_tx_hash": tx_hash,
            "blockchain_network": event.raw.network,
            "last_processed_block_number": block_number,
            "committed_at": utcnow(),
        },
        index_elements=["blockchain_tx_hash"],
    )
    if not inserted:
        return HandlerResult(
            event=name,
            status=HandlerStatus.DUPLICATE,
            action="already_applied",
            details={"pool_address": event.pool_address},
        )

    await db.execute(
        update(Pool)
        .where(Pool.id == pool.id)
        .values(
            raised_amount=Pool.raised_amount + event.amount,
            last_processed_block_number=block_number,
            updated_at=utcnow(),
        )
    )

    details: dict = {"pool_address": event.pool_address, "amount": str(event.amount)}
    if committer is not None:
        await adjust_funded_amount(db, committer.id, event.amount)
    else:
        logger.info("No user linked to committer %s; skipping funded accounting", event.user)

    awards = await award_points_for_commitment(
        db,
        committer.id if committer else None,
        pool.creator_id,
        event.amount,
        event.pool_address,
        tx_hash,
    )
    if committer is not None:
        referral = await redeem_referral_for_commitment(
            db, committer.id, event.pool_address, event.amount, tx_hash
        )
        if referral is not None:
            awards.append(referral)
    details["points"] = [award.to_dict() for award in awards]

    return HandlerResult(event=name, status=HandlerStatus.SUCCESS, action="committed", details=details)


async def handle_pool_status_updated(
    db: AsyncSession, event: PoolStatusUpdatedEvent, is_removed: bool, block_number: int
) -> HandlerResult:
    name = event.event_name

    if is_removed:
        return HandlerResult(event=name, status=HandlerStatus.IGNORED, action="removal_ignored")

    new_status = POOL_STATUS_MAP.get(event.status_code)
    if new_status is None:
        return HandlerResult(
            event=name,
            status=HandlerStatus.ERROR,
            action="unknown_status",
            error=f"Unknown pool status code {event.status_code}",
        )

    pool = await _find_pool(db, event.pool_address)
    if pool is None:
        return HandlerResult(
            event=name,
            status=HandlerStatus.SKIPPED,
            action="pool_not_found",
            error=f"Pool {event.pool_address} not found",
            retryable=True,
        )

    previous = pool.status
    if not is_allowed_transition(previous, new_status):
        logger.warning(
            "Pool %s moved %s -> %s outside the expected lifecycle",
            event.pool_address,
            previous,
            new_status,
        )

    await db.execute(
        update(Pool)
        .where(Pool.id == pool.id)
        .values(status=new_status, last_processed_block_number=block_number, updated_at=utcnow())
    )

    details: dict = {"pool_address": event.pool_address, "previous": previous, "status": new_status}
    if event.status_code == EXECUTING_STATUS_CODE and pool.creator_id:
        award = await award_points_for_pool_executing(
            db,
            pool.creator_id,
            event.pool_address,
            int(pool.raised_amount or 0),
            event.raw.transaction_hash,
        )
        details["points"] = [award.to_dict()]

    return HandlerResult(event=name, status=HandlerStatus.SUCCESS, action="status_updated", details=details)
