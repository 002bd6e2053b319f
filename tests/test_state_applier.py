import pytest
from helpers import COMMITTER, CREATOR, POOL, pool_created_log, status_updated_log, tier_committed_log, tx
from sqlalchemy import func, select

from poolsync.events.decoder import EventDecoder
from poolsync.events.models import HandlerStatus
from poolsync.events.router import EventRouter
from poolsync.models.database import (
    Pool,
    PointTransaction,
    TierCommitment,
    User,
    UserNftHolding,
    UserPoints,
)


async def _seed_users(db, *, committer_nft: str | None = None) -> tuple[User, User]:
    creator = User(smart_wallet_address=CREATOR)
    committer = User(smart_wallet_address=COMMITTER, selected_nft_collection=committer_nft)
    db.add_all([creator, committer])
    await db.flush()
    if committer_nft:
        db.add(UserNftHolding(user_id=committer.id, collection_id=committer_nft))
    await db.commit()
    return creator, committer


async def _apply(db, raw):
    event = EventDecoder().decode(raw)
    result = await EventRouter().route(db, event)
    await db.commit()
    return result


async def _balance(db, user_id: str) -> UserPoints:
    result = await db.execute(select(UserPoints).where(UserPoints.user_id == user_id))
    row = result.scalar_one()
    await db.refresh(row)
    return row


async def _ledger_count(db) -> int:
    return (await db.execute(select(func.count(PointTransaction.id)))).scalar_one()


@pytest.mark.asyncio
async def test_pool_created_inserts_active_pool_and_awards_creator(db_session) -> None:
    creator, _ = await _seed_users(db_session)

    result = await _apply(db_session, pool_created_log())

    assert result.status is HandlerStatus.SUCCESS
    pool = (await db_session.execute(select(Pool))).scalar_one()
    assert pool.contract_address == POOL
    assert pool.status == "ACTIVE"
    assert pool.cap_amount is None
    assert pool.currency == "USDC"
    assert pool.creator_id == creator.id
    assert pool.ends_at is not None

    points = await _balance(db_session, creator.id)
    assert points.raised_points == 50


@pytest.mark.asyncio
async def test_pool_created_redelivery_is_duplicate(db_session) -> None:
    creator, _ = await _seed_users(db_session)
    await _apply(db_session, pool_created_log())

    result = await _apply(db_session, pool_created_log())

    assert result.status is HandlerStatus.DUPLICATE
    assert (await db_session.execute(select(func.count(Pool.id)))).scalar_one() == 1
    assert await _ledger_count(db_session) == 1
    assert (await _balance(db_session, creator.id)).raised_points == 50


@pytest.mark.asyncio
async def test_pool_created_reorg_deletes_pool(db_session) -> None:
    await _seed_users(db_session)
    await _apply(db_session, pool_created_log())

    result = await _apply(db_session, pool_created_log(removed=True))

    assert result.status is HandlerStatus.SUCCESS
    assert result.action == "removed"
    assert (await db_session.execute(select(func.count(Pool.id)))).scalar_one() == 0


@pytest.mark.asyncio
async def test_commitment_of_five_usdc(db_session) -> None:
    creator, committer = await _seed_users(db_session)
    await _apply(db_session, pool_created_log())

    result = await _apply(db_session, tier_committed_log(amount=5_000_000))

    assert result.status is HandlerStatus.SUCCESS
    pool = (await db_session.execute(select(Pool))).scalar_one()
    await db_session.refresh(pool)
    assert pool.raised_amount == 5_000_000
    await db_session.refresh(committer)
    assert committer.funded_amount == 5_000_000
    assert (await _balance(db_session, committer.id)).funded_points == 75
    assert (await _balance(db_session, creator.id)).raised_points == 50 + 125


@pytest.mark.asyncio
async def test_commitment_applies_nft_multiplier(db_session) -> None:
    _, committer = await _seed_users(db_session, committer_nft="jerry")
    await _apply(db_session, pool_created_log())

    await _apply(db_session, tier_committed_log(amount=5_000_000))

    # floor(75 * 1.3)
    assert (await _balance(db_session, committer.id)).funded_points == 97
    entry = (
        await db_session.execute(
            select(PointTransaction).where(PointTransaction.action_type == "funded:commitment")
        )
    ).scalar_one()
    assert entry.metadata_json["base_amount"] == 75
    assert entry.metadata_json["bonus_amount"] == 22
    assert entry.metadata_json["multipliers"]["nft"] == "1.3"


@pytest.mark.asyncio
async def test_commitment_redelivery_does_not_double_count(db_session) -> None:
    creator, committer = await _seed_users(db_session)
    await _apply(db_session, pool_created_log())
    await _apply(db_session, tier_committed_log())
    ledger_before = await _ledger_count(db_session)

    result = await _apply(db_session, tier_committed_log())

    assert result.status is HandlerStatus.DUPLICATE
    assert await _ledger_count(db_session) == ledger_before
    pool = (await db_session.execute(select(Pool))).scalar_one()
    await db_session.refresh(pool)
    assert pool.raised_amount == 5_000_000
    assert (await _balance(db_session, committer.id)).funded_points == 75


@pytest.mark.asyncio
async def test_commitment_reorg_restores_accumulators(db_session) -> None:
    _, committer = await _seed_users(db_session)
    await _apply(db_session, pool_created_log())
    await _apply(db_session, tier_committed_log(tx_hash=tx(10), amount=2_000_000))
    await _apply(db_session, tier_committed_log(tx_hash=tx(11), amount=3_000_000))

    result = await _apply(db_session, tier_committed_log(tx_hash=tx(11), amount=3_000_000, removed=True))

    assert result.details["deleted"] == 1
    pool = (await db_session.execute(select(Pool))).scalar_one()
    await db_session.refresh(pool)
    assert pool.raised_amount == 2_000_000
    await db_session.refresh(committer)
    assert committer.funded_amount == 2_000_000
    hashes = (await db_session.execute(select(TierCommitment.blockchain_tx_hash))).scalars().all()
    assert hashes == [tx(10)]

    # A second removal for the same transaction is a no-op.
    again = await _apply(db_session, tier_committed_log(tx_hash=tx(11), amount=3_000_000, removed=True))
    assert again.details["deleted"] == 0
    await db_session.refresh(pool)
    assert pool.raised_amount == 2_000_000


@pytest.mark.asyncio
async def test_commitment_before_pool_is_retryable_skip(db_session) -> None:
    await _seed_users(db_session)

    result = await _apply(db_session, tier_committed_log())

    assert result.status is HandlerStatus.SKIPPED
    assert result.retryable is True
    assert (await db_session.execute(select(func.count(TierCommitment.id)))).scalar_one() == 0


@pytest.mark.asyncio
async def test_commitment_from_unknown_wallet_still_counts_toward_pool(db_session) -> None:
    creator, _ = await _seed_users(db_session)
    await _apply(db_session, pool_created_log())

    result = await _apply(
        db_session,
        tier_committed_log(user="0x9999999999999999999999999999999999999999", amount=1_000_000),
    )

    assert result.status is HandlerStatus.SUCCESS
    pool = (await db_session.execute(select(Pool))).scalar_one()
    await db_session.refresh(pool)
    assert pool.raised_amount == 1_000_000
    assert (await _balance(db_session, creator.id)).raised_points == 50 + 25


@pytest.mark.asyncio
async def test_status_executing_awards_creator_once(db_session) -> None:
    creator, _ = await _seed_users(db_session)
    await _apply(db_session, pool_created_log())
    await _apply(db_session, tier_committed_log(amount=5_000_000))

    first = await _apply(db_session, status_updated_log(7, tx_hash=tx(20)))
    second = await _apply(db_session, status_updated_log(7, tx_hash=tx(21)))

    assert first.status is HandlerStatus.SUCCESS
    assert second.status is HandlerStatus.SUCCESS
    pool = (await db_session.execute(select(Pool))).scalar_one()
    await db_session.refresh(pool)
    assert pool.status == "EXECUTING"
    # 50 creation + 125 commitment received + 150 executing bonus
    assert (await _balance(db_session, creator.id)).raised_points == 325
    executing_entries = (
        await db_session.execute(
            select(func.count(PointTransaction.id)).where(PointTransaction.action_type == "raised:pool_executing")
        )
    ).scalar_one()
    assert executing_entries == 1


@pytest.mark.asyncio
async def test_status_update_last_write_wins_and_ignores_removal(db_session) -> None:
    await _seed_users(db_session)
    await _apply(db_session, pool_created_log())

    await _apply(db_session, status_updated_log(2, tx_hash=tx(30)))
    removed = await _apply(db_session, status_updated_log(1, tx_hash=tx(31), removed=True))
    await _apply(db_session, status_updated_log(1, tx_hash=tx(32)))

    assert removed.status is HandlerStatus.IGNORED
    pool = (await db_session.execute(select(Pool))).scalar_one()
    await db_session.refresh(pool)
    assert pool.status == "ACTIVE"


@pytest.mark.asyncio
async def test_unknown_status_code_is_an_error(db_session) -> None:
    await _seed_users(db_session)
    await _apply(db_session, pool_created_log())

    result = await _apply(db_session, status_updated_log(42))

    assert result.status is HandlerStatus.ERROR
    assert "42" in result.error
    pool = (await db_session.execute(select(Pool))).scalar_one()
    assert pool.status == "ACTIVE"
