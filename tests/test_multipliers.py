from decimal import Decimal

import pytest

from poolsync.config import Settings
from poolsync.models.database import User, UserNftHolding, UserPoints
from poolsync.services.multipliers import (
    DEFAULT_LEADERBOARD_TIERS,
    DEFAULT_LEVEL_TIERS,
    DEFAULT_STREAK_TIERS,
    MultiplierBreakdown,
    StepSchedule,
    load_multiplier_config,
    resolve_multipliers,
)


@pytest.mark.parametrize("table", [DEFAULT_LEVEL_TIERS, DEFAULT_LEADERBOARD_TIERS, DEFAULT_STREAK_TIERS])
def test_default_schedules_are_monotonic(table) -> None:
    schedule = StepSchedule.from_mapping(table)
    values = [schedule.multiplier_for(points) for points in range(0, 120_000, 250)]
    assert values == sorted(values)
    assert schedule.multiplier_for(0) == Decimal("1.0")


def test_streak_tier_lookup() -> None:
    config = load_multiplier_config(Settings())
    assert config.streak.tier_for(1).name == "Paper Hands"
    assert config.streak.tier_for(2).name == "Hodler"
    assert config.streak.tier_for(14).multiplier == Decimal("1.5")
    assert config.streak.tier_for(400).name == "Moon God"
    assert config.streak.next_tier(4).threshold == 8
    assert config.streak.next_tier(31) is None


def test_level_and_leaderboard_boundaries() -> None:
    config = load_multiplier_config(Settings())
    assert config.level.multiplier_for(9_999) == Decimal("1.0")
    assert config.level.multiplier_for(10_000) == Decimal("1.1")
    assert config.leaderboard.multiplier_for(50_000) == Decimal("1.5")


@pytest.mark.parametrize(
    "mapping",
    [
        {},
        {5: "1.0"},
        {0: "1.2", 10: "1.1"},
    ],
)
def test_invalid_schedules_are_rejected(mapping) -> None:
    with pytest.raises(ValueError):
        StepSchedule.from_mapping(mapping)


def test_breakdown_floors_product() -> None:
    breakdown = MultiplierBreakdown(level=Decimal("1.1"), streak=Decimal("1.25"), nft=Decimal("1.3"))
    assert breakdown.total == Decimal("1.7875")
    assert breakdown.apply(100) == 178
    assert MultiplierBreakdown().apply(75) == 75


def test_settings_override_tier_tables() -> None:
    config = load_multiplier_config(
        Settings(
            level_multiplier_tiers="0:1.0,100:2.0",
            nft_multipliers='{"Jerry": "1.5"}',
        )
    )
    assert config.level.multiplier_for(100) == Decimal("2.0")
    assert config.nft_multiplier("JERRY") == Decimal("1.5")
    assert config.nft_multiplier("stage-nft") == Decimal("1")
    assert config.nft_multiplier(None) == Decimal("1")


@pytest.mark.asyncio
async def test_nft_multiplier_requires_holding(db_session) -> None:
    holder = User(smart_wallet_address="0xaaaa000000000000000000000000000000000001", selected_nft_collection="jerry")
    pretender = User(smart_wallet_address="0xaaaa000000000000000000000000000000000002", selected_nft_collection="jerry")
    db_session.add_all([holder, pretender])
    await db_session.flush()
    db_session.add(UserNftHolding(user_id=holder.id, collection_id="jerry"))
    await db_session.commit()

    assert (await resolve_multipliers(db_session, holder.id)).nft == Decimal("1.3")
    assert (await resolve_multipliers(db_session, pretender.id)).nft == Decimal("1")


@pytest.mark.asyncio
async def test_resolve_uses_lifetime_points_and_streak(db_session) -> None:
    user = User(smart_wallet_address="0xaaaa000000000000000000000000000000000003")
    db_session.add(user)
    await db_session.flush()
    db_session.add(UserPoints(user_id=user.id, funded_points=20_000, raised_points=6_000, checkin_streak=4))
    await db_session.commit()

    breakdown = await resolve_multipliers(db_session, user.id)

    assert breakdown.level == Decimal("1.2")
    assert breakdown.leaderboard == Decimal("1.3")
    assert breakdown.streak == Decimal("1.25")
    assert breakdown.nft == Decimal("1")


@pytest.mark.asyncio
async def test_resolve_unknown_user_is_neutral(db_session) -> None:
    assert await resolve_multipliers(db_session, "missing") == MultiplierBreakdown()
