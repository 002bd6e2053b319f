"""Points multiplier stack.

Four independent components are multiplied together: account level and
leaderboard position (both from lifetime points), check-in streak, and the
selected partner NFT. Tier tables are explicit ``threshold -> multiplier`` steps
and can be overridden from settings.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from typing import Mapping, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.config import Settings, settings as default_settings
from poolsync.models.database import User, UserNftHolding, UserPoints


ONE = Decimal("1")

DEFAULT_LEVEL_TIERS: dict[int, str] = {
    0: "1.0",
    10_000: "1.1",
    25_000: "1.2",
    50_000: "1.3",
    100_000: "1.4",
}

DEFAULT_LEADERBOARD_TIERS: dict[int, str] = {
    0: "1.0",
    5_000: "1.1",
    15_000: "1.2",
    25_000: "1.3",
    50_000: "1.5",
}

DEFAULT_STREAK_TIERS: dict[int, str] = {
    0: "1.0",
    2: "1.1",
    4: "1.25",
    8: "1.5",
    15: "1.75",
    31: "2.0",
}

STREAK_TIER_NAMES: dict[int, str] = {
    0: "Paper Hands",
    2: "Hodler",
    4: "Degen",
    8: "Diamond Chad",
    15: "Giga Whale",
    31: "Moon God",
}

DEFAULT_NFT_MULTIPLIERS: dict[str, str] = {
    "stage-nft": "1.1",
    "jerry": "1.3",
}


@dataclass(frozen=True)
class MultiplierTier:
    threshold: int
    multiplier: Decimal
    name: Optional[str] = None


@dataclass(frozen=True)
class StepSchedule:
    tiers: tuple[MultiplierTier, ...]

    def __post_init__(self) -> None:
        if not self.tiers:
            raise ValueError("A multiplier schedule needs at least one tier")
        if self.tiers[0].threshold != 0:
            raise ValueError("The first multiplier tier must start at 0")
        for lower, upper in zip(self.tiers, self.tiers[1:]):
            if upper.threshold <= lower.threshold:
                raise ValueError("Multiplier tier thresholds must be strictly increasing")
            if upper.multiplier < lower.multiplier:
                raise ValueError("Multiplier tiers must not decrease")

    @classmethod
    def from_mapping(
        cls,
        mapping: Mapping[int, object],
        names: Optional[Mapping[int, str]] = None,
    ) -> "StepSchedule":
        names = names or {}
        tiers = tuple(
            MultiplierTier(
                threshold=int(threshold),
                multiplier=Decimal(str(multiplier)),
                name=names.get(int(threshold)),
            )
            for threshold, multiplier in sorted(mapping.items(), key=lambda item: int(item[0]))
        )
        return cls(tiers=tiers)

    def tier_for(self, value: int) -> MultiplierTier:
        current = self.tiers[0]
        for tier in self.tiers:
            if value >= tier.threshold:
                current = tier
            else:
                break
        return current

    def multiplier_for(self, value: int) -> Decimal:
        return self.tier_for(value).multiplier

    def next_tier(self, value: int) -> Optional[MultiplierTier]:
        for tier in self.tiers:
            if tier.threshold > value:
                return tier
        return None


@dataclass(frozen=True)
class MultiplierBreakdown:
    level: Decimal = ONE
    leaderboard: Decimal = ONE
    streak: Decimal = ONE
    nft: Decimal = ONE

    @property
    def total(self) -> Decimal:
        return self.level * self.leaderboard * self.streak * self.nft

    def apply(self, base_amount: int) -> int:
        return int((Decimal(base_amount) * self.total).to_integral_value(rounding=ROUND_FLOOR))

    def as_metadata(self) -> dict:
        return {
            "level": str(self.level),
            "leaderboard": str(self.leaderboard),
            "streak": str(self.streak),
            "nft": str(self.nft),
        }


NO_MULTIPLIER = MultiplierBreakdown()


@dataclass(frozen=True)
class MultiplierConfig:
    level: StepSchedule
    leaderboard: StepSchedule
    streak: StepSchedule
    nft: dict[str, Decimal] = field(default_factory=dict)

    def nft_multiplier(self, collection_id: Optional[str]) -> Decimal:
        if not collection_id:
            return ONE
        return self.nft.get(collection_id.lower(), ONE)


def load_multiplier_config(config: Optional[Settings] = None) -> MultiplierConfig:
    config = config or default_settings
    nft = config.nft_multipliers or DEFAULT_NFT_MULTIPLIERS
    return MultiplierConfig(
        level=StepSchedule.from_mapping(config.level_multiplier_tiers or DEFAULT_LEVEL_TIERS),
        leaderboard=StepSchedule.from_mapping(
            config.leaderboard_multiplier_tiers or DEFAULT_LEADERBOARD_TIERS
        ),
        streak=StepSchedule.from_mapping(
            config.streak_multiplier_tiers or DEFAULT_STREAK_TIERS,
            names=STREAK_TIER_NAMES,
        ),
        nft={key.lower(): Decimal(str(value)) for key, value in nft.items()},
    )


async def _owned_nft_collection(db: AsyncSession, user: User) -> Optional[str]:
    if not user.selected_nft_collection:
        return None
    result = await db.execute(
        select(UserNftHolding.id).where(
            UserNftHolding.user_id == user.id,
            UserNftHolding.collection_id == user.selected_nft_collection,
        )
    )
    if result.scalar_one_or_none() is None:
        return None
    return user.selected_nft_collection


async def resolve_multipliers(
    db: AsyncSession,
    user_id: str,
    config: Optional[MultiplierConfig] = None,
) -> MultiplierBreakdown:
    """Derive the current multiplier stack for a user from stored state."""
    config = config or load_multiplier_config()

    user = await db.get(User, user_id)
    if user is None:
        return NO_MULTIPLIER

    points = await db.get(UserPoints, user_id)
    lifetime = points.total_points if points else 0
    streak = int(points.checkin_streak or 0) if points else 0
    collection = await _owned_nft_collection(db, user)

    return MultiplierBreakdown(
        level=config.level.multiplier_for(lifetime),
        leaderboard=config.leaderboard.multiplier_for(lifetime),
        streak=config.streak.multiplier_for(streak),
        nft=config.nft_multiplier(collection),
    )
