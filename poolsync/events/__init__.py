"""Pool contract log decoding."""

from poolsync.events.decoder import EVENT_TOPICS, EventDecoder
from poolsync.events.models import (
    DecodeFailure,
    HandlerResult,
    HandlerStatus,
    PoolCreatedEvent,
    PoolStatusUpdatedEvent,
    RawLog,
    TierCommittedEvent,
    UnknownTopic,
)

__all__ = [
    "EVENT_TOPICS",
    "EventDecoder",
    "DecodeFailure",
    "HandlerResult",
    "HandlerStatus",
    "PoolCreatedEvent",
    "PoolStatusUpdatedEvent",
    "RawLog",
    "TierCommittedEvent",
    "UnknownTopic",
]
