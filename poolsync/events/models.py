"""Typed records that flow through the ingestion pipeline."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Optional, Union


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity that may arrive as hex string, decimal string or int."""
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


@dataclass(frozen=True)
class RawLog:
    network: str
    address: str
    topics: tuple[str, ...]
    data: str
    block_number: int
    transaction_hash: str
    log_index: int
    removed: bool = False

    @property
    def topic0(self) -> Optional[str]:
        return self.topics[0] if self.topics else None

    @property
    def dedup_key(self) -> tuple[str, str, int]:
        return (self.network, self.transaction_hash, self.log_index)

    @classmethod
    def from_payload(cls, payload: dict, network: str) -> "RawLog":
        """Build from a webhook/RPC log dict (camelCase keys)."""
        address = payload.get("address")
        tx_hash = payload.get("transactionHash")
        if not address or not tx_hash:
            raise ValueError("Log payload is missing address or transactionHash")
        topics = tuple(str(topic).lower() for topic in (payload.get("topics") or []))
        return cls(
            network=network,
            address=str(address).lower(),
            topics=topics,
            data=str(payload.get("data") or "0x"),
            block_number=parse_quantity(payload.get("blockNumber")),
            transaction_hash=str(tx_hash).lower(),
            log_index=parse_quantity(payload.get("logIndex")),
            removed=payload.get("removed") is True,
        )

    @classmethod
    def from_record(cls, record) -> "RawLog":
        return cls(
            network=record.network,
            address=record.contract_address,
            topics=tuple(record.topics or ()),
            data=record.data or "0x",
            block_number=int(record.block_number),
            transaction_hash=record.transaction_hash,
            log_index=int(record.log_index),
            removed=bool(record.removed),
        )


@dataclass(frozen=True)
class PoolCreatedEvent:
    raw: RawLog
    pool_address: str
    name: str
    unique_id: str
    end_time: int
    deposit_token: str
    owner: str
    creator: str
    target_amount: int
    cap_amount: int

    event_name: ClassVar[str] = "PoolCreated"

    @property
    def topic(self) -> str:
        return self.raw.topic0 or ""


@dataclass(frozen=True)
class TierCommittedEvent:
    raw: RawLog
    user: str
    tier_id: int
    amount: int

    event_name: ClassVar[str] = "TierCommitted"

    @property
    def topic(self) -> str:
        return self.raw.topic0 or ""

    @property
    def pool_address(self) -> str:
        return self.raw.address


@dataclass(frozen=True)
class PoolStatusUpdatedEvent:
    raw: RawLog
    status_code: int

    event_name: ClassVar[str] = "PoolStatusUpdated"

    @property
    def topic(self) -> str:
        return self.raw.topic0 or ""

    @property
    def pool_address(self) -> str:
        return self.raw.address


DecodedEvent = Union[PoolCreatedEvent, TierCommittedEvent, PoolStatusUpdatedEvent]


@dataclass(frozen=True)
class UnknownTopic:
    raw: RawLog
    topic: Optional[str]


@dataclass(frozen=True)
class DecodeFailure:
    raw: RawLog
    topic: str
    event_name: str
    errors: tuple[str, ...]

    @property
    def message(self) -> str:
        return f"Failed to decode {self.event_name}: " + "; ".join(self.errors)


DecodeResult = Union[PoolCreatedEvent, TierCommittedEvent, PoolStatusUpdatedEvent, UnknownTopic, DecodeFailure]


class HandlerStatus(str, Enum):
    SUCCESS = "success"
    DUPLICATE = "duplicate"
    SKIPPED = "skipped"
    IGNORED = "ignored"
    ERROR = "error"


@dataclass
class HandlerResult:
    event: str
    status: HandlerStatus
    action: str
    error: Optional[str] = None
    retryable: bool = False
    details: dict = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is not HandlerStatus.ERROR and not self.retryable

    def to_dict(self) -> dict:
        payload = {
            "event": self.event,
            "status": self.status.value,
            "action": self.action,
        }
        if self.error:
            payload["error"] = self.error
        payload.update(self.details)
        return payload
