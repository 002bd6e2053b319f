"""Decode raw pool-contract logs into typed events.

Each known topic maps to an :class:`EventSchema` describing which fields live in
the indexed topics and which are ABI-encoded in ``data``. Decoding walks an
ordered list of strategies: full ABI decoding first, then manual extraction at
fixed 32-byte word offsets. Every strategy yields the same field mapping, so the
builders downstream do not care which one succeeded.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

from eth_abi import decode as abi_decode

from poolsync.events.models import (
    DecodeFailure,
    DecodeResult,
    PoolCreatedEvent,
    PoolStatusUpdatedEvent,
    RawLog,
    TierCommittedEvent,
    UnknownTopic,
)
from poolsync.exceptions import DecodeError


logger = logging.getLogger(__name__)

POOL_CREATED_TOPIC = "0xa6f06b3ba9a7796573bab39bc2643d47c32efadc0a504262e58b54cd9d633e2e"
TIER_COMMITTED_TOPIC = "0xd9861a9641141da7a608bb821575da486cc59cac5cf3f24e644633d8b9a051b5"
POOL_STATUS_UPDATED_TOPIC = "0x83f00c5c08fb55fde46aa16f1732a744093b07a1ca3909114ec61b978d4e5458"

WORD_HEX = 64
MAX_UINT8 = 0xFF


@dataclass(frozen=True)
class EventSchema:
    name: str
    topic: str
    indexed: tuple[tuple[str, str], ...]
    data: tuple[tuple[str, str], ...]

    @property
    def data_types(self) -> list[str]:
        return [abi_type for _, abi_type in self.data]


POOL_CREATED_SCHEMA = EventSchema(
    name="PoolCreated",
    topic=POOL_CREATED_TOPIC,
    indexed=(("pool", "address"),),
    data=(
        ("name", "string"),
        ("uniqueId", "string"),
        ("endTime", "uint256"),
        ("depositToken", "address"),
        ("owner", "address"),
        ("creator", "address"),
        ("targetAmount", "uint256"),
        ("capAmount", "uint256"),
    ),
)

TIER_COMMITTED_SCHEMA = EventSchema(
    name="TierCommitted",
    topic=TIER_COMMITTED_TOPIC,
    indexed=(("user", "address"), ("tierId", "uint256")),
    data=(("amount", "uint256"),),
)

POOL_STATUS_UPDATED_SCHEMA = EventSchema(
    name="PoolStatusUpdated",
    topic=POOL_STATUS_UPDATED_TOPIC,
    indexed=(),
    data=(("newStatus", "uint8"),),
)

EVENT_SCHEMAS: dict[str, EventSchema] = {
    schema.topic: schema
    for schema in (POOL_CREATED_SCHEMA, TIER_COMMITTED_SCHEMA, POOL_STATUS_UPDATED_SCHEMA)
}

EVENT_TOPICS = tuple(EVENT_SCHEMAS)


def _strip_hex(value: str) -> str:
    text = (value or "").strip()
    if text[:2].lower() == "0x":
        text = text[2:]
    return text.lower()


def _normalize(abi_type: str, value):
    if abi_type == "address":
        return str(value).lower()
    if abi_type.startswith("uint") or abi_type.startswith("int"):
        return int(value)
    return value


def _check_topic_count(schema: EventSchema, raw: RawLog) -> None:
    expected = 1 + len(schema.indexed)
    if len(raw.topics) < expected:
        raise DecodeError(f"expected {expected} topics, got {len(raw.topics)}")


class DecodeStrategy(Protocol):
    name: str

    def decode(self, schema: EventSchema, raw: RawLog) -> dict:
        ...


class AbiDecodeStrategy:
    """Full ABI decoding of topics and data with eth-abi."""

    name = "abi"

    def decode(self, schema: EventSchema, raw: RawLog) -> dict:
        _check_topic_count(schema, raw)
        fields: dict = {}
        try:
            for (field_name, abi_type), topic in zip(schema.indexed, raw.topics[1:]):
                (value,) = abi_decode([abi_type], bytes.fromhex(_strip_hex(topic)))
                fields[field_name] = _normalize(abi_type, value)
            if schema.data:
                values = abi_decode(schema.data_types, bytes.fromhex(_strip_hex(raw.data)))
                for (field_name, abi_type), value in zip(schema.data, values):
                    fields[field_name] = _normalize(abi_type, value)
        except DecodeError:
            raise
        except Exception as exc:
            raise DecodeError(str(exc)) from exc
        return fields


class ByteOffsetStrategy:
    """Manual extraction from fixed 32-byte word offsets.

    Tolerates payloads that strict ABI decoding rejects, such as non-zero
    padding after a string body. Integer words are still range checked, so
    both strategies agree on every value they accept.
    """

    name = "byte_offset"

    def decode(self, schema: EventSchema, raw: RawLog) -> dict:
        _check_topic_count(schema, raw)
        fields: dict = {}
        for (field_name, abi_type), topic in zip(schema.indexed, raw.topics[1:]):
            fields[field_name] = self._read_word(_strip_hex(topic).rjust(WORD_HEX, "0"), 0, abi_type)

        data = _strip_hex(raw.data)
        for index, (field_name, abi_type) in enumerate(schema.data):
            if abi_type == "string":
                fields[field_name] = self._read_string(data, index)
            else:
                fields[field_name] = self._read_word(data, index, abi_type)
        return fields

    @staticmethod
    def _word(data: str, index: int) -> str:
        start = index * WORD_HEX
        word = data[start : start + WORD_HEX]
        if len(word) != WORD_HEX:
            raise DecodeError(f"data too short for word {index}")
        return word

    def _read_word(self, data: str, index: int, abi_type: str):
        word = self._word(data, index)
        try:
            value = int(word, 16)
            if abi_type == "address":
                if value >> 160:
                    raise DecodeError(f"word {index} is not a padded address")
                return "0x" + word[24:].lower()
        except ValueError as exc:
            raise DecodeError(f"invalid hex in word {index}") from exc
        if abi_type == "uint8" and value > MAX_UINT8:
            raise DecodeError(f"word {index} overflows uint8: {value}")
        return value

    def _read_string(self, data: str, index: int) -> str:
        try:
            offset = int(self._word(data, index), 16) * 2
            length = int(data[offset : offset + WORD_HEX], 16) * 2
        except ValueError as exc:
            raise DecodeError(f"invalid string header at word {index}") from exc
        body = data[offset + WORD_HEX : offset + WORD_HEX + length]
        if len(body) != length:
            raise DecodeError(f"string at word {index} runs past end of data")
        try:
            return bytes.fromhex(body).decode("utf-8")
        except ValueError as exc:
            raise DecodeError(f"string at word {index} is not valid utf-8") from exc


def _build_pool_created(raw: RawLog, fields: dict) -> PoolCreatedEvent:
    return PoolCreatedEvent(
        raw=raw,
        pool_address=fields["pool"],
        name=fields["name"],
        unique_id=fields["uniqueId"],
        end_time=fields["endTime"],
        deposit_token=fields["depositToken"],
        owner=fields["owner"],
        creator=fields["creator"],
        target_amount=fields["targetAmount"],
        cap_amount=fields["capAmount"],
    )


def _build_tier_committed(raw: RawLog, fields: dict) -> TierCommittedEvent:
    return TierCommittedEvent(
        raw=raw,
        user=fields["user"],
        tier_id=fields["tierId"],
        amount=fields["amount"],
    )


def _build_pool_status_updated(raw: RawLog, fields: dict) -> PoolStatusUpdatedEvent:
    return PoolStatusUpdatedEvent(raw=raw, status_code=fields["newStatus"])


BUILDERS: dict[str, Callable[[RawLog, dict], object]] = {
    POOL_CREATED_TOPIC: _build_pool_created,
    TIER_COMMITTED_TOPIC: _build_tier_committed,
    POOL_STATUS_UPDATED_TOPIC: _build_pool_status_updated,
}


class EventDecoder:
    def __init__(self, strategies: Optional[Sequence[DecodeStrategy]] = None) -> None:
        self.strategies: tuple[DecodeStrategy, ...] = tuple(
            strategies or (AbiDecodeStrategy(), ByteOffsetStrategy())
        )

    def knows(self, topic: Optional[str]) -> bool:
        return bool(topic) and topic.lower() in EVENT_SCHEMAS

    def decode(self, raw: RawLog) -> DecodeResult:
        topic = (raw.topic0 or "").lower()
        schema = EVENT_SCHEMAS.get(topic)
        if schema is None:
            return UnknownTopic(raw=raw, topic=raw.topic0)

        errors: list[str] = []
        for strategy in self.strategies:
            try:
                fields = strategy.decode(schema, raw)
            except DecodeError as exc:
                errors.append(f"{strategy.name}: {exc}")
                continue
            if errors:
                logger.info(
                    "Decoded %s in tx %s with fallback strategy %s",
                    schema.name,
                    raw.transaction_hash,
                    strategy.name,
                )
            return BUILDERS[topic](raw, fields)

        logger.warning("Could not decode %s in tx %s: %s", schema.name, raw.transaction_hash, errors)
        return DecodeFailure(raw=raw, topic=topic, event_name=schema.name, errors=tuple(errors))
