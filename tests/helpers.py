"""Builders for ABI-encoded pool contract logs used across tests."""
from __future__ import annotations

from eth_abi import encode

from poolsync.events.decoder import (
    POOL_CREATED_TOPIC,
    POOL_STATUS_UPDATED_TOPIC,
    TIER_COMMITTED_TOPIC,
)
from poolsync.events.models import RawLog

NETWORK = "monad-testnet"
FACTORY = "0x00000000000000000000000000000000000000fa"
POOL = "0x1111111111111111111111111111111111111111"
CREATOR = "0x2222222222222222222222222222222222222222"
COMMITTER = "0x3333333333333333333333333333333333333333"
USDC = "0x4444444444444444444444444444444444444444"


def tx(n: int) -> str:
    return "0x" + f"{n:064x}"


def address_topic(address: str) -> str:
    return "0x" + address.lower()[2:].rjust(64, "0")


def uint_topic(value: int) -> str:
    return "0x" + f"{value:064x}"


def pool_created_log(
    *,
    tx_hash: str = tx(1),
    block: int = 100,
    log_index: int = 0,
    pool: str = POOL,
    creator: str = CREATOR,
    name: str = "Stage Pool",
    unique_id: str = "pool-1",
    end_time: int = 1_900_000_000,
    target: int = 1_000_000_000,
    cap: int = 0,
    removed: bool = False,
) -> RawLog:
    data = encode(
        ["string", "string", "uint256", "address", "address", "address", "uint256", "uint256"],
        [name, unique_id, end_time, USDC, creator, creator, target, cap],
    )
    return RawLog(
        network=NETWORK,
        address=FACTORY,
        topics=(POOL_CREATED_TOPIC, address_topic(pool)),
        data="0x" + data.hex(),
        block_number=block,
        transaction_hash=tx_hash,
        log_index=log_index,
        removed=removed,
    )


def tier_committed_log(
    *,
    tx_hash: str = tx(2),
    block: int = 101,
    log_index: int = 0,
    pool: str = POOL,
    user: str = COMMITTER,
    tier_id: int = 1,
    amount: int = 5_000_000,
    removed: bool = False,
) -> RawLog:
    return RawLog(
        network=NETWORK,
        address=pool.lower(),
        topics=(TIER_COMMITTED_TOPIC, address_topic(user), uint_topic(tier_id)),
        data="0x" + encode(["uint256"], [amount]).hex(),
        block_number=block,
        transaction_hash=tx_hash,
        log_index=log_index,
        removed=removed,
    )


def status_updated_log(
    status: int,
    *,
    tx_hash: str = tx(3),
    block: int = 102,
    log_index: int = 0,
    pool: str = POOL,
    removed: bool = False,
) -> RawLog:
    return RawLog(
        network=NETWORK,
        address=pool.lower(),
        topics=(POOL_STATUS_UPDATED_TOPIC,),
        data="0x" + f"{status:064x}",
        block_number=block,
        transaction_hash=tx_hash,
        log_index=log_index,
        removed=removed,
    )


def as_payload(raw: RawLog) -> dict:
    return {
        "address": raw.address,
        "topics": list(raw.topics),
        "data": raw.data,
        "blockNumber": hex(raw.block_number),
        "transactionHash": raw.transaction_hash,
        "logIndex": hex(raw.log_index),
        "removed": raw.removed,
    }
