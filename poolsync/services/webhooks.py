from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Optional

from poolsync.events.models import RawLog


logger = logging.getLogger(__name__)


def verify_alchemy_signature(raw_body: bytes, signature: Optional[str], signing_key: str) -> bool:
    """HMAC-SHA256 of the raw request body, hex encoded, as sent in ``x-alchemy-signature``."""
    if not signature or not signing_key:
        return False
    digest = hmac.new(signing_key.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature.strip().lower())


def _hex_index(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return hex(value)
    return value


def alchemy_logs_to_raw(payload: dict, network: str) -> list[RawLog]:
    """Flatten an Alchemy GraphQL (block.logs) notification into raw logs."""
    block = ((payload.get("event") or {}).get("data") or {}).get("block") or {}
    block_number = block.get("number")
    logs: list[RawLog] = []
    for entry in block.get("logs") or []:
        account = entry.get("account") or {}
        transaction = entry.get("transaction") or {}
        try:
            logs.append(
                RawLog.from_payload(
                    {
                        "address": account.get("address"),
                        "topics": entry.get("topics") or [],
                        "data": entry.get("data"),
                        "transactionHash": transaction.get("hash"),
                        "blockNumber": entry.get("blockNumber") or block_number or "0x0",
                        "logIndex": _hex_index(entry.get("index")),
                        "removed": entry.get("removed") is True,
                    },
                    network,
                )
            )
        except ValueError as exc:
            logger.warning("Dropping malformed Alchemy log: %s", exc)
    return logs


def _quicknode_entries(payload: Any) -> list[dict]:
    if isinstance(payload, list):
        return [entry for entry in payload if isinstance(entry, dict)]
    if isinstance(payload, dict):
        for key in ("events", "data", "logs", "result"):
            entries = payload.get(key)
            if isinstance(entries, list):
                return _quicknode_entries(entries)
    return []


def quicknode_payload_to_raw(payload: Any, network: str) -> list[RawLog]:
    """Accept a raw QuickNode stream (list of logs) or the filtered ``{"events": [...]}`` shape."""
    logs: list[RawLog] = []
    for entry in _quicknode_entries(payload):
        # Filtered stream events carry the emitter as contractAddress.
        if "address" not in entry and entry.get("contractAddress"):
            entry = {**entry, "address": entry["contractAddress"]}
        try:
            logs.append(RawLog.from_payload(entry, network))
        except ValueError as exc:
            logger.warning("Dropping malformed QuickNode log: %s", exc)
    return logs
