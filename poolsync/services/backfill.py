"""Backfill pool events from the chain with ``eth_getLogs``."""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import select
from web3 import Web3

from poolsync.config import settings
from poolsync.events.decoder import EVENT_TOPICS
from poolsync.events.models import RawLog
from poolsync.models.database import BlockchainIndexerState, utcnow
from poolsync.services.database import async_session
from poolsync.services.events import BatchSummary, EventIngestionService


logger = logging.getLogger(__name__)


def _hex(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(value)
    return str(value)


def log_to_raw(log: Any, network: str) -> RawLog:
    return RawLog.from_payload(
        {
            "address": str(log["address"]),
            "topics": [_hex(topic) for topic in log["topics"]],
            "data": _hex(log["data"]),
            "blockNumber": int(log["blockNumber"]),
            "transactionHash": _hex(log["transactionHash"]),
            "logIndex": int(log["logIndex"]),
            "removed": bool(log.get("removed", False)),
        },
        network,
    )


class EventBackfillService:
    def __init__(
        self,
        web3_client: Optional[Web3] = None,
        ingestion: Optional[EventIngestionService] = None,
        session_factory=None,
    ) -> None:
        self.network = settings.blockchain_network
        self.state_key = f"pool-events:{self.network}"
        self.session_factory = session_factory or async_session
        self.ingestion = ingestion or EventIngestionService(session_factory=self.session_factory)
        self.web3 = web3_client
        if self.web3 is None and settings.rpc_url:
            self.web3 = Web3(Web3.HTTPProvider(settings.rpc_url))
        self.enabled = self.web3 is not None

    def _require_web3(self) -> Web3:
        if self.web3 is None:
            raise RuntimeError("RPC_URL is not configured; cannot fetch logs")
        return self.web3

    def latest_block(self) -> int:
        return int(self._require_web3().eth.block_number)

    def fetch_logs(self, from_block: int, to_block: int, contract: Optional[str] = None) -> list[RawLog]:
        params: dict[str, Any] = {
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [list(EVENT_TOPICS)],
        }
        if contract:
            params["address"] = Web3.to_checksum_address(contract)
        logs = self._require_web3().eth.get_logs(params)
        raw_logs = [log_to_raw(log, self.network) for log in logs]
        raw_logs.sort(key=lambda raw: (raw.block_number, raw.log_index))
        return raw_logs

    async def backfill(
        self,
        from_block: int,
        to_block: Optional[int] = None,
        contract: Optional[str] = None,
        chunk_size: Optional[int] = None,
    ) -> dict:
        if to_block is None:
            to_block = self.latest_block()
        if from_block > to_block:
            raise ValueError(f"from_block {from_block} is after to_block {to_block}")
        chunk_size = max(int(chunk_size or settings.indexer_chunk_size), 1)

        totals = {"found": 0, "processed": 0, "skipped": 0, "failed": 0, "duplicates": 0}
        runs: list[int] = []
        start = from_block
        while start <= to_block:
            end = min(start + chunk_size - 1, to_block)
            summary = await self._backfill_chunk(start, end, contract)
            for key, value in summary.counts.to_dict().items():
                totals[key] += value
            if summary.sync_run_id is not None:
                runs.append(summary.sync_run_id)
            if not summary.processed:
                logger.error("Backfill stopped at blocks %s-%s: %s", start, end, summary.error)
                return {
                    "status": "failed",
                    "from_block": from_block,
                    "to_block": end,
                    "counts": totals,
                    "sync_run_ids": runs,
                    "error": summary.error,
                }
            start = end + 1

        return {
            "status": "completed",
            "from_block": from_block,
            "to_block": to_block,
            "counts": totals,
            "sync_run_ids": runs,
        }

    async def _backfill_chunk(self, start: int, end: int, contract: Optional[str]) -> BatchSummary:
        logs = self.fetch_logs(start, end, contract)
        logger.info("Fetched %s logs for blocks %s-%s", len(logs), start, end)
        if not logs:
            return BatchSummary(processed=True, status="empty")
        return await self.ingestion.process(
            logs,
            source="backfill",
            job_name="event_backfill",
            start_block=start,
            end_block=end,
        )

    async def index_once(self) -> dict:
        """Advance the incremental cursor by at most one chunk of confirmed blocks."""
        if not self.enabled:
            return {"status": "disabled"}

        max_indexable_block = self.latest_block() - settings.indexer_confirmations
        if max_indexable_block < settings.indexer_start_block:
            return {"status": "waiting"}

        async with self.session_factory() as db:
            state = await self._get_or_create_state(db)
            from_block = max(int(state.last_processed_block) + 1, settings.indexer_start_block)
            await db.commit()

        if from_block > max_indexable_block:
            return {"status": "idle", "last_processed_block": from_block - 1}

        to_block = min(from_block + settings.indexer_chunk_size - 1, max_indexable_block)
        summary = await self._backfill_chunk(from_block, to_block, None)
        if not summary.processed:
            return {
                "status": "failed",
                "from_block": from_block,
                "to_block": to_block,
                "error": summary.error,
            }

        async with self.session_factory() as db:
            state = await self._get_or_create_state(db)
            state.last_processed_block = to_block
            state.updated_at = utcnow()
            await db.commit()

        return {
            "status": "indexed",
            "from_block": from_block,
            "to_block": to_block,
            "processed_events": summary.counts.processed,
        }

    async def _get_or_create_state(self, db) -> BlockchainIndexerState:
        result = await db.execute(
            select(BlockchainIndexerState).where(BlockchainIndexerState.indexer_key == self.state_key)
        )
        state = result.scalar_one_or_none()
        if state:
            return state

        state = BlockchainIndexerState(
            indexer_key=self.state_key,
            network=self.network,
            last_processed_block=max(settings.indexer_start_block - 1, 0),
        )
        db.add(state)
        await db.flush()
        return state
