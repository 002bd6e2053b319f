"""Batch ingestion of pool-contract logs.

A batch is recorded as one sync run. Raw logs are stored first (best effort,
conflict-ignore on ``(network, transaction_hash, log_index)``), then each log is
decoded, routed and applied in its own transaction, in delivery order. A single
bad log never aborts the batch; a timeout or an unreachable store does.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence, Union

from sqlalchemy import select, update
from sqlalchemy.exc import DBAPIError, InterfaceError, SQLAlchemyError

from poolsync.config import settings
from poolsync.events.decoder import EventDecoder
from poolsync.events.models import (
    DecodeFailure,
    HandlerResult,
    HandlerStatus,
    RawLog,
    UnknownTopic,
)
from poolsync.events.router import EventRouter
from poolsync.exceptions import StoreUnavailableError
from poolsync.models.database import BlockchainEvent, utcnow
from poolsync.services.database import async_session, insert_ignore
from poolsync.services.sync_tracking import SyncCounts, complete_sync_run, start_sync_run


logger = logging.getLogger(__name__)

RAW_PENDING = "pending"
RAW_PROCESSING = "processing"
RAW_PROCESSED = "processed"
RAW_FAILED = "failed"

BatchItem = Union[RawLog, dict]


@dataclass
class BatchCounts(SyncCounts):
    duplicates: int = 0

    def tally(self, result: HandlerResult) -> None:
        if result.status is HandlerStatus.ERROR:
            self.failed += 1
        elif result.status is HandlerStatus.SKIPPED:
            self.skipped += 1
        else:
            self.processed += 1
            if result.status is HandlerStatus.DUPLICATE:
                self.duplicates += 1

    def to_dict(self) -> dict:
        return {
            "found": self.found,
            "processed": self.processed,
            "skipped": self.skipped,
            "failed": self.failed,
            "duplicates": self.duplicates,
        }


@dataclass
class BatchSummary:
    processed: bool
    status: str
    counts: BatchCounts = field(default_factory=BatchCounts)
    results: list[dict] = field(default_factory=list)
    sync_run_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "status": self.status,
            "counts": self.counts.to_dict(),
            "results": self.results,
            "sync_run_id": self.sync_run_id,
            "error": self.error,
        }


def is_store_unavailable(exc: BaseException) -> bool:
    if isinstance(exc, StoreUnavailableError):
        return True
    if isinstance(exc, InterfaceError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (ConnectionError, OSError))


def _result_payload(raw: RawLog, result: HandlerResult) -> dict:
    return {
        "transaction_hash": raw.transaction_hash,
        "log_index": raw.log_index,
        "block_number": raw.block_number,
        **result.to_dict(),
    }


class EventIngestionService:
    def __init__(
        self,
        session_factory=None,
        decoder: Optional[EventDecoder] = None,
        router: Optional[EventRouter] = None,
        network: Optional[str] = None,
    ) -> None:
        self.session_factory = session_factory or async_session
        self.decoder = decoder or EventDecoder()
        self.router = router or EventRouter()
        self.network = network or settings.blockchain_network

    def _normalize(self, batch: Iterable[BatchItem]) -> tuple[list[RawLog], list[dict]]:
        logs: list[RawLog] = []
        invalid: list[dict] = []
        for item in batch:
            if isinstance(item, RawLog):
                logs.append(item)
                continue
            try:
                logs.append(RawLog.from_payload(item, self.network))
            except (TypeError, ValueError, AttributeError) as exc:
                invalid.append({"status": HandlerStatus.ERROR.value, "action": "invalid_payload", "error": str(exc)})
        return logs, invalid

    async def process(
        self,
        batch: Sequence[BatchItem],
        *,
        source: str = "webhook",
        job_name: Optional[str] = None,
        start_block: Optional[int] = None,
        end_block: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> BatchSummary:
        if not batch:
            return BatchSummary(processed=True, status="empty")

        logs, invalid = self._normalize(batch)
        counts = BatchCounts(found=len(batch), failed=len(invalid))
        results: list[dict] = list(invalid)

        if start_block is None and logs:
            start_block = min(raw.block_number for raw in logs)
        if end_block is None and logs:
            end_block = max(raw.block_number for raw in logs)

        try:
            async with self.session_factory() as db:
                run_id = await start_sync_run(
                    db,
                    job_name or f"{source}_ingest",
                    source,
                    start_block=start_block,
                    end_block=end_block,
                    metadata={"batch_size": len(batch)},
                )
        except SQLAlchemyError as exc:
            if is_store_unavailable(exc):
                raise StoreUnavailableError(f"Cannot start sync run: {exc}") from exc
            raise

        if timeout is None:
            timeout = settings.batch_timeout_seconds
        timeout = timeout if timeout and timeout > 0 else None

        failed = False
        error: Optional[str] = None
        try:
            await asyncio.wait_for(self._process_logs(logs, source, counts, results), timeout=timeout)
        except asyncio.TimeoutError:
            failed = True
            error = f"Batch timed out after {timeout}s"
            logger.error("Sync run %s timed out after %ss with %s/%s events done", run_id, timeout, len(results), len(batch))
        except StoreUnavailableError as exc:
            failed = True
            error = str(exc)
            logger.error("Sync run %s aborted, store unavailable: %s", run_id, exc)

        try:
            async with self.session_factory() as db:
                await complete_sync_run(
                    db,
                    run_id,
                    counts,
                    error_message=error,
                    failed=failed,
                    metadata={
                        "duplicates": counts.duplicates,
                        "unrouted": sum(self.router.unrouted.values()),
                    },
                )
        except SQLAlchemyError:
            logger.exception("Could not finalize sync run %s", run_id)

        return BatchSummary(
            processed=not failed,
            status="failed" if failed else "completed",
            counts=counts,
            results=results,
            sync_run_id=run_id,
            error=error,
        )

    async def _process_logs(
        self, logs: list[RawLog], source: str, counts: BatchCounts, results: list[dict]
    ) -> None:
        await self._persist_raw_logs(logs, source)
        for raw in logs:
            result = await self._process_one(raw)
            counts.tally(result)
            results.append(_result_payload(raw, result))

    async def _persist_raw_logs(self, logs: list[RawLog], source: str) -> None:
        if not logs:
            return
        async with self.session_factory() as db:
            try:
                stored = 0
                for raw in logs:
                    inserted = await insert_ignore(
                        db,
                        BlockchainEvent,
                        {
                            "network": raw.network,
                            "contract_address": raw.address,
                            "event_topic": raw.topic0,
                            "topics": list(raw.topics),
                            "data": raw.data,
                            "block_number": raw.block_number,
                            "transaction_hash": raw.transaction_hash,
                            "log_index": raw.log_index,
                            "removed": raw.removed,
                            "source": source,
                            "status": RAW_PENDING,
                            "created_at": utcnow(),
                        },
                        index_elements=["network", "transaction_hash", "log_index"],
                    )
                    stored += int(inserted)
                await db.commit()
                logger.debug("Stored %s/%s raw events", stored, len(logs))
            except SQLAlchemyError as exc:
                await db.rollback()
                if is_store_unavailable(exc):
                    raise StoreUnavailableError(f"Cannot persist raw events: {exc}") from exc
                logger.exception("Failed to persist raw events; continuing without them")

    async def _set_raw_status(
        self,
        db,
        raw: RawLog,
        status: str,
        error: Optional[str] = None,
        retryable: bool = False,
    ) -> None:
        values: dict[str, Any] = {"status": status, "error_message": error, "retryable": retryable}
        if status == RAW_PROCESSING:
            values["attempts"] = BlockchainEvent.attempts + 1
        if status in (RAW_PROCESSED, RAW_FAILED):
            values["processed_at"] = utcnow()
        await db.execute(
            update(BlockchainEvent)
            .where(
                BlockchainEvent.network == raw.network,
                BlockchainEvent.transaction_hash == raw.transaction_hash,
                BlockchainEvent.log_index == raw.log_index,
            )
            .values(values)
        )
        await db.commit()

    async def _apply(self, db, raw: RawLog) -> HandlerResult:
        decoded = self.decoder.decode(raw)
        if isinstance(decoded, UnknownTopic):
            return HandlerResult(event="unknown", status=HandlerStatus.SKIPPED, action="unknown_topic")
        if isinstance(decoded, DecodeFailure):
            return HandlerResult(
                event=decoded.event_name,
                status=HandlerStatus.ERROR,
                action="decode_failed",
                error=decoded.message,
            )
        return await self.router.route(db, decoded)

    async def _process_one(self, raw: RawLog) -> HandlerResult:
        async with self.session_factory() as db:
            try:
                await self._set_raw_status(db, raw, RAW_PROCESSING)
                result = await self._apply(db, raw)
                if result.ok:
                    await db.commit()
                else:
                    await db.rollback()
            except asyncio.CancelledError:
                await db.rollback()
                await self._release_interrupted(db, raw)
                raise
            except Exception as exc:
                await db.rollback()
                if is_store_unavailable(exc):
                    raise StoreUnavailableError(str(exc)) from exc
                logger.exception("Failed to apply log %s:%s", raw.transaction_hash, raw.log_index)
                result = HandlerResult(
                    event="unknown",
                    status=HandlerStatus.ERROR,
                    action="exception",
                    error=str(exc),
                    retryable=True,
                )

            try:
                await self._set_raw_status(
                    db,
                    raw,
                    RAW_PROCESSED if result.ok else RAW_FAILED,
                    result.error,
                    retryable=not result.ok and result.retryable,
                )
            except SQLAlchemyError as exc:
                await db.rollback()
                if is_store_unavailable(exc):
                    raise StoreUnavailableError(str(exc)) from exc
                logger.exception("Could not record status for %s:%s", raw.transaction_hash, raw.log_index)
        return result

    async def _release_interrupted(self, db, raw: RawLog) -> None:
        """Mark a log cut off by the batch timeout as failed so a later pass retries it."""
        try:
            await self._set_raw_status(db, raw, RAW_FAILED, "Interrupted by batch timeout", retryable=True)
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Could not release interrupted log %s:%s", raw.transaction_hash, raw.log_index)

    async def reprocess_failed(self, limit: Optional[int] = None) -> BatchSummary:
        """Re-run failed logs that can still succeed.

        Only rows marked retryable (missing dependency, interrupted, unexpected
        exception) are picked, and each row gets at most
        ``settings.reprocess_max_attempts`` processing attempts. Decode failures
        and unknown status codes stay failed for manual inspection.
        """
        limit = limit or settings.reprocess_batch_size
        async with self.session_factory() as db:
            rows = await db.execute(
                select(BlockchainEvent)
                .where(
                    BlockchainEvent.status == RAW_FAILED,
                    BlockchainEvent.retryable.is_(True),
                    BlockchainEvent.attempts < settings.reprocess_max_attempts,
                )
                .order_by(BlockchainEvent.block_number.asc(), BlockchainEvent.log_index.asc())
                .limit(limit)
            )
            logs = [RawLog.from_record(row) for row in rows.scalars().all()]
        if not logs:
            return BatchSummary(processed=True, status="empty")
        logger.info("Reprocessing %s failed events", len(logs))
        return await self.process(logs, source="manual", job_name="reprocess_failed")
