from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.models.database import BlockchainPoolSyncRun, utcnow


logger = logging.getLogger(__name__)

RUN_RUNNING = "running"
RUN_COMPLETED = "completed"
RUN_FAILED = "failed"


@dataclass
class SyncCounts:
    found: int = 0
    processed: int = 0
    skipped: int = 0
    failed: int = 0


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _run_to_payload(run: BlockchainPoolSyncRun) -> dict:
    return {
        "id": run.id,
        "job_name": run.job_name,
        "source": run.source,
        "start_block": run.start_block,
        "end_block": run.end_block,
        "start_time": run.start_time,
        "end_time": run.end_time,
        "status": run.status,
        "events_found": run.events_found,
        "events_processed": run.events_processed,
        "events_skipped": run.events_skipped,
        "events_failed": run.events_failed,
        "duration_ms": run.duration_ms,
        "error_message": run.error_message,
        "metadata": run.metadata_json or {},
    }


async def start_sync_run(
    db: AsyncSession,
    job_name: str,
    source: str,
    start_block: Optional[int] = None,
    end_block: Optional[int] = None,
    metadata: Optional[dict] = None,
) -> int:
    run = BlockchainPoolSyncRun(
        job_name=job_name,
        source=source,
        start_block=start_block,
        end_block=end_block,
        start_time=utcnow(),
        status=RUN_RUNNING,
        metadata_json=metadata or {},
    )
    db.add(run)
    await db.commit()
    logger.info("Started sync run %s (%s, source=%s)", run.id, job_name, source)
    return run.id


async def complete_sync_run(
    db: AsyncSession,
    run_id: int,
    counts: SyncCounts,
    error_message: Optional[str] = None,
    failed: bool = False,
    metadata: Optional[dict] = None,
) -> bool:
    """Finalize a running sync run. Returns False if it is missing or already final."""
    run = await db.get(BlockchainPoolSyncRun, run_id)
    if run is None:
        logger.warning("Sync run %s not found", run_id)
        return False
    if run.status != RUN_RUNNING:
        logger.warning("Sync run %s is already %s", run_id, run.status)
        return False

    end_time = utcnow()
    duration_ms = int((end_time - _as_utc(run.start_time)).total_seconds() * 1000)
    values = {
        "end_time": end_time,
        "status": RUN_FAILED if failed else RUN_COMPLETED,
        "events_found": counts.found,
        "events_processed": counts.processed,
        "events_skipped": counts.skipped,
        "events_failed": counts.failed,
        "duration_ms": max(duration_ms, 0),
        "error_message": error_message,
    }
    if metadata:
        values[BlockchainPoolSyncRun.metadata_json] = {**(run.metadata_json or {}), **metadata}

    result = await db.execute(
        update(BlockchainPoolSyncRun)
        .where(BlockchainPoolSyncRun.id == run_id, BlockchainPoolSyncRun.status == RUN_RUNNING)
        .values(values)
    )
    await db.commit()
    if not result.rowcount:
        return False
    logger.info(
        "Sync run %s %s: found=%s processed=%s skipped=%s failed=%s",
        run_id,
        values["status"],
        counts.found,
        counts.processed,
        counts.skipped,
        counts.failed,
    )
    return True


async def get_recent_sync_runs(db: AsyncSession, limit: int = 20) -> list[dict]:
    result = await db.execute(
        select(BlockchainPoolSyncRun)
        .order_by(BlockchainPoolSyncRun.start_time.desc(), BlockchainPoolSyncRun.id.desc())
        .limit(limit)
    )
    return [_run_to_payload(run) for run in result.scalars().all()]


async def get_sync_stats(db: AsyncSession) -> dict:
    status_rows = await db.execute(
        select(BlockchainPoolSyncRun.status, func.count(BlockchainPoolSyncRun.id)).group_by(
            BlockchainPoolSyncRun.status
        )
    )
    by_status = {status: int(count) for status, count in status_rows.all()}

    since = utcnow() - timedelta(hours=24)
    recent = await db.execute(
        select(
            func.count(BlockchainPoolSyncRun.id),
            func.coalesce(func.sum(BlockchainPoolSyncRun.events_found), 0),
            func.coalesce(func.sum(BlockchainPoolSyncRun.events_processed), 0),
            func.coalesce(func.sum(BlockchainPoolSyncRun.events_skipped), 0),
            func.coalesce(func.sum(BlockchainPoolSyncRun.events_failed), 0),
            func.avg(BlockchainPoolSyncRun.duration_ms),
        ).where(BlockchainPoolSyncRun.start_time >= since)
    )
    runs, found, processed, skipped, failed, avg_duration = recent.one()

    last_result = await db.execute(
        select(BlockchainPoolSyncRun)
        .where(BlockchainPoolSyncRun.status != RUN_RUNNING)
        .order_by(BlockchainPoolSyncRun.end_time.desc())
        .limit(1)
    )
    last_run = last_result.scalar_one_or_none()

    return {
        "total_runs": sum(by_status.values()),
        "by_status": by_status,
        "last_24h": {
            "runs": int(runs or 0),
            "events_found": int(found or 0),
            "events_processed": int(processed or 0),
            "events_skipped": int(skipped or 0),
            "events_failed": int(failed or 0),
            "avg_duration_ms": int(avg_duration) if avg_duration is not None else None,
        },
        "last_run": _run_to_payload(last_run) if last_run else None,
    }
