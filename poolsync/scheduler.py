"""Background jobs: incremental log indexing and failed-event reprocessing."""
from __future__ import annotations

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from poolsync.config import settings
from poolsync.services.backfill import EventBackfillService
from poolsync.services.events import EventIngestionService

logger = logging.getLogger(__name__)


class IngestionScheduler:
    def __init__(self) -> None:
        self.scheduler = AsyncIOScheduler()
        self.ingestion = EventIngestionService()
        self.backfill = EventBackfillService(ingestion=self.ingestion)
        self._running = False

    async def start(self) -> None:
        if self._running:
            return
        logger.info("Starting ingestion scheduler...")

        self.scheduler.add_job(
            self._reprocess_loop,
            IntervalTrigger(seconds=max(60, settings.reprocess_interval_seconds)),
            id="reprocess_failed",
            name="Failed Event Reprocessing",
            replace_existing=True,
        )
        if settings.indexer_enabled and self.backfill.enabled:
            self.scheduler.add_job(
                self._index_loop,
                IntervalTrigger(seconds=max(10, settings.indexer_interval_seconds)),
                id="event_indexer",
                name="Pool Event Indexer",
                replace_existing=True,
            )

        self.scheduler.start()
        self._running = True
        logger.info("Scheduler started")

    async def stop(self) -> None:
        if not self._running:
            return
        logger.info("Stopping scheduler...")
        self.scheduler.shutdown(wait=True)
        self._running = False

    async def _index_loop(self) -> None:
        try:
            result = await self.backfill.index_once()
            if result.get("status") == "indexed":
                logger.info(
                    "Event indexer processed %s events (%s -> %s)",
                    result.get("processed_events"),
                    result.get("from_block"),
                    result.get("to_block"),
                )
            elif result.get("status") == "failed":
                logger.warning("Event indexer chunk failed: %s", result.get("error"))
        except Exception as exc:
            logger.exception("Event indexer job failed: %s", exc)

    async def _reprocess_loop(self) -> None:
        try:
            summary = await self.ingestion.reprocess_failed()
            if summary.status != "empty":
                logger.info("Reprocessed failed events: %s", summary.counts.to_dict())
        except Exception as exc:
            logger.exception("Reprocess job failed: %s", exc)


_scheduler: Optional[IngestionScheduler] = None


def get_scheduler() -> IngestionScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = IngestionScheduler()
    return _scheduler
