from __future__ import annotations

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from poolsync.config import settings
from poolsync.exceptions import StoreUnavailableError
from poolsync.models.schemas import (
    BackfillRequest,
    ReprocessRequest,
    SyncRunSchema,
    SyncRunsResponse,
)
from poolsync.routes.webhooks import get_ingestion_service, summary_response
from poolsync.services.backfill import EventBackfillService
from poolsync.services.database import get_db
from poolsync.services.events import EventIngestionService
from poolsync.services.sync_tracking import get_recent_sync_runs, get_sync_stats


def require_admin_key(
    x_api_key: Optional[str] = Header(default=None, alias="x-api-key"),
    api_key: Optional[str] = Query(default=None, alias="apiKey"),
) -> None:
    expected = settings.backfill_api_key
    if not expected:
        raise HTTPException(status_code=503, detail="Admin API key is not configured")
    supplied = x_api_key or api_key
    if not supplied or not hmac.compare_digest(supplied, expected):
        raise HTTPException(status_code=401, detail="Invalid API key")


router = APIRouter(prefix="/admin", tags=["Admin"], dependencies=[Depends(require_admin_key)])


def get_backfill_service() -> EventBackfillService:
    return EventBackfillService(ingestion=get_ingestion_service())


@router.get("/blockchain-syncs", response_model=SyncRunsResponse)
async def list_blockchain_syncs(
    limit: int = Query(default=20, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> SyncRunsResponse:
    runs = await get_recent_sync_runs(db, limit=limit)
    stats = await get_sync_stats(db)
    return SyncRunsResponse(runs=[SyncRunSchema.model_validate(run) for run in runs], stats=stats)


@router.post("/backfill/events")
async def backfill_events(
    request: BackfillRequest,
    service: EventBackfillService = Depends(get_backfill_service),
) -> dict:
    if not service.enabled:
        raise HTTPException(status_code=503, detail="RPC_URL is not configured")
    try:
        if request.incremental:
            return await service.index_once()
        if request.fromBlock is None:
            raise HTTPException(status_code=400, detail="fromBlock is required")
        return await service.backfill(
            request.fromBlock,
            request.toBlock,
            contract=request.contract,
            chunk_size=request.chunkSize,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail="Store unavailable") from exc


@router.post("/events/reprocess")
async def reprocess_events(
    request: Optional[ReprocessRequest] = None,
    service: EventIngestionService = Depends(get_ingestion_service),
):
    limit = request.limit if request else None
    try:
        summary = await service.reprocess_failed(limit=limit)
    except StoreUnavailableError as exc:
        raise HTTPException(status_code=503, detail="Store unavailable") from exc
    return summary_response(summary)
