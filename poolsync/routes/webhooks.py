from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse

from poolsync.config import settings
from poolsync.exceptions import StoreUnavailableError
from poolsync.models.schemas import IngestionResponse
from poolsync.services.events import BatchSummary, EventIngestionService
from poolsync.services.webhooks import (
    alchemy_logs_to_raw,
    quicknode_payload_to_raw,
    verify_alchemy_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

_ingestion_service: Optional[EventIngestionService] = None


def get_ingestion_service() -> EventIngestionService:
    global _ingestion_service
    if _ingestion_service is None:
        _ingestion_service = EventIngestionService()
    return _ingestion_service


def summary_response(summary: BatchSummary):
    payload = IngestionResponse(
        success=summary.processed,
        status=summary.status,
        counts=summary.counts.to_dict(),
        results=summary.results,
        syncRunId=summary.sync_run_id,
        error=summary.error,
    )
    if summary.processed:
        return payload
    # Non-2xx so the provider redelivers the batch.
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=payload.model_dump(mode="json"),
    )


def _parse_json(raw_body: bytes) -> Any:
    try:
        return json.loads(raw_body or b"null")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from exc


async def _ingest(service: EventIngestionService, logs, job_name: str):
    if not logs:
        return IngestionResponse(success=True, status="empty", counts={})
    try:
        summary = await service.process(logs, source="webhook", job_name=job_name)
    except StoreUnavailableError as exc:
        logger.error("Webhook batch rejected, store unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Store unavailable") from exc
    return summary_response(summary)


@router.post("/alchemy/pool-tracking", response_model=IngestionResponse)
async def alchemy_pool_tracking(
    request: Request,
    signature: Optional[str] = Header(default=None, alias="x-alchemy-signature"),
    service: EventIngestionService = Depends(get_ingestion_service),
):
    raw_body = await request.body()
    if not verify_alchemy_signature(raw_body, signature, settings.alchemy_signing_key):
        logger.warning("Rejected Alchemy webhook with invalid signature")
        raise HTTPException(status_code=401, detail="Invalid signature")

    payload = _parse_json(raw_body)
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Expected a JSON object")
    logs = alchemy_logs_to_raw(payload, settings.blockchain_network)
    logger.info("Alchemy webhook delivered %s logs", len(logs))
    return await _ingest(service, logs, "alchemy_pool_tracking")


@router.post("/quicknode/pool-tracking", response_model=IngestionResponse)
async def quicknode_pool_tracking(
    request: Request,
    service: EventIngestionService = Depends(get_ingestion_service),
):
    payload = _parse_json(await request.body())
    logs = quicknode_payload_to_raw(payload, settings.blockchain_network)
    logger.info("QuickNode webhook delivered %s logs", len(logs))
    return await _ingest(service, logs, "quicknode_pool_tracking")
