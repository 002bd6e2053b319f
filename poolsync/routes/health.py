from __future__ import annotations

from datetime import datetime, timezone
import time
from typing import Optional, Tuple

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from poolsync.config import settings
from poolsync.services.database import async_session

router = APIRouter()


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def check_database() -> Tuple[bool, Optional[float], Optional[str]]:
    start = time.perf_counter()
    try:
        async with async_session() as session:
            await session.execute(text("SELECT 1"))
        latency_ms = (time.perf_counter() - start) * 1000
        return True, latency_ms, None
    except Exception as exc:  # pragma: no cover - exercised via integration
        latency_ms = (time.perf_counter() - start) * 1000
        return False, latency_ms, str(exc)


def _payload(latency_ms: Optional[float]) -> dict:
    return {
        "version": settings.api_version,
        "network": settings.blockchain_network,
        "indexer_enabled": settings.indexer_enabled,
        "timestamp": utc_now_iso(),
        "database_latency_ms": round(latency_ms, 2) if latency_ms is not None else None,
    }


@router.get("/health")
async def health_check():
    """Always 200 so the container stays up; /health/ready is the strict probe."""
    ok, latency_ms, error = await check_database()
    payload = {"status": "ok" if ok else "degraded", "database": "ok" if ok else "unavailable"}
    payload.update(_payload(latency_ms))
    if not ok:
        payload["database_error"] = error
    return payload


@router.get("/health/ready")
async def readiness_check():
    ok, latency_ms, _ = await check_database()
    payload = {"status": "ready" if ok else "not_ready", "database": "ok" if ok else "error"}
    payload.update(_payload(latency_ms))
    if ok:
        return payload
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=payload)
