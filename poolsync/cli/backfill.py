#!/usr/bin/env python3
"""CLI for pool event backfill."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging

from poolsync.services.backfill import EventBackfillService
from poolsync.services.database import async_session, dispose_engine
from poolsync.services.events import EventIngestionService
from poolsync.services.sync_tracking import get_sync_stats


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


async def _run(args: argparse.Namespace) -> None:
    try:
        if args.stats:
            async with async_session() as db:
                _print(await get_sync_stats(db))
            return
        if args.reprocess_failed:
            summary = await EventIngestionService().reprocess_failed(limit=args.limit)
            _print(summary.counts.to_dict() | {"status": summary.status, "sync_run_id": summary.sync_run_id})
            return

        service = EventBackfillService()
        if args.incremental:
            _print(await service.index_once())
            return
        if args.from_block is None:
            raise SystemExit("--from-block is required unless --incremental, --reprocess-failed or --stats is used")
        _print(
            await service.backfill(
                args.from_block,
                args.to_block,
                contract=args.contract,
                chunk_size=args.chunk_size,
            )
        )
    finally:
        await dispose_engine()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill pool contract events")
    parser.add_argument("--from-block", type=int, help="First block to scan")
    parser.add_argument("--to-block", type=int, help="Last block to scan (default: latest)")
    parser.add_argument("--contract", help="Only fetch logs emitted by this address")
    parser.add_argument("--chunk-size", type=int, help="Blocks per eth_getLogs request")
    parser.add_argument("--incremental", action="store_true", help="Advance the stored cursor by one chunk")
    parser.add_argument("--reprocess-failed", action="store_true", help="Retry events stored as failed")
    parser.add_argument("--limit", type=int, help="Max events to reprocess")
    parser.add_argument("--stats", action="store_true", help="Print sync run statistics")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main() -> None:
    args = parse_args()
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(_run(args))


if __name__ == "__main__":
    main()
