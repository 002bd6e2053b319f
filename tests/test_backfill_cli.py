import json
from contextlib import asynccontextmanager

import pytest

from poolsync.cli import backfill as cli
from poolsync.services.events import BatchCounts, BatchSummary


async def _no_dispose():
    return None


def test_parse_args_with_flags() -> None:
    args = cli.parse_args(["--from-block", "10", "--to-block", "20", "--chunk-size", "5", "--contract", "0xabc"])
    assert args.from_block == 10
    assert args.to_block == 20
    assert args.chunk_size == 5
    assert args.contract == "0xabc"
    assert args.incremental is False
    assert args.log_level == "INFO"


@pytest.mark.asyncio
async def test_run_requires_from_block(monkeypatch) -> None:
    class _Service:
        pass

    monkeypatch.setattr(cli, "EventBackfillService", _Service)
    monkeypatch.setattr(cli, "dispose_engine", _no_dispose)

    with pytest.raises(SystemExit):
        await cli._run(cli.parse_args([]))


@pytest.mark.asyncio
async def test_run_backfill_prints_result(monkeypatch, capsys) -> None:
    calls = []

    class _Service:
        async def backfill(self, from_block, to_block, contract=None, chunk_size=None):
            calls.append((from_block, to_block, contract, chunk_size))
            return {"status": "completed", "counts": {"found": 0}}

    monkeypatch.setattr(cli, "EventBackfillService", _Service)
    monkeypatch.setattr(cli, "dispose_engine", _no_dispose)

    await cli._run(cli.parse_args(["--from-block", "1", "--to-block", "9"]))

    assert calls == [(1, 9, None, None)]
    assert json.loads(capsys.readouterr().out)["status"] == "completed"


@pytest.mark.asyncio
async def test_run_reprocess_failed(monkeypatch, capsys) -> None:
    class _Ingestion:
        async def reprocess_failed(self, limit=None):
            return BatchSummary(processed=True, status="completed", counts=BatchCounts(found=limit))

    monkeypatch.setattr(cli, "EventIngestionService", _Ingestion)
    monkeypatch.setattr(cli, "dispose_engine", _no_dispose)

    await cli._run(cli.parse_args(["--reprocess-failed", "--limit", "3"]))

    output = json.loads(capsys.readouterr().out)
    assert output["found"] == 3
    assert output["status"] == "completed"


@pytest.mark.asyncio
async def test_run_stats(monkeypatch, capsys, db_session) -> None:
    @asynccontextmanager
    async def _fake_session():
        yield db_session

    monkeypatch.setattr(cli, "async_session", _fake_session)
    monkeypatch.setattr(cli, "dispose_engine", _no_dispose)

    await cli._run(cli.parse_args(["--stats"]))

    assert json.loads(capsys.readouterr().out)["total_runs"] == 0
