import hashlib
import hmac
import json

from fastapi.testclient import TestClient
from helpers import NETWORK, POOL, as_payload, status_updated_log, tier_committed_log, tx

from poolsync.config import settings
from poolsync.exceptions import StoreUnavailableError
from poolsync.main import app
from poolsync.routes.webhooks import get_ingestion_service
from poolsync.services.events import BatchCounts, BatchSummary
from poolsync.services.webhooks import (
    alchemy_logs_to_raw,
    quicknode_payload_to_raw,
    verify_alchemy_signature,
)


class DummyIngestion:
    def __init__(self, summary=None, error=None):
        self.summary = summary or BatchSummary(
            processed=True, status="completed", counts=BatchCounts(found=1, processed=1)
        )
        self.error = error
        self.batches = []

    async def process(self, logs, source="webhook", job_name=None, **_kwargs):
        self.batches.append({"logs": list(logs), "source": source, "job_name": job_name})
        if self.error:
            raise self.error
        return self.summary


def _alchemy_body(*raws) -> bytes:
    logs = []
    for raw in raws:
        logs.append(
            {
                "account": {"address": raw.address},
                "topics": list(raw.topics),
                "data": raw.data,
                "index": raw.log_index,
                "transaction": {"hash": raw.transaction_hash},
                "removed": raw.removed,
            }
        )
    payload = {"webhookId": "wh_1", "type": "GRAPHQL", "event": {"data": {"block": {"number": 101, "logs": logs}}}}
    return json.dumps(payload).encode()


def _sign(body: bytes, key: str = "secret") -> str:
    return hmac.new(key.encode(), body, hashlib.sha256).hexdigest()


def _client(service) -> TestClient:
    app.dependency_overrides[get_ingestion_service] = lambda: service
    return TestClient(app)


def teardown_function() -> None:
    app.dependency_overrides.clear()


def test_verify_alchemy_signature() -> None:
    body = b'{"hello": "world"}'
    assert verify_alchemy_signature(body, _sign(body), "secret") is True
    assert verify_alchemy_signature(body, _sign(body).upper(), "secret") is True
    assert verify_alchemy_signature(body, _sign(body, "other"), "secret") is False
    assert verify_alchemy_signature(body, None, "secret") is False
    assert verify_alchemy_signature(body, _sign(body), "") is False


def test_alchemy_payload_is_flattened() -> None:
    body = json.loads(_alchemy_body(tier_committed_log(log_index=3), status_updated_log(7)))

    logs = alchemy_logs_to_raw(body, NETWORK)

    assert [raw.log_index for raw in logs] == [3, 0]
    assert logs[0].block_number == 101
    assert logs[0].address == POOL
    assert logs[0].transaction_hash == tx(2)


def test_alchemy_payload_drops_malformed_entries() -> None:
    body = {"event": {"data": {"block": {"number": "0x10", "logs": [{"topics": []}]}}}}
    assert alchemy_logs_to_raw(body, NETWORK) == []
    assert alchemy_logs_to_raw({}, NETWORK) == []


def test_quicknode_payload_shapes() -> None:
    entry = as_payload(tier_committed_log())
    address = entry.pop("address")
    filtered = {**entry, "contractAddress": address}

    assert len(quicknode_payload_to_raw([as_payload(tier_committed_log())], NETWORK)) == 1
    assert len(quicknode_payload_to_raw({"events": [filtered]}, NETWORK)) == 1
    assert quicknode_payload_to_raw({"events": [filtered]}, NETWORK)[0].address == POOL
    assert quicknode_payload_to_raw({"data": {"nothing": 1}}, NETWORK) == []


def test_alchemy_webhook_rejects_bad_signature(monkeypatch) -> None:
    monkeypatch.setattr(settings, "alchemy_signing_key", "secret")
    service = DummyIngestion()
    client = _client(service)
    body = _alchemy_body(tier_committed_log())

    response = client.post(
        "/webhooks/alchemy/pool-tracking",
        content=body,
        headers={"x-alchemy-signature": _sign(body, "wrong")},
    )

    assert response.status_code == 401
    assert service.batches == []


def test_alchemy_webhook_ingests_signed_batch(monkeypatch) -> None:
    monkeypatch.setattr(settings, "alchemy_signing_key", "secret")
    service = DummyIngestion()
    client = _client(service)
    body = _alchemy_body(tier_committed_log(), status_updated_log(2))

    response = client.post(
        "/webhooks/alchemy/pool-tracking",
        content=body,
        headers={"x-alchemy-signature": _sign(body), "content-type": "application/json"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["counts"]["processed"] == 1
    assert len(service.batches[0]["logs"]) == 2
    assert service.batches[0]["job_name"] == "alchemy_pool_tracking"


def test_quicknode_webhook_failed_batch_is_503() -> None:
    summary = BatchSummary(processed=False, status="failed", error="Batch timed out after 1s")
    client = _client(DummyIngestion(summary=summary))

    response = client.post("/webhooks/quicknode/pool-tracking", json=[as_payload(tier_committed_log())])

    assert response.status_code == 503
    assert response.json()["success"] is False
    assert "timed out" in response.json()["error"]


def test_quicknode_webhook_store_unavailable_is_503() -> None:
    client = _client(DummyIngestion(error=StoreUnavailableError("down")))
    response = client.post("/webhooks/quicknode/pool-tracking", json={"events": [as_payload(tier_committed_log())]})
    assert response.status_code == 503


def test_quicknode_webhook_empty_and_invalid_json() -> None:
    service = DummyIngestion()
    client = _client(service)

    empty = client.post("/webhooks/quicknode/pool-tracking", json=[])
    invalid = client.post(
        "/webhooks/quicknode/pool-tracking",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert empty.status_code == 200
    assert empty.json()["status"] == "empty"
    assert invalid.status_code == 400
    assert service.batches == []
