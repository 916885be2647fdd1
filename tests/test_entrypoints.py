"""
Tests for the command line runner and the HTTP API.
"""
import json
import time

import pytest
from fastapi.testclient import TestClient

from ingest import ingest_runner
from server.api_server import create_app
from services.patch_ingest.IngestContext import IngestClients
from shared.models.result import IngestResult
from shared.models.retrieval import RetrievalResult

from conftest import FakeBlobClient, FakeDecryptClient, FakeEmbedClient, FakeVectorClient, make_patches, raw_message, words


# ============================================================================
# ingest_runner
# ============================================================================

def test_parse_args_reads_flags(helper_config):
    args = ingest_runner.parse_args(["--quilt-id", "q", "--policy-object-id", "p", "--batch-size", "10"], helper_config)
    assert (args.quilt_id, args.policy_id, args.batch_size) == ("q", "p", 10)


def test_parse_args_falls_back_to_env(helper_config, monkeypatch):
    monkeypatch.setenv("INGEST_QUILT_ID", "env-quilt")
    monkeypatch.setenv("INGEST_POLICY_ID", "env-policy")
    args = ingest_runner.parse_args([], helper_config)
    assert (args.quilt_id, args.policy_id, args.batch_size) == ("env-quilt", "env-policy", None)


@pytest.mark.parametrize("argv", [
    ["--policy-id", "p"],
    ["--quilt-id", "q"],
    ["--quilt-id", "q", "--policy-id", "p", "--batch-size", "0"],
])
def test_parse_args_rejects_incomplete_input(helper_config, argv):
    with pytest.raises(SystemExit):
        ingest_runner.parse_args(argv, helper_config)


def test_parse_args_retrieve_by_blob_ids(helper_config):
    pairs = json.dumps([
        {"walrusBlobId": "b1", "onChainFileObjId": "f1", "policyObjectId": "p1", "messageIndices": [0, 3]},
        {"walrusBlobId": "b2", "onChainFileObjId": "f2", "policyObjectId": "p2"},
    ])
    args = ingest_runner.parse_args(["--operation", "retrieve-by-blob-ids", "--blob-file-pairs", pairs], helper_config)

    assert [r.blob_id for r in args.blob_requests] == ["b1", "b2"]
    assert args.blob_requests[0].message_indices == [0, 3]
    assert args.blob_requests[1].message_indices is None


@pytest.mark.parametrize("pairs", [
    "not json",
    "[]",
    json.dumps([{"walrusBlobId": "b1", "onChainFileObjId": "f1"}]),
    json.dumps([{"walrusBlobId": "b1", "onChainFileObjId": "f1", "policyObjectId": "p1", "messageIndices": 3}]),
])
def test_parse_args_rejects_bad_blob_file_pairs(helper_config, pairs):
    with pytest.raises(SystemExit):
        ingest_runner.parse_args(["--operation", "retrieve-by-blob-ids", "--blob-file-pairs", pairs], helper_config)


def test_parse_args_default_operation_requires_blob_id(helper_config):
    with pytest.raises(SystemExit):
        ingest_runner.parse_args(["--operation", "default", "--policy-id", "p"], helper_config)
    args = ingest_runner.parse_args(["--operation", "default", "--blob-id", "b", "--policy-id", "p"], helper_config)
    assert (args.operation, args.blob_id) == ("default", "b")


@pytest.mark.asyncio
async def test_run_ingest_setup_failure_yields_failed_result(helper_config, monkeypatch):
    monkeypatch.delenv("EMBED_ENGINE")

    result = await ingest_runner.run_ingest(helper_config, "q", "p")

    assert result.status == "failed"
    assert result.error.startswith("Setup failed:")
    assert result.get_exit_code() == 1
    assert result.summary["issues"]["errors_count"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status,exit_code", [("success", 0), ("partial", 0), ("failed", 1)])
async def test_main_prints_result_and_returns_exit_code(monkeypatch, capsys, status, exit_code):
    async def fake_run_ingest(config, quilt_id, policy_id, batch_size):
        return IngestResult(status=status, quilt_id=quilt_id)

    monkeypatch.setattr(ingest_runner, "run_ingest", fake_run_ingest)

    code = await ingest_runner.main(["--quilt-id", "q", "--policy-id", "p"])

    out = capsys.readouterr().out.splitlines()
    assert code == exit_code
    assert out[0] == ingest_runner.RESULT_START
    assert out[-1] == ingest_runner.RESULT_END
    assert json.loads(out[1])["status"] == status


# ============================================================================
# API server
# ============================================================================

class FakeClients(IngestClients):
    async def boot(self) -> None:
        pass

    async def healthcheck(self) -> None:
        pass

    async def close(self) -> None:
        pass


@pytest.fixture
def api_client(monkeypatch):
    monkeypatch.setenv("INGEST_TASK_DELAY_MS", "0")
    plaintext = {"chat_id": 1, "contents": [raw_message(1, words(16), ts=time.time() - 60)]}
    clients = FakeClients(
        blob_client=FakeBlobClient(patches=make_patches(1)),
        decrypt_client=FakeDecryptClient(plaintexts={"p0": plaintext}),
        embed_client=FakeEmbedClient(),
        vector_client=FakeVectorClient(),
    )
    with TestClient(create_app(clients=clients)) as client:
        yield client


def test_health(api_client):
    response = api_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_ingest_requires_api_key(api_client):
    response = api_client.post("/ingest/embedding", json={"quiltId": "q", "policyObjectId": "p"})
    assert response.status_code == 401

    response = api_client.post(
        "/ingest/embedding",
        json={"quiltId": "q", "policyObjectId": "p"},
        headers={"X-API-Key": "wrong"},
    )
    assert response.status_code == 401


def test_ingest_validates_body(api_client):
    response = api_client.post(
        "/ingest/embedding",
        json={"quiltId": "q", "policyObjectId": "p", "batchSize": 0},
        headers={"X-API-Key": "test-api-key-12345"},
    )
    assert response.status_code == 422


def test_ingest_runs_pipeline(api_client):
    response = api_client.post(
        "/ingest/embedding",
        json={"quiltId": "quilt-9", "policyObjectId": "policy-9", "batchSize": 5},
        headers={"X-API-Key": "test-api-key-12345"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["exit_code"] == 0
    assert body["data"]["status"] == "success"
    assert body["data"]["quilt_id"] == "quilt-9"
    assert body["data"]["total_processed_messages"] == 1
    assert body["data"]["summary"]["patches"]["fetched_successfully"] == 1


@pytest.mark.asyncio
async def test_main_dispatches_operations(monkeypatch, capsys):
    calls = []

    async def fake_run_ingest(config, quilt_id, policy_id, batch_size, detect_blob_type=False):
        calls.append(("ingest", quilt_id, detect_blob_type))
        return IngestResult(status="success", quilt_id=quilt_id)

    async def fake_run_retrieve(config, requests):
        calls.append(("retrieve", [r.blob_id for r in requests]))
        return RetrievalResult(status="success", requested_pairs=requests)

    monkeypatch.setattr(ingest_runner, "run_ingest", fake_run_ingest)
    monkeypatch.setattr(ingest_runner, "run_retrieve", fake_run_retrieve)
    pairs = json.dumps([{"walrusBlobId": "b1", "onChainFileObjId": "f1", "policyObjectId": "p1"}])

    assert await ingest_runner.main(["--operation", "default", "--blob-id", "b", "--policy-id", "p"]) == 0
    assert await ingest_runner.main(["--operation", "retrieve-by-blob-ids", "--blob-file-pairs", pairs]) == 0

    assert calls == [("ingest", "b", True), ("retrieve", ["b1"])]
    out = capsys.readouterr().out.splitlines()
    assert json.loads(out[-2])["operation"] == "retrieve-by-blob-ids"


def test_retrieve_by_blob_ids_endpoint(api_client):
    response = api_client.post(
        "/retrieve/by-blob-ids",
        json={"blobFilePairs": [{"walrusBlobId": "p0", "onChainFileObjId": "f0", "policyObjectId": "policy-9", "messageIndices": [0, 5]}]},
        headers={"X-API-Key": "test-api-key-12345"},
    )

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["successful_retrievals"] == 1
    assert data["failed_retrievals"] == 1
    assert data["results"][0]["message"]["flat_index"] == 0


def test_retrieve_by_blob_ids_requires_pairs(api_client):
    response = api_client.post("/retrieve/by-blob-ids", json={"blobFilePairs": []}, headers={"X-API-Key": "test-api-key-12345"})
    assert response.status_code == 422


def test_ingest_blob_endpoint_detects_quilt(api_client):
    response = api_client.post(
        "/ingest/blob",
        json={"blobId": "quilt-9", "policyObjectId": "policy-9"},
        headers={"X-API-Key": "test-api-key-12345"},
    )

    assert response.status_code == 200
    assert response.json()["data"]["source_type"] == "quilt"
    assert response.json()["data"]["total_processed_messages"] == 1
