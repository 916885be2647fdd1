"""
End-to-end tests of the ingest pipeline with fake collaborators.
"""
import asyncio
import random
from datetime import datetime, timezone

import pytest

from shared.clients.ClientError import ClientError
from services.patch_ingest.PatchIngestService import PatchIngestService

from conftest import FakeBlobClient, FakeDecryptClient, FakeEmbedClient, FakeVectorClient, make_patches, raw_message, words


def recent_ts(offset: int = 60) -> float:
    return datetime.now(timezone.utc).timestamp() - offset


def chat_plaintext(chat_id: int, texts: list[str]) -> dict:
    return {
        "chat_id": chat_id,
        "contents": [raw_message(i, text, ts=recent_ts(i + 1)) for i, text in enumerate(texts)],
    }


@pytest.fixture
def service(helper_config):
    return PatchIngestService(helper_config, rng=random.Random(7))


@pytest.mark.asyncio
async def test_ingest_success(service, make_context):
    blob = FakeBlobClient(patches=make_patches(3))
    decrypt = FakeDecryptClient(plaintexts={
        "p0": chat_plaintext(1, [words(16, "a"), words(30, "b"), "too short"]),
        "p1": chat_plaintext(2, [words(18, "c")]),
        "p2": {"chats": [chat_plaintext(3, []), chat_plaintext(4, [words(25, "d")])], "userId": 9},
    })
    vector = FakeVectorClient()
    context = make_context(blob=blob, decrypt=decrypt, vector=vector)

    result = await service.do_ingest(context, batch_size=2)

    assert result.status == "success"
    assert result.get_exit_code() == 0
    assert result.total_patches == 3
    assert result.processed_patches == 3
    assert result.failed_patches == 0
    assert result.total_processed_messages == 4
    assert result.successful_embeddings == 4
    assert [r.processed_count for r in result.patch_results] == [2, 1, 1]
    assert len(vector.stored) == 4
    assert {r.metadata.source_patch_id for r in vector.stored} == {"p0", "p1", "p2"}
    assert {r.metadata.policy_id for r in vector.stored} == {"policy-1"}
    assert result.summary["patches"]["fetched_successfully"] == 3
    assert result.summary["messages"]["total_processed"] == 4
    assert result.summary["issues"]["warnings_count"] == 2


@pytest.mark.asyncio
async def test_ingest_partial_when_some_patches_fail(service, make_context):
    blob = FakeBlobClient(
        patches=make_patches(3),
        ciphertexts={"p1": ClientError("fetchCiphertext", "HTTP 404: Not Found", status_code=404)},
    )
    decrypt = FakeDecryptClient(plaintexts={
        "p0": chat_plaintext(1, [words(16, "a")]),
        "p2": chat_plaintext(2, [words(16, "FAIL")]),
    })
    context = make_context(blob=blob, decrypt=decrypt, embed=FakeEmbedClient(fail_marker="FAIL"))

    result = await service.do_ingest(context)

    assert result.status == "partial"
    assert result.get_exit_code() == 0
    assert result.processed_patches == 1
    assert result.failed_patches == 2
    statuses = {r.patch_id: r.status for r in result.patch_results}
    assert statuses == {"p0": "success", "p1": "failed", "p2": "failed"}
    assert result.patch_results[1].error.startswith("Fetch failed: fetchCiphertext failed")

    summary = result.summary
    assert summary["patches"]["fetch_failed"] == 1
    assert summary["patches"]["fetched_successfully"] == 2
    assert summary["patches"]["processed_successfully"] == 1
    assert summary["patches"]["processing_failed"] == 1
    errors = {item["error"] for item in summary["issues"]["error_breakdown"]}
    assert "HTTP Not Found (404)" in errors


@pytest.mark.asyncio
async def test_ingest_retries_rate_limited_fetches(service, make_context, monkeypatch):
    monkeypatch.setattr("services.patch_ingest.RateLimiter.RateLimiter.get_retry_delay", staticmethod(lambda retry_count: 0))

    class FlakyBlob(FakeBlobClient):
        async def do_fetch_ciphertext(self, patch_id):
            self.fetch_calls.append(patch_id)
            if len(self.fetch_calls) == 1:
                raise ClientError("fetchCiphertext", "HTTP 429: Too Many Requests", status_code=429)
            return patch_id.encode()

    blob = FlakyBlob(patches=make_patches(1))
    decrypt = FakeDecryptClient(plaintexts={"p0": chat_plaintext(1, [words(16)])})
    context = make_context(blob=blob, decrypt=decrypt)

    result = await service.do_ingest(context)

    assert result.status == "success"
    assert blob.fetch_calls == ["p0", "p0"]


@pytest.mark.asyncio
async def test_ingest_fails_when_listing_fails(service, make_context):
    blob = FakeBlobClient(list_error=ClientError("listPatches", "HTTP 503: Service Unavailable", status_code=503))
    context = make_context(blob=blob)

    result = await service.do_ingest(context)

    assert result.status == "failed"
    assert result.get_exit_code() == 1
    assert result.total_patches == 0
    assert result.summary["issues"]["error_breakdown"][0]["error"] == "HTTP Service Unavailable (503)"


@pytest.mark.asyncio
async def test_ingest_fails_on_empty_quilt(service, make_context):
    result = await service.do_ingest(make_context(blob=FakeBlobClient(patches=[])))

    assert result.status == "failed"
    assert result.error == "No patches found in quilt"


@pytest.mark.asyncio
async def test_ingest_fails_when_every_patch_fails(service, make_context):
    blob = FakeBlobClient(patches=make_patches(2))
    decrypt = FakeDecryptClient(plaintexts={
        "p0": ClientError("decrypt", "no key servers approved the request"),
        "p1": ClientError("decrypt", "no key servers approved the request"),
    })

    result = await service.do_ingest(make_context(blob=blob, decrypt=decrypt))

    assert result.status == "failed"
    assert result.failed_patches == 2
    assert result.summary["issues"]["error_breakdown"] == [{"error": "Decryption Failed: Approval Error", "count": 2}]


@pytest.mark.asyncio
async def test_ingest_skips_excluded_account(service, make_context):
    blob = FakeBlobClient(patches=make_patches(1))
    decrypt = FakeDecryptClient(plaintexts={"p0": chat_plaintext(777, [words(16)])})
    embed = FakeEmbedClient()

    result = await service.do_ingest(make_context(blob=blob, decrypt=decrypt, embed=embed, excluded_account_id="777"))

    assert result.status == "success"
    assert result.total_processed_messages == 0
    assert embed.calls == []


@pytest.mark.asyncio
async def test_timed_out_ingest_stops_fetching(service, make_context):
    class SlowBlob(FakeBlobClient):
        async def do_fetch_ciphertext(self, patch_id):
            self.fetch_calls.append(patch_id)
            await asyncio.sleep(0.05)
            return patch_id.encode()

    blob = SlowBlob(patches=make_patches(4))
    context = make_context(blob=blob, max_concurrent=1)

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(service.do_ingest(context), timeout=0.01)
    await asyncio.sleep(0.2)

    assert blob.fetch_calls == ["p0"]


# ============================================================================
# do_ingest_blob
# ============================================================================

@pytest.mark.asyncio
async def test_ingest_blob_detects_quilt(service, make_context):
    blob = FakeBlobClient(patches=make_patches(2))
    decrypt = FakeDecryptClient(plaintexts={
        "p0": chat_plaintext(1, [words(16, "a")]),
        "p1": chat_plaintext(2, [words(16, "b")]),
    })

    result = await service.do_ingest_blob(make_context(blob=blob, decrypt=decrypt))

    assert result.status == "success"
    assert result.source_type == "quilt"
    assert result.total_patches == 2
    assert sorted(blob.fetch_calls) == ["p0", "p1"]


@pytest.mark.asyncio
async def test_ingest_blob_falls_back_to_single_patch(service, make_context):
    blob = FakeBlobClient(list_error=ClientError("listPatches", "HTTP 404: Not Found", status_code=404))
    decrypt = FakeDecryptClient(plaintexts={"quilt-1": chat_plaintext(1, [words(16, "a"), words(25, "b")])})
    vector = FakeVectorClient()

    result = await service.do_ingest_blob(make_context(blob=blob, decrypt=decrypt, vector=vector))

    assert result.status == "success"
    assert result.source_type == "patch"
    assert blob.fetch_calls == ["quilt-1"]
    assert result.total_patches == 1
    assert result.total_processed_messages == 2
    assert {r.metadata.source_patch_id for r in vector.stored} == {"quilt-1"}
    assert result.summary["patches"]["fetched_successfully"] == 1
    assert result.summary["issues"]["errors_count"] == 0


@pytest.mark.asyncio
async def test_ingest_blob_single_patch_fetch_failure(service, make_context):
    blob = FakeBlobClient(ciphertexts={"quilt-1": ClientError("fetchCiphertext", "HTTP 404: Not Found", status_code=404)})

    result = await service.do_ingest_blob(make_context(blob=blob))

    assert result.status == "failed"
    assert result.source_type == "patch"
    assert result.failed_patches == 1
    assert result.error == "Fetch failed: fetchCiphertext failed: HTTP 404: Not Found"
    assert result.summary["patches"]["fetch_failed"] == 1
