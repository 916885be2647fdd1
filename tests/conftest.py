"""Shared test fixtures for the patch ingest tests."""
import asyncio
import logging
import os
import random
from datetime import datetime, timezone

import pytest

from shared.helper.HelperConfig import HelperConfig
from shared.helper.IdUnmasker import IdUnmasker
from shared.logging.logging_setup import ColorLogger
from shared.models.config import IngestSettings
from shared.models.embedding import EmbeddingOutcome, StoreOutcome
from shared.models.patch import EnvelopeInfo, Patch
from services.patch_ingest.IngestContext import IngestContext

# server.api_server configures logging at import time
os.environ.setdefault("LOG_TO_FILE", "false")

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def mock_env_vars(monkeypatch):
    """Mock environment variables for all tests."""
    monkeypatch.setenv("LOG_TO_FILE", "false")
    monkeypatch.setenv("APP_API_KEY", "test-api-key-12345")
    monkeypatch.setenv("BLOB_ENGINE", "walrus")
    monkeypatch.setenv("BLOB_WALRUS_AGGREGATOR_URL", "http://walrus.test")
    monkeypatch.setenv("DECRYPT_ENGINE", "gateway")
    monkeypatch.setenv("DECRYPT_GATEWAY_BASE_URL", "http://gateway.test")
    monkeypatch.setenv("EMBED_ENGINE", "ollama")
    monkeypatch.setenv("EMBED_OLLAMA_BASE_URL", "http://ollama.test")
    monkeypatch.setenv("VECTOR_ENGINE", "qdrant")
    monkeypatch.setenv("VECTOR_QDRANT_BASE_URL", "http://qdrant.test")
    monkeypatch.setenv("VECTOR_QDRANT_COLLECTION", "messages")
    for key in ("ID_MASK_SALT", "INGEST_EXCLUDED_ACCOUNT_ID", "INGEST_QUILT_ID", "INGEST_POLICY_ID"):
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def helper_config():
    return HelperConfig(logger=ColorLogger(logging.getLogger("patch_ingest.test")))


@pytest.fixture
def rng():
    return random.Random(1234)


def words(n: int, prefix: str = "word") -> str:
    """Text of exactly n whitespace-separated words."""
    return " ".join(f"{prefix}{i}" for i in range(n))


def raw_message(msg_id, text, ts=None, from_id="7"):
    """Raw decrypted message as stored in a patch."""
    return {
        "id": msg_id,
        "fromId": {"userId": from_id},
        "date": ts if ts is not None else NOW.timestamp() - 60,
        "message": text,
        "out": False,
    }


# ============================================================================
# Fake collaborators
# ============================================================================

class FakeBlobClient:
    def __init__(self, patches=None, ciphertexts=None, list_error=None):
        self.patches = patches or []
        self.ciphertexts = ciphertexts or {}
        self.list_error = list_error
        self.fetch_calls: list[str] = []

    async def do_list_patches(self, quilt_id):
        if self.list_error:
            raise self.list_error
        return self.patches

    async def do_fetch_ciphertext(self, patch_id):
        self.fetch_calls.append(patch_id)
        value = self.ciphertexts.get(patch_id, patch_id.encode())
        if isinstance(value, Exception):
            raise value
        return value


class FakeDecryptClient:
    def __init__(self, plaintexts=None):
        self.plaintexts = plaintexts or {}

    async def do_parse_envelope(self, ciphertext):
        return EnvelopeInfo(id=f"env-{ciphertext.decode()}")

    async def do_decrypt(self, envelope_id, ciphertext, policy_id):
        value = self.plaintexts[ciphertext.decode()]
        if isinstance(value, Exception):
            raise value
        return value


class FakeEmbedClient:
    """Returns a 3-dimensional vector per text; texts containing fail_marker fail."""

    def __init__(self, fail_marker=None, dimensions=3):
        self.fail_marker = fail_marker
        self.dimensions = dimensions
        self.calls: list[list[str]] = []

    async def do_embed_batch(self, texts):
        self.calls.append(list(texts))
        await asyncio.sleep(0)
        outcomes = []
        for text in texts:
            if self.fail_marker and self.fail_marker in text:
                outcomes.append(EmbeddingOutcome(text=text, success=False, error="model overloaded"))
            else:
                outcomes.append(EmbeddingOutcome(text=text, vector=[0.1] * self.dimensions, success=True))
        return outcomes


class FakeVectorClient:
    def __init__(self, fail=False):
        self.fail = fail
        self.connected = False
        self.stored = []

    def is_connected(self):
        return self.connected

    async def connect(self):
        self.connected = True

    async def do_store_batch(self, records):
        if self.fail:
            return [StoreOutcome(id=r.id, success=False, error="collection is read-only") for r in records]
        self.stored.extend(records)
        return [StoreOutcome(id=r.id, success=True) for r in records]


@pytest.fixture
def make_context(helper_config):
    """Build an IngestContext around fake collaborators."""

    def _make(blob=None, decrypt=None, embed=None, vector=None, **settings):
        settings.setdefault("task_delay_ms", 0)
        return IngestContext(
            helper_config=helper_config,
            settings=IngestSettings(**settings),
            blob_client=blob or FakeBlobClient(),
            decrypt_client=decrypt or FakeDecryptClient(),
            embed_client=embed or FakeEmbedClient(),
            vector_client=vector or FakeVectorClient(),
            id_unmasker=IdUnmasker(helper_config=helper_config),
            quilt_id="quilt-1",
            policy_id="policy-1",
        )

    return _make


def make_patches(n: int) -> list[Patch]:
    return [Patch(patch_id=f"p{i}") for i in range(n)]
