"""Outcome models of the ingest pipeline stages."""

from typing import Any, Literal

from pydantic import BaseModel

from shared.models.patch import Patch


class PatchSelection(BaseModel):
    selected: list[Patch]
    original_count: int
    selected_count: int


class BatchRunResult(BaseModel):
    """
    Outcome of embedding and storing one patch's selected messages.

    Attributes:
        status:                     "success" when every batch was embedded and stored.
        processed_count:            Messages in batches that fully completed. On failure
                                    only batches that ended before the failing one count.
        successful_embeddings:      Embeddings produced by completed batches.
        successful_vector_storages: Vectors accepted by the store in completed batches.
        failed_message_id:          Id of the message whose embedding or storage failed.
        failure_detail:             Human-readable failure cause.
    """

    status: Literal["success", "failed"]
    processed_count: int = 0
    total_messages: int = 0
    successful_embeddings: int = 0
    successful_vector_storages: int = 0
    failed_message_id: int | str | None = None
    failure_detail: str | None = None


class PatchResult(BaseModel):
    patch_index: int
    patch_id: str
    status: Literal["success", "failed"]
    processed_count: int = 0
    successful_embeddings: int = 0
    successful_vector_storages: int = 0
    error: str | None = None


class IngestResult(BaseModel):
    """The JSON document returned to the host process after one ingest run."""

    status: Literal["success", "partial", "failed"]
    operation: str = "embedding"
    # set by blob ingests: whether the id resolved to a quilt or a single patch
    source_type: Literal["quilt", "patch"] | None = None
    quilt_id: str
    total_patches: int = 0
    processed_patches: int = 0
    failed_patches: int = 0
    total_processed_messages: int = 0
    successful_embeddings: int = 0
    error: str | None = None
    patch_results: list[PatchResult] = []
    summary: dict[str, Any] = {}

    def get_exit_code(self) -> int:
        """Process exit code for this result: 0 for "success" and "partial", 1 for "failed"."""
        return 1 if self.status == "failed" else 0


class RunStats(BaseModel):
    """Run-wide counters. Only ever incremented."""

    original_patch_count: int = 0
    selected_patch_count: int = 0
    fetch_success: int = 0
    fetch_failed: int = 0
    processed_patches: int = 0
    failed_patches: int = 0
    total_messages: int = 0
    successful_embeddings: int = 0
    successful_vector_storages: int = 0
