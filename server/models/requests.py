from pydantic import BaseModel, ConfigDict, Field

from shared.models.retrieval import BlobRequest


class EmbeddingIngestRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    quilt_id: str = Field(alias="quiltId", min_length=1)
    policy_id: str = Field(alias="policyObjectId", min_length=1)
    batch_size: int | None = Field(default=None, alias="batchSize", ge=1)
    timeout_secs: int = Field(default=300, ge=1)


class BlobIngestRequest(BaseModel):
    """Ingest a blob id that may name either a quilt or a single patch."""

    model_config = ConfigDict(populate_by_name=True)

    blob_id: str = Field(alias="blobId", min_length=1)
    policy_id: str = Field(alias="policyObjectId", min_length=1)
    batch_size: int | None = Field(default=None, alias="batchSize", ge=1)
    timeout_secs: int = Field(default=300, ge=1)


class RetrieveByBlobIdsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pairs: list[BlobRequest] = Field(alias="blobFilePairs", min_length=1)
