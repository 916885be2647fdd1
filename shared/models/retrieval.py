"""Request and result models of the message retrieval operation."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from shared.models.conversation import SelectedMessage


class BlobRequest(BaseModel):
    """
    One stored blob and the flat message indices wanted from it.

    Attributes:
        blob_id:         Patch or blob id in the blob store.
        file_id:         Ledger object id of the file (echoed back, not resolved).
        policy_id:       Access policy used for decryption.
        message_indices: Flat indices as stored in vector metadata; None requests every message.
    """

    model_config = ConfigDict(populate_by_name=True)

    blob_id: str = Field(alias="walrusBlobId", min_length=1)
    file_id: str = Field(alias="onChainFileObjId", min_length=1)
    policy_id: str = Field(alias="policyObjectId", min_length=1)
    message_indices: list[int] | None = Field(default=None, alias="messageIndices")

    def get_group_key(self) -> tuple[str, str, str]:
        return self.blob_id, self.file_id, self.policy_id


class RetrievedMessage(BaseModel):
    blob_id: str
    file_id: str
    policy_id: str
    message_index: int | None = None
    status: Literal["success", "failed"]
    message: SelectedMessage | None = None
    envelope_id: str | None = None
    error: str | None = None


class RetrievalResult(BaseModel):
    """The JSON document returned after one retrieval run."""

    status: Literal["success", "failed"]
    operation: str = "retrieve-by-blob-ids"
    requested_pairs: list[BlobRequest] = []
    results: list[RetrievedMessage] = []
    total_files_processed: int = 0
    total_messages_retrieved: int = 0
    successful_retrievals: int = 0
    failed_retrievals: int = 0
    error: str | None = None
    summary: dict[str, Any] = {}

    def get_exit_code(self) -> int:
        return 1 if self.status == "failed" else 0
