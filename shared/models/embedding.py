"""Embedding and vector store exchange models."""

from pydantic import BaseModel


class EmbeddingOutcome(BaseModel):
    """Result of embedding one text. Lists of outcomes keep the order of their input texts."""

    text: str
    vector: list[float] | None = None
    success: bool
    error: str | None = None


class VectorMetadata(BaseModel):
    """
    Metadata stored alongside each message vector.

    Attributes:
        message_id:           Id of the source message.
        flat_index:           Position of the message in the flattened patch.
        conversation_index:   Index of the conversation inside the patch.
        content_index:        Index of the message inside its conversation.
        user_id:              Owner of the conversation.
        chat_id:              Conversation id.
        from_id:              Sender of the message.
        source_patch_id:      Patch the message was decrypted from.
        policy_id:            Access policy that guards the source patch.
        embedding_dimensions: Length of the stored vector.
    """

    message_id: int | str
    flat_index: int
    conversation_index: int | None = None
    content_index: int | None = None
    user_id: str
    chat_id: str
    from_id: str | None = None
    source_patch_id: str
    policy_id: str
    embedding_dimensions: int


class VectorRecord(BaseModel):
    id: str
    vector: list[float]
    metadata: VectorMetadata


class StoreOutcome(BaseModel):
    """Result of storing one VectorRecord. Lists of outcomes keep the order of their input records."""

    id: str
    success: bool
    error: str | None = None
