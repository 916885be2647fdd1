"""Embeds one patch's selected messages and stores them in the vector store.

The run is fail-fast per patch: the first failed embedding or storage
outcome aborts it, no batch is retried and no partial batch is committed.
"""

import uuid
from datetime import datetime, timezone

from shared.helper.HelperConfig import HelperConfig
from shared.models.conversation import MessagePosition, SelectedMessage
from shared.models.embedding import VectorMetadata, VectorRecord
from shared.models.result import BatchRunResult

from services.patch_ingest.ConcurrentBatchRunner import run_concurrent
from services.patch_ingest.IngestContext import IngestContext

DEFAULT_BATCH_SIZE = 50
DEFAULT_BATCH_CONCURRENCY = 4


class BatchFailure(Exception):
    """Aborts an orchestrator run. Carries the failing batch and message."""

    def __init__(self, batch_index: int, message_id: int | str | None, detail: str) -> None:
        self.batch_index = batch_index
        self.message_id = message_id
        self.detail = detail
        super().__init__(detail)


def _make_point_id(source_patch_id: str, message_id: int | str) -> str:
    """Deterministic UUID5 point id, so re-ingesting a patch overwrites its vectors."""
    return str(uuid.uuid5(uuid.NAMESPACE_OID, f"{source_patch_id}:{message_id}"))


def _format_timestamp(timestamp: float | None) -> str:
    if timestamp is None:
        return ""
    dt = datetime.fromtimestamp(timestamp, timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_embedding_line(message: SelectedMessage) -> str:
    """Render the text that is embedded for a message.

    Example:
        "Date: 2024-01-01T00:00:00.000Z, From User Id: 7, Message: hi, Conversation Id: 42, Owner User Id: 9"
    """
    return (
        f"Date: {_format_timestamp(message.timestamp)}, "
        f"From User Id: {message.from_id or ''}, "
        f"Message: {message.text or ''}, "
        f"Conversation Id: {message.chat_id or ''}, "
        f"Owner User Id: {message.user_id or ''}"
    )


class EmbeddingBatchOrchestrator:
    def __init__(self, helper_config: HelperConfig, batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY):
        self.logging = helper_config.get_logger()
        self.batch_concurrency = batch_concurrency

    def build_vector_records(
        self,
        batch: list[SelectedMessage],
        vectors: list[list[float]],
        index_map: dict[int, MessagePosition],
        source_patch_id: str,
        policy_id: str,
    ) -> list[VectorRecord]:
        records: list[VectorRecord] = []
        for message, vector in zip(batch, vectors):
            position = index_map.get(message.flat_index)
            records.append(VectorRecord(
                id=_make_point_id(source_patch_id, message.id),
                vector=vector,
                metadata=VectorMetadata(
                    message_id=message.id,
                    flat_index=message.flat_index,
                    conversation_index=position.conversation_index if position else None,
                    content_index=position.content_index if position else None,
                    user_id=message.user_id,
                    chat_id=message.chat_id,
                    from_id=message.from_id,
                    source_patch_id=source_patch_id,
                    policy_id=policy_id,
                    embedding_dimensions=len(vector),
                ),
            ))
        return records

    async def run(
        self,
        selected_messages: list[SelectedMessage],
        index_map: dict[int, MessagePosition],
        batch_size: int,
        context: IngestContext,
        source_patch_id: str,
    ) -> BatchRunResult:
        """Embed and store the selected messages of one patch.

        Args:
            selected_messages (list[SelectedMessage]): Messages chosen by MessageSelector.
            index_map (dict[int, MessagePosition]): Flat index to payload position.
            batch_size (int): Messages per embedding request.
            context (IngestContext): Provides the embed and vector clients and the policy id.
            source_patch_id (str): Patch the messages were decrypted from.

        Returns:
            BatchRunResult: "success" with aggregate counts, or "failed" with the failing message.
                processed_count on failure counts only batches before the failing one.
        """
        total = len(selected_messages)
        if not selected_messages:
            self.logging.info("No messages to process")
            return BatchRunResult(status="success", total_messages=0)

        batch_size = max(1, int(batch_size or DEFAULT_BATCH_SIZE))
        batches = [selected_messages[i:i + batch_size] for i in range(0, total, batch_size)]
        completed: dict[int, int] = {}
        embed_client = context.embed_client
        vector_client = context.vector_client

        self.logging.info("Processing %d selected messages in %d batches of %d", total, len(batches), batch_size)

        async def process_batch(batch: list[SelectedMessage], batch_index: int) -> None:
            self.logging.debug("Processing batch %d/%d (%d messages)", batch_index + 1, len(batches), len(batch))
            try:
                outcomes = await embed_client.do_embed_batch([build_embedding_line(m) for m in batch])
                if len(outcomes) != len(batch):
                    raise BatchFailure(
                        batch_index,
                        batch[min(len(outcomes), len(batch) - 1)].id,
                        f"Embedding provider returned {len(outcomes)} outcomes for {len(batch)} messages",
                    )
                for message, outcome in zip(batch, outcomes):
                    if not outcome.success or not outcome.vector:
                        raise BatchFailure(
                            batch_index,
                            message.id,
                            f"Failed to generate embedding for message {message.id}: {outcome.error or 'Unknown error'}",
                        )

                records = self.build_vector_records(
                    batch,
                    [outcome.vector for outcome in outcomes],
                    index_map,
                    source_patch_id,
                    context.policy_id,
                )

                if not vector_client.is_connected():
                    await vector_client.connect()
                stored = await vector_client.do_store_batch(records)
                for r, message in enumerate(batch):
                    outcome = stored[r] if r < len(stored) else None
                    if outcome is None or not outcome.success:
                        error = outcome.error if outcome and outcome.error else "Unknown error"
                        raise BatchFailure(batch_index, message.id, f"Failed to store vector for message {message.id}: {error}")
            except BatchFailure:
                raise
            except Exception as e:
                raise BatchFailure(batch_index, batch[0].id, str(e)) from e

            completed[batch_index] = len(batch)
            self.logging.debug("Batch %d/%d complete", batch_index + 1, len(batches))

        try:
            await run_concurrent(batches, process_batch, self.batch_concurrency)
        except BatchFailure as failure:
            self.logging.error("Processing failed: %s", failure.detail)
            done = sum(completed.values())
            return BatchRunResult(
                status="failed",
                processed_count=sum(size for idx, size in completed.items() if idx < failure.batch_index),
                total_messages=total,
                successful_embeddings=done,
                successful_vector_storages=done,
                failed_message_id=failure.message_id,
                failure_detail=failure.detail,
            )

        self.logging.info("All %d messages processed: %d embeddings, %d vectors stored", total, total, total)
        return BatchRunResult(
            status="success",
            processed_count=total,
            total_messages=total,
            successful_embeddings=total,
            successful_vector_storages=total,
        )
