"""Message retrieval service.

Resolves vector search hits back to message text: every requested blob is
downloaded and decrypted once, decoded like an ingested patch and the
messages at the requested flat indices are returned.
"""

from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.config import IngestSettings
from shared.models.conversation import DecodedPayload, SelectedMessage
from shared.models.retrieval import BlobRequest, RetrievalResult, RetrievedMessage

from services.patch_ingest.IngestContext import IngestClients
from services.patch_ingest.PayloadDecoder import PayloadDecoder
from services.patch_ingest.RateLimiter import RateLimiter
from services.patch_ingest.RunAggregator import RunAggregator

BlobKey = tuple[str, str, str]


def flatten_messages(payload: DecodedPayload) -> list[SelectedMessage]:
    """Every message of every conversation, in the order that defines flat indices at ingest time."""
    messages: list[SelectedMessage] = []
    for conversation in payload.get_conversations():
        for message in conversation.messages:
            messages.append(SelectedMessage(
                **message.model_dump(),
                chat_id=conversation.chat_id,
                user_id=conversation.user_id,
                flat_index=len(messages),
            ))
    return messages


def group_requests(requests: list[BlobRequest]) -> dict[BlobKey, list[int] | None]:
    """Merge requests for the same blob, file and policy.

    Indices are deduplicated in first-seen order. A request without indices
    asks for every message and wins over any index list for the same blob.
    """
    groups: dict[BlobKey, list[int] | None] = {}
    for request in requests:
        key = request.get_group_key()
        if request.message_indices is None:
            groups[key] = None
        elif key not in groups:
            groups[key] = list(dict.fromkeys(request.message_indices))
        elif groups[key] is not None:
            groups[key].extend(i for i in request.message_indices if i not in groups[key])
    return groups


class PatchRetrievalService:
    def __init__(self, helper_config: HelperConfig) -> None:
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self._decoder = PayloadDecoder(helper_config=helper_config)

    async def do_retrieve(
        self,
        clients: IngestClients,
        requests: list[BlobRequest],
        settings: IngestSettings | None = None,
    ) -> RetrievalResult:
        """Fetch the requested messages.

        Failures are reported per requested index and never abort the run; a
        blob that cannot be fetched or decrypted fails all of its indices.

        Args:
            clients (IngestClients): Only the blob and decrypt clients are used.
            requests (list[BlobRequest]): Blobs and flat indices to resolve.
            settings (IngestSettings | None): Rate limiter tunables, read from env when omitted.

        Returns:
            RetrievalResult: Per-index outcomes plus the run summary. "failed" only when nothing was requested.
        """
        settings = settings or IngestSettings.from_helper_config(self._helper_config)
        aggregator = RunAggregator(helper_config=self._helper_config)
        aggregator.start()

        if not requests:
            aggregator.record_error("No blob requests given")
            return self._finish(aggregator, RetrievalResult(status="failed", error="No blob requests given"))

        groups = group_requests(requests)
        self.logging.info("Retrieving messages from %d unique blobs (%d requests)...", len(groups), len(requests))

        limiter = RateLimiter(
            helper_config=self._helper_config,
            max_concurrent=settings.max_concurrent,
            delay_ms=settings.task_delay_ms,
            max_retries=settings.max_retries,
        )
        keys = list(groups)
        fetched = await limiter.execute_all([self._make_fetch_operation(clients, blob_id, policy_id) for blob_id, _, policy_id in keys])

        results: list[RetrievedMessage] = []
        for key, outcome in zip(keys, fetched):
            aggregator.record_fetch_result(outcome.ok)
            indices = groups[key]
            if not outcome.ok:
                self.logging.error("Failed to process blob %s: %s", key[0], outcome.error)
                aggregator.record_error(outcome.error)
                results.extend(self._failed(key, index, str(outcome.error)) for index in (indices or [None]))
                continue
            envelope_id, plaintext = outcome.value
            messages = flatten_messages(self._decoder.decode(plaintext))
            results.extend(self._extract(key, envelope_id, messages, indices))

        succeeded = sum(1 for r in results if r.status == "success")
        result = RetrievalResult(
            status="success",
            requested_pairs=requests,
            results=results,
            total_files_processed=len(groups),
            total_messages_retrieved=len(results),
            successful_retrievals=succeeded,
            failed_retrievals=len(results) - succeeded,
        )
        self.logging.info(
            "Processed %d unique blobs, retrieved %d messages (%d successful, %d failed)",
            result.total_files_processed,
            result.total_messages_retrieved,
            result.successful_retrievals,
            result.failed_retrievals,
        )
        return self._finish(aggregator, result)

    ##########################################
    ################ HELPERS #################
    ##########################################

    def _make_fetch_operation(self, clients: IngestClients, blob_id: str, policy_id: str):
        async def fetch() -> tuple[str, Any]:
            ciphertext = await clients.blob_client.do_fetch_ciphertext(blob_id)
            envelope = await clients.decrypt_client.do_parse_envelope(ciphertext)
            return envelope.id, await clients.decrypt_client.do_decrypt(envelope.id, ciphertext, policy_id)
        return fetch

    def _extract(
        self,
        key: BlobKey,
        envelope_id: str,
        messages: list[SelectedMessage],
        indices: list[int] | None,
    ) -> list[RetrievedMessage]:
        blob_id, file_id, policy_id = key
        if indices is None:
            if not messages:
                return [self._failed(key, None, "No messages found in decrypted file")]
            self.logging.info("Retrieved all %d messages from %s", len(messages), blob_id)
            indices = list(range(len(messages)))

        extracted: list[RetrievedMessage] = []
        for index in indices:
            if 0 <= index < len(messages):
                extracted.append(RetrievedMessage(
                    blob_id=blob_id,
                    file_id=file_id,
                    policy_id=policy_id,
                    message_index=index,
                    status="success",
                    message=messages[index],
                    envelope_id=envelope_id,
                ))
            else:
                self.logging.warning("Message not found at index %d in %s", index, blob_id)
                extracted.append(self._failed(key, index, f"Message not found at index {index}"))
        return extracted

    @staticmethod
    def _failed(key: BlobKey, index: int | None, error: str) -> RetrievedMessage:
        blob_id, file_id, policy_id = key
        return RetrievedMessage(
            blob_id=blob_id,
            file_id=file_id,
            policy_id=policy_id,
            message_index=index,
            status="failed",
            error=error,
        )

    def _finish(self, aggregator: RunAggregator, result: RetrievalResult) -> RetrievalResult:
        aggregator.end()
        result.summary = aggregator.render(self.logging)
        return result
