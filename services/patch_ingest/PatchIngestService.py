"""Patch ingest service.

Lists the patches of a quilt, samples them, fetches and decrypts the
sampled patches under a rate limit, selects messages from every decrypted
conversation and embeds them into the vector store. Per-patch failures are
recorded and never abort the run. A blob id of unknown kind is ingested as
a quilt when it lists patches and as a single patch otherwise.
"""

import random
from datetime import timedelta
from typing import Any

from shared.helper.HelperConfig import HelperConfig
from shared.models.patch import Patch
from shared.models.result import IngestResult, PatchResult

from services.patch_ingest.EmbeddingBatchOrchestrator import EmbeddingBatchOrchestrator
from services.patch_ingest.IngestContext import IngestContext
from services.patch_ingest.MessageSelector import MessageSelector
from services.patch_ingest.PatchSelector import PatchSelector
from services.patch_ingest.PayloadDecoder import PayloadDecoder
from services.patch_ingest.RateLimiter import RateLimiter, RateLimitedOutcome

OPTIONAL_ENV_KEYS = ["ID_MASK_SALT", "INGEST_EXCLUDED_ACCOUNT_ID"]
MAX_DETAILED_FETCH_ERRORS = 10


class PatchIngestService:
    """Runs the canonical ingest pipeline for one quilt."""

    def __init__(self, helper_config: HelperConfig, rng: random.Random | None = None) -> None:
        self.logging = helper_config.get_logger()
        self._helper_config = helper_config
        self._patch_selector = PatchSelector(helper_config=helper_config, rng=rng)
        self._message_selector = MessageSelector(helper_config=helper_config, rng=rng)
        self._decoder = PayloadDecoder(helper_config=helper_config)

    ##########################################
    ############### CORE INGEST ##############
    ##########################################

    async def do_ingest(self, context: IngestContext, batch_size: int | None = None) -> IngestResult:
        """Ingest one quilt.

        Args:
            context (IngestContext): Clients, settings and the run aggregator.
            batch_size (int | None): Messages per embedding request, defaults to the configured size.

        Returns:
            IngestResult: The run outcome, always carrying the generated summary.
        """
        self._begin(context)
        self.logging.info("Running embedding ingest for quilt %s...", context.quilt_id)

        ############### LIST ###############
        try:
            patches = await context.blob_client.do_list_patches(context.quilt_id)
        except Exception as e:
            self.logging.error("Failed to list patches of quilt %s: %s", context.quilt_id, e)
            context.aggregator.record_error(e)
            return self._finish(context, IngestResult(status="failed", quilt_id=context.quilt_id, error=str(e)))

        if not patches:
            self.logging.error("No patches found in quilt %s", context.quilt_id)
            context.aggregator.record_error("No patches found in quilt")
            return self._finish(context, IngestResult(status="failed", quilt_id=context.quilt_id, error="No patches found in quilt"))

        return await self._ingest_patches(context, patches, batch_size)

    async def do_ingest_blob(self, context: IngestContext, batch_size: int | None = None) -> IngestResult:
        """Ingest context.quilt_id whether it names a quilt or a single patch.

        The id is listed as a quilt first. A listing error or an empty listing
        means it is a patch id, which is then fetched, decrypted and embedded
        on its own.

        Returns:
            IngestResult: With source_type "quilt" or "patch".
        """
        self._begin(context)
        blob_id = context.quilt_id
        try:
            patches = await context.blob_client.do_list_patches(blob_id)
        except Exception as e:
            self.logging.info("%s is not a quilt id (%s). Treating it as a patch id...", blob_id, e)
            patches = []

        if patches:
            self.logging.info("Detected quilt id %s with %d patches.", blob_id, len(patches))
            result = await self._ingest_patches(context, patches, batch_size)
            result.source_type = "quilt"
            return result

        patch = Patch(patch_id=blob_id)
        context.aggregator.record_patch_selection(1, 1)
        limiter = self._make_limiter(context)
        try:
            plaintext = await limiter.execute(self._make_fetch_operation(context, patch))
        except Exception as e:
            self.logging.error("Failed to fetch patch %s: %s", blob_id, e)
            context.aggregator.record_fetch_result(False)
            context.aggregator.record_error(e)
            return self._finish(context, IngestResult(
                status="failed",
                source_type="patch",
                quilt_id=blob_id,
                total_patches=1,
                failed_patches=1,
                error=f"Fetch failed: {e}",
            ))
        context.aggregator.record_fetch_result(True)

        patch_result = await self._process_patch(context, 0, 1, patch, plaintext, batch_size)
        return self._finish(context, self._build_result(context, [patch_result], source_type="patch"))

    async def _ingest_patches(self, context: IngestContext, patches: list[Patch], batch_size: int | None) -> IngestResult:
        aggregator = context.aggregator
        settings = context.settings

        ############### SELECT ###############
        selection = self._patch_selector.select(patches, settings.group_size, settings.select_per_group)
        aggregator.record_patch_selection(selection.original_count, selection.selected_count)
        selected = selection.selected

        ############### FETCH ###############
        limiter = self._make_limiter(context)
        self.logging.info(
            "Fetching %d patches with rate limiting (max %d concurrent, %dms delay, %d retries)...",
            len(selected),
            settings.max_concurrent,
            settings.task_delay_ms,
            settings.max_retries,
        )
        fetched = await limiter.execute_all([self._make_fetch_operation(context, patch) for patch in selected])
        self._record_fetch_results(context, selected, fetched)

        ############### PROCESS ###############
        patch_results: list[PatchResult] = []
        for i, (patch, outcome) in enumerate(zip(selected, fetched)):
            if not outcome.ok:
                patch_results.append(PatchResult(
                    patch_index=i,
                    patch_id=patch.patch_id,
                    status="failed",
                    error=f"Fetch failed: {outcome.error}",
                ))
                continue
            patch_results.append(await self._process_patch(context, i, len(selected), patch, outcome.value, batch_size))

        return self._finish(context, self._build_result(context, patch_results))

    ##########################################
    ################ HELPERS #################
    ##########################################

    def _begin(self, context: IngestContext) -> None:
        context.aggregator.start()
        for key in self._helper_config.get_missing_keys(OPTIONAL_ENV_KEYS):
            context.aggregator.record_warning(f"Optional environment variable {key} is not set")

    def _make_limiter(self, context: IngestContext) -> RateLimiter:
        settings = context.settings
        return RateLimiter(
            helper_config=self._helper_config,
            max_concurrent=settings.max_concurrent,
            delay_ms=settings.task_delay_ms,
            max_retries=settings.max_retries,
        )

    def _build_result(self, context: IngestContext, patch_results: list[PatchResult], source_type: str | None = None) -> IngestResult:
        succeeded = [r for r in patch_results if r.status == "success"]
        failed = [r for r in patch_results if r.status == "failed"]
        if not failed:
            status = "success"
        elif succeeded:
            status = "partial"
        else:
            status = "failed"

        result = IngestResult(
            status=status,
            source_type=source_type,
            quilt_id=context.quilt_id,
            total_patches=len(patch_results),
            processed_patches=len(succeeded),
            failed_patches=len(failed),
            total_processed_messages=sum(r.processed_count for r in succeeded),
            successful_embeddings=sum(r.successful_embeddings for r in succeeded),
            patch_results=patch_results,
        )
        if status == "failed":
            self.logging.error("Embedding operation failed for all patches!")
        else:
            self.logging.info(
                "Embedding operation completed: %d/%d patches processed, %d messages embedded",
                result.processed_patches,
                result.total_patches,
                result.total_processed_messages,
            )
        return result

    def _make_fetch_operation(self, context: IngestContext, patch: Patch):
        async def fetch() -> Any:
            ciphertext = await context.blob_client.do_fetch_ciphertext(patch.patch_id)
            envelope = await context.decrypt_client.do_parse_envelope(ciphertext)
            return await context.decrypt_client.do_decrypt(envelope.id, ciphertext, context.policy_id)
        return fetch

    def _record_fetch_results(self, context: IngestContext, patches: list[Patch], outcomes: list[RateLimitedOutcome]) -> None:
        failed = [(i, outcome) for i, outcome in enumerate(outcomes) if not outcome.ok]
        for outcome in outcomes:
            context.aggregator.record_fetch_result(outcome.ok)
        for _, outcome in failed:
            context.aggregator.record_error(outcome.error)

        if not failed:
            self.logging.info("Finished fetching patches. All %d patches fetched successfully.", len(outcomes))
            return
        self.logging.warning(
            "Finished fetching patches: %d succeeded, %d failed",
            len(outcomes) - len(failed),
            len(failed),
        )
        if len(failed) <= MAX_DETAILED_FETCH_ERRORS:
            for i, outcome in failed:
                self.logging.error("Failed to fetch patch %d (%s): %s", i + 1, patches[i].patch_id, outcome.error)
        else:
            self.logging.error("%d patches failed to fetch. Details suppressed to reduce log noise.", len(failed))

    async def _process_patch(
        self,
        context: IngestContext,
        index: int,
        total: int,
        patch: Patch,
        plaintext: Any,
        batch_size: int | None,
    ) -> PatchResult:
        aggregator = context.aggregator
        settings = context.settings
        self.logging.info("Processing patch %d/%d (patch_id: %s)", index + 1, total, patch.patch_id)
        try:
            unmasked = context.id_unmasker.unmask_patch_tags(patch.tags)
            payload = self._decoder.decode(plaintext, unmasked)
            selection = self._message_selector.select_patch(
                payload,
                cutoff_window=timedelta(hours=settings.cutoff_hours),
                excluded_account_id=settings.excluded_account_id,
            )
            orchestrator = EmbeddingBatchOrchestrator(
                helper_config=self._helper_config,
                batch_concurrency=settings.embed_batch_concurrency,
            )
            run = await orchestrator.run(
                selection.messages,
                selection.index_map,
                batch_size or settings.embed_batch_size,
                context,
                source_patch_id=patch.patch_id,
            )
        except Exception as e:
            self.logging.error("Failed to process patch %d (%s): %s", index + 1, patch.patch_id, e)
            aggregator.record_patch_processed(False)
            aggregator.record_error(f"Failed to process patch {index + 1} ({patch.patch_id}): {e}")
            return PatchResult(patch_index=index, patch_id=patch.patch_id, status="failed", error=str(e))

        if run.status == "success":
            self.logging.info("Patch %d processed successfully: %d messages", index + 1, run.processed_count)
            aggregator.record_patch_processed(True, run.processed_count, run.successful_embeddings, run.successful_vector_storages)
            return PatchResult(
                patch_index=index,
                patch_id=patch.patch_id,
                status="success",
                processed_count=run.processed_count,
                successful_embeddings=run.successful_embeddings,
                successful_vector_storages=run.successful_vector_storages,
            )

        self.logging.error("Patch %d processing failed: %s", index + 1, run.failure_detail)
        aggregator.record_patch_processed(False)
        aggregator.record_error(f"Patch {index + 1} processing failed: {run.failure_detail}")
        return PatchResult(
            patch_index=index,
            patch_id=patch.patch_id,
            status="failed",
            processed_count=run.processed_count,
            successful_embeddings=run.successful_embeddings,
            successful_vector_storages=run.successful_vector_storages,
            error=run.failure_detail,
        )

    def _finish(self, context: IngestContext, result: IngestResult) -> IngestResult:
        context.aggregator.end()
        result.summary = context.aggregator.render(self.logging)
        return result
