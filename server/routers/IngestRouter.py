import asyncio
import time

from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import BlobIngestRequest, EmbeddingIngestRequest
from server.models.responses import TaskResponse
from services.patch_ingest.IngestContext import IngestContext
from shared.models.result import IngestResult

router = APIRouter(prefix="/ingest", tags=["ingest"])


async def _run_with_timeout(request: Request, quilt_id: str, policy_id: str, batch_size: int | None, timeout_secs: int, detect_blob_type: bool) -> TaskResponse:
    state = request.app.state
    started = time.monotonic()
    context = IngestContext.for_run(state.helper_config, state.clients, quilt_id=quilt_id, policy_id=policy_id)
    service = state.ingest_service
    run = service.do_ingest_blob if detect_blob_type else service.do_ingest

    try:
        # cancelling the run also cancels its queued and running fetches
        result = await asyncio.wait_for(run(context, batch_size=batch_size), timeout=timeout_secs)
    except asyncio.TimeoutError:
        state.logging.error("Ingest of %s timed out after %ds", quilt_id, timeout_secs)
        context.aggregator.record_error(f"Ingest timed out after {timeout_secs}s")
        context.aggregator.end()
        result = IngestResult(
            status="failed",
            quilt_id=quilt_id,
            error=f"Ingest timed out after {timeout_secs}s",
            summary=context.aggregator.generate_summary(),
        )

    return TaskResponse(
        status="success",
        data=result.model_dump(),
        exit_code=result.get_exit_code(),
        execution_time_ms=int((time.monotonic() - started) * 1000),
    )


@router.post("/embedding", response_model=TaskResponse)
async def ingest_embedding(
    request: Request,
    body: EmbeddingIngestRequest,
    _: None = Depends(verify_api_key),
) -> TaskResponse:
    """Run one embedding ingest for a quilt and return its result.

    Args:
        request (Request): FastAPI request (provides app.state.clients and app.state.ingest_service).
        body (EmbeddingIngestRequest): Quilt id, policy id and optional batch size / timeout.
        _ (None): Auth dependency result (unused).

    Returns:
        TaskResponse: The ingest result under "data" plus the matching runner exit code.
    """
    return await _run_with_timeout(request, body.quilt_id, body.policy_id, body.batch_size, body.timeout_secs, detect_blob_type=False)


@router.post("/blob", response_model=TaskResponse)
async def ingest_blob(
    request: Request,
    body: BlobIngestRequest,
    _: None = Depends(verify_api_key),
) -> TaskResponse:
    """Ingest a blob id that is either a quilt or a single patch; data.source_type tells which."""
    return await _run_with_timeout(request, body.blob_id, body.policy_id, body.batch_size, body.timeout_secs, detect_blob_type=True)
