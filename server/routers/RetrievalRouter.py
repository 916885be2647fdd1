import time

from fastapi import APIRouter, Depends, Request

from server.dependencies.auth import verify_api_key
from server.models.requests import RetrieveByBlobIdsRequest
from server.models.responses import TaskResponse

router = APIRouter(prefix="/retrieve", tags=["retrieve"])


@router.post("/by-blob-ids", response_model=TaskResponse)
async def retrieve_by_blob_ids(
    request: Request,
    body: RetrieveByBlobIdsRequest,
    _: None = Depends(verify_api_key),
) -> TaskResponse:
    """Decrypt the requested blobs and return the messages at the requested flat indices.

    Args:
        request (Request): FastAPI request (provides app.state.clients and app.state.retrieval_service).
        body (RetrieveByBlobIdsRequest): Blob, file and policy ids with optional message indices.
        _ (None): Auth dependency result (unused).

    Returns:
        TaskResponse: The retrieval result under "data".
    """
    state = request.app.state
    started = time.monotonic()
    result = await state.retrieval_service.do_retrieve(state.clients, body.pairs)
    return TaskResponse(
        status="success",
        data=result.model_dump(),
        exit_code=result.get_exit_code(),
        execution_time_ms=int((time.monotonic() - started) * 1000),
    )
