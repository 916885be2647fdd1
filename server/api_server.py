"""FastAPI application entry point for the patch ingest service."""

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from shared.logging.logging_setup import setup_logging
from shared.helper.HelperConfig import HelperConfig
from services.patch_ingest.IngestContext import IngestClients
from services.patch_ingest.PatchIngestService import PatchIngestService
from services.patch_ingest.PatchRetrievalService import PatchRetrievalService
from server.models.responses import HealthResponse
from server.routers.IngestRouter import router as ingest_router
from server.routers.RetrievalRouter import router as retrieval_router

logging = setup_logging()
app_version = os.getenv("APP_VERSION", "unknown")


def create_app(clients: IngestClients | None = None) -> FastAPI:
    """Build the API application.

    Args:
        clients (IngestClients | None): Pre-built clients. Defaults to the engines named in the environment.

    Returns:
        FastAPI: The configured application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # when the app starts
        app.state.logging = logging
        app.state.helper_config = HelperConfig(logger=logging)
        app.state.clients = clients or IngestClients.from_env(app.state.helper_config)

        logging.info("Booting all clients...")
        await app.state.clients.boot()
        await app.state.clients.healthcheck()
        logging.info("All clients booted successfully.")

        app.state.ingest_service = PatchIngestService(helper_config=app.state.helper_config)
        app.state.retrieval_service = PatchRetrievalService(helper_config=app.state.helper_config)

        # while the app is running...
        yield

        # when the app shuts down, close all client connections
        logging.info("Shutting down, closing all clients...")
        await app.state.clients.close()
        logging.info("All clients closed.")

    app = FastAPI(
        title="patch_ingest",
        description=(
            "Ingests encrypted conversation patches of a quilt: samples patches, "
            "decrypts them through the key-release service, selects messages and "
            "stores their embeddings in the vector store. Triggered via POST /ingest/embedding "
            "or POST /ingest/blob; POST /retrieve/by-blob-ids reads stored messages back."
        ),
        version=app_version,
        lifespan=lifespan,
    )
    app.include_router(ingest_router)
    app.include_router(retrieval_router)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=app_version)

    return app


if __name__ == "__main__":
    import uvicorn

    logging.info(
        "Starting patch_ingest API Server v%s from root dir: %s on port 8000...",
        app_version,
        os.environ.get("ROOT_DIR", "unknown"),
    )
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
