"""Ingest runner entry point.

Operations:
    embedding             Embed a sampled subset of the messages stored in one quilt.
    default               Same for a blob id that may name a quilt or a single patch.
    retrieve-by-blob-ids  Decrypt stored blobs and return the messages at given flat indices.

The result JSON is printed to stdout between ===TASK_RESULT_START=== and
===TASK_RESULT_END===; logs go to stderr.

Usage:
    python -m ingest.ingest_runner --quilt-id <id> --policy-id <id> [--batch-size 50]
    python -m ingest.ingest_runner --operation default --blob-id <id> --policy-id <id>
    python -m ingest.ingest_runner --operation retrieve-by-blob-ids --blob-file-pairs '<json array>'

Exit code is 0 for a "success" or "partial" result and 1 for "failed".
"""

import argparse
import asyncio
import sys
from typing import Awaitable, Callable

from pydantic import BaseModel, TypeAdapter, ValidationError

from shared.helper.HelperConfig import HelperConfig
from shared.logging.logging_setup import setup_logging
from shared.models.result import IngestResult
from shared.models.retrieval import BlobRequest, RetrievalResult
from services.patch_ingest.IngestContext import IngestClients, IngestContext
from services.patch_ingest.PatchIngestService import PatchIngestService
from services.patch_ingest.PatchRetrievalService import PatchRetrievalService
from services.patch_ingest.RunAggregator import RunAggregator

RESULT_START = "===TASK_RESULT_START==="
RESULT_END = "===TASK_RESULT_END==="

OPERATION_EMBEDDING = "embedding"
OPERATION_DEFAULT = "default"
OPERATION_RETRIEVE = "retrieve-by-blob-ids"

_blob_requests = TypeAdapter(list[BlobRequest])


def parse_args(argv: list[str] | None, config: HelperConfig) -> argparse.Namespace:
    """Parse the command line, falling back to INGEST_QUILT_ID / INGEST_POLICY_ID.

    For retrieve-by-blob-ids the parsed requests are stored in args.blob_requests.

    Raises:
        SystemExit: If an argument required by the operation is missing or malformed.
    """
    parser = argparse.ArgumentParser(prog="ingest_runner", description="Embed the messages of a quilt into the vector store, or read them back.")
    parser.add_argument("--operation", choices=[OPERATION_EMBEDDING, OPERATION_DEFAULT, OPERATION_RETRIEVE], default=OPERATION_EMBEDDING)
    parser.add_argument("--quilt-id", default=config.get_string_val("INGEST_QUILT_ID", default=""))
    parser.add_argument("--blob-id", default="")
    parser.add_argument("--policy-id", "--policy-object-id", dest="policy_id", default=config.get_string_val("INGEST_POLICY_ID", default=""))
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--blob-file-pairs", default="", help="JSON array of {walrusBlobId, onChainFileObjId, policyObjectId, messageIndices?}")
    args = parser.parse_args(argv)

    if args.operation == OPERATION_RETRIEVE:
        if not args.blob_file_pairs:
            parser.error("--blob-file-pairs is required for retrieve-by-blob-ids")
        try:
            args.blob_requests = _blob_requests.validate_json(args.blob_file_pairs)
        except ValidationError as e:
            parser.error(f"invalid --blob-file-pairs: {e.error_count()} errors, first: {e.errors()[0]['msg']}")
        if not args.blob_requests:
            parser.error("--blob-file-pairs must contain at least one pair")
        return args

    if args.operation == OPERATION_DEFAULT and not args.blob_id:
        parser.error("--blob-id is required for the default operation")
    if args.operation == OPERATION_EMBEDDING and not args.quilt_id:
        parser.error("--quilt-id is required (or set INGEST_QUILT_ID)")
    if not args.policy_id:
        parser.error("--policy-id is required (or set INGEST_POLICY_ID)")
    if args.batch_size is not None and args.batch_size < 1:
        parser.error("--batch-size must be a positive integer")
    return args


async def _run_with_clients(
    config: HelperConfig,
    run: Callable[[IngestClients], Awaitable[BaseModel]],
    setup_failed: Callable[[str, dict], BaseModel],
) -> BaseModel:
    """Boot the clients, call run() and close the clients again.

    Setup failures (unknown engine, missing config, unreachable backend) never
    raise; setup_failed(error, summary) turns them into a "failed" result.
    """
    logger = config.get_logger()
    clients: IngestClients | None = None
    try:
        try:
            clients = IngestClients.from_env(config)
            await clients.boot()
            await clients.healthcheck()
        except Exception as e:
            logger.error("Setup failed: %s", e)
            aggregator = RunAggregator(helper_config=config)
            aggregator.start()
            aggregator.record_error(e)
            aggregator.end()
            return setup_failed(f"Setup failed: {e}", aggregator.render(logger))
        return await run(clients)
    finally:
        if clients is not None:
            await clients.close()


async def run_ingest(
    config: HelperConfig,
    quilt_id: str,
    policy_id: str,
    batch_size: int | None = None,
    detect_blob_type: bool = False,
) -> IngestResult:
    """Run one embedding ingest. With detect_blob_type, quilt_id may also be a single patch id."""

    async def run(clients: IngestClients) -> IngestResult:
        context = IngestContext.for_run(config, clients, quilt_id=quilt_id, policy_id=policy_id)
        service = PatchIngestService(helper_config=config)
        if detect_blob_type:
            return await service.do_ingest_blob(context, batch_size=batch_size)
        return await service.do_ingest(context, batch_size=batch_size)

    def setup_failed(error: str, summary: dict) -> IngestResult:
        return IngestResult(status="failed", quilt_id=quilt_id, error=error, summary=summary)

    return await _run_with_clients(config, run, setup_failed)


async def run_retrieve(config: HelperConfig, requests: list[BlobRequest]) -> RetrievalResult:
    """Run one retrieve-by-blob-ids operation."""

    async def run(clients: IngestClients) -> RetrievalResult:
        return await PatchRetrievalService(helper_config=config).do_retrieve(clients, requests)

    def setup_failed(error: str, summary: dict) -> RetrievalResult:
        return RetrievalResult(status="failed", requested_pairs=requests, error=error, summary=summary)

    return await _run_with_clients(config, run, setup_failed)


def print_result(result: BaseModel) -> None:
    print(RESULT_START)
    print(result.model_dump_json())
    print(RESULT_END, flush=True)


async def main(argv: list[str] | None = None) -> int:
    """Run the selected operation once and return the process exit code."""
    logger = setup_logging()
    config = HelperConfig(logger=logger)
    args = parse_args(argv, config)
    logger.info("Operation: %s", args.operation)

    if args.operation == OPERATION_RETRIEVE:
        result = await run_retrieve(config, args.blob_requests)
    elif args.operation == OPERATION_DEFAULT:
        result = await run_ingest(config, args.blob_id, args.policy_id, args.batch_size, detect_blob_type=True)
    else:
        result = await run_ingest(config, args.quilt_id, args.policy_id, args.batch_size)
    print_result(result)
    return result.get_exit_code()


def cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
