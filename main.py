"""Command-line entry point for serving the LevRAG API and loading the corpus."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import uvicorn

from levrag.api import create_app
from levrag.config import config
from levrag.embeddings import EmbeddingService
from levrag.pipeline import RAGPipeline
from levrag.vector_store import get_chunk_repository

if TYPE_CHECKING:
    from collections.abc import Sequence
    from logging import Logger


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Build the CLI parser and read command-line arguments."""  # noqa: DOC201
    parser = argparse.ArgumentParser(
        description="Serve the LevRAG API or load the corpus into the chunk store.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument(
        "--host",
        default=config.API_HOST,
        help=f"Bind address for the API server (default: {config.API_HOST}).",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=config.API_PORT,
        help=f"Port for the API server (default: {config.API_PORT}).",
    )

    ingest = subparsers.add_parser(
        "ingest",
        help="Chunk, embed and store the corpus into the SQLite chunk store.",
    )
    ingest.add_argument(
        "--corpus-dir",
        type=Path,
        default=config.CORPUS_DIR,
        help=f"Directory holding the corpus (default: {config.CORPUS_DIR}).",
    )
    ingest.add_argument(
        "--db-path",
        type=Path,
        default=config.CHUNK_STORE_DB_PATH,
        help=f"SQLite chunk store path (default: {config.CHUNK_STORE_DB_PATH}).",
    )
    return parser.parse_args(argv)


def run_server(host: str, port: int, logger: Logger) -> int:
    """Run uvicorn until interrupted and return an exit code."""  # noqa: DOC201
    logger.info("Starting LevRAG API at http://%s:%s", host, port)
    try:
        uvicorn.run(create_app(), host=host, port=port, log_config=None)
    except KeyboardInterrupt:
        logger.info("LevRAG stopped by user")
    return 0


async def run_ingest(corpus_dir: Path, db_path: Path, logger: Logger) -> int:
    """Load the corpus into a persistent chunk store."""  # noqa: DOC201
    embedding_service = EmbeddingService()
    pipeline = RAGPipeline(
        repository=get_chunk_repository("sqlite", db_path=db_path),
        embedding_service=embedding_service,
    )
    try:
        result = await pipeline.load_corpus(corpus_dir)
    except FileNotFoundError:
        logger.exception("Corpus directory not readable: %s", corpus_dir)
        return 1
    finally:
        await embedding_service.aclose()

    if not result["success"]:
        logger.error("%s: %s", result["message"], result.get("error", ""))
        return 1
    logger.info(result["message"])
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Validate configuration and run the requested command."""  # noqa: DOC201
    args = parse_args(argv)

    config.setup_logging()
    logger = config.get_logger(__name__)

    try:
        config.validate()
    except ValueError:
        logger.exception("Configuration invalid")
        return 1

    if args.command == "serve":
        return run_server(args.host, args.port, logger)
    return asyncio.run(run_ingest(args.corpus_dir, args.db_path, logger))


if __name__ == "__main__":
    sys.exit(main())
