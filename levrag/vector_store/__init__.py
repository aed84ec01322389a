"""Chunk repositories, similarity indexes and their factories."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal

from levrag.config import config

from .base import ChunkRepository, SearchOutcome, SimilarityIndex, StoredChunk
from .bruteforce import BruteForceIndex
from .memory_store import InMemoryChunkRepository
from .sqlite_store import SQLiteChunkRepository

if TYPE_CHECKING:
    from pathlib import Path

ChunkStoreBackend = Literal["memory", "sqlite"]
SimilarityIndexKind = Literal["bruteforce", "faiss"]


def get_chunk_repository(
    backend: ChunkStoreBackend | None = None,
    *,
    db_path: Path | None = None,
    dimension: int | None = None,
) -> ChunkRepository:
    """Return a configured chunk repository.

    Raises:
        ValueError: If an unsupported backend is requested.
    """
    backend_value = (backend or config.CHUNK_STORE_BACKEND).lower()

    if backend_value == "memory":
        return InMemoryChunkRepository(dimension=dimension)

    if backend_value == "sqlite":
        return SQLiteChunkRepository(
            db_path=db_path if db_path is not None else config.CHUNK_STORE_DB_PATH,
            dimension=dimension,
        )

    msg = f"Unsupported chunk store backend: {backend}"
    raise ValueError(msg)


def get_similarity_index(
    repository: ChunkRepository,
    kind: SimilarityIndexKind | None = None,
) -> SimilarityIndex:
    """Return a similarity index over ``repository``.

    Raises:
        ValueError: If an unsupported index kind is requested.
    """
    kind_value = (kind or config.SIMILARITY_INDEX).lower()

    if kind_value == "bruteforce":
        return BruteForceIndex(repository)

    if kind_value == "faiss":
        from .faiss_store import FaissIndex  # noqa: PLC0415

        return FaissIndex(repository)

    msg = f"Unsupported similarity index: {kind}"
    raise ValueError(msg)


__all__ = [
    "BruteForceIndex",
    "ChunkRepository",
    "ChunkStoreBackend",
    "InMemoryChunkRepository",
    "SQLiteChunkRepository",
    "SearchOutcome",
    "SimilarityIndex",
    "SimilarityIndexKind",
    "StoredChunk",
    "get_chunk_repository",
    "get_similarity_index",
]
