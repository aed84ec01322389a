"""Interfaces shared by chunk repositories and similarity indexes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from levrag.config import config

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from levrag.models import Chunk, RetrievedChunk

logger = config.get_logger(__name__)


@dataclass(frozen=True)
class StoredChunk:
    """A chunk as read back from a repository.

    ``raw_embedding`` is whatever the backend holds for the vector: a tuple of
    floats in memory, JSON text in SQLite. Indexes parse it themselves so a
    corrupt row can be skipped instead of failing the whole scan.
    """

    chunk: Chunk
    raw_embedding: object


@dataclass(frozen=True)
class SearchOutcome:
    matches: list[RetrievedChunk] = field(default_factory=list)
    scanned: int = 0
    skipped: int = 0


class ChunkRepository(ABC):
    """Stores chunks with their embeddings; the only owner of chunk data."""

    backend: str = "abstract"

    def __init__(self, dimension: int | None = None) -> None:
        self.dimension = config.EMBEDDING_DIMENSION if dimension is None else dimension
        self._revision = 0

    @property
    def revision(self) -> int:
        """Counter bumped on every write, used by indexes to detect staleness."""
        return self._revision

    def add_chunks(self, chunks: Iterable[Chunk]) -> int:
        """Validate and store chunks.

        Chunks without an embedding are logged and skipped.

        Returns:
            Number of chunks stored.

        Raises:
            ValueError: If an embedding length differs from the configured
                dimension.
        """
        accepted: list[Chunk] = []
        for chunk in chunks:
            if not chunk.embedding:
                logger.warning(
                    "Skipping chunk %s#%d without embedding",
                    chunk.source_id,
                    chunk.chunk_index,
                )
                continue
            if len(chunk.embedding) != self.dimension:
                msg = (
                    f"Embedding dimension {len(chunk.embedding)} does not match "
                    f"configured dimension {self.dimension}"
                )
                raise ValueError(msg)
            accepted.append(chunk)

        if accepted:
            self._store(accepted)
            self._revision += 1
        logger.info("Added %d chunks to %s chunk store", len(accepted), self.backend)
        return len(accepted)

    def clear(self) -> None:
        self._clear()
        self._revision += 1
        logger.info("Cleared %s chunk store", self.backend)

    def source_breakdown(self) -> dict[str, int]:
        """Count chunks per source display name, in first-insertion order.

        Returns:
            Mapping of display name to chunk count.
        """
        return dict(Counter(record.chunk.source for record in self.scan()))

    def list_sources(self) -> list[str]:
        return list(self.source_breakdown())

    @abstractmethod
    def _store(self, chunks: list[Chunk]) -> None: ...

    @abstractmethod
    def _clear(self) -> None: ...

    @abstractmethod
    def scan(self) -> Iterator[StoredChunk]:
        """Yield every stored chunk in insertion order."""

    @abstractmethod
    def count(self) -> int: ...


class SimilarityIndex(ABC):
    """Ranks repository chunks against a query vector."""

    name: str = "abstract"

    def __init__(self, repository: ChunkRepository) -> None:
        self.repository = repository

    @abstractmethod
    def search(
        self,
        query_embedding: object,
        top_k: int,
        threshold: float,
    ) -> SearchOutcome:
        """Return at most ``top_k`` chunks scoring at least ``threshold``.

        Matches are sorted by similarity descending; ties keep scan order.
        """
