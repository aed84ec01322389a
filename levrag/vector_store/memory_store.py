"""In-process chunk repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .base import ChunkRepository, StoredChunk

if TYPE_CHECKING:
    from collections.abc import Iterator

    from levrag.models import Chunk


class InMemoryChunkRepository(ChunkRepository):
    """Keeps chunks in a list; contents are lost when the process exits."""

    backend = "memory"

    def __init__(self, dimension: int | None = None) -> None:
        super().__init__(dimension)
        self._chunks: list[Chunk] = []

    def _store(self, chunks: list[Chunk]) -> None:
        self._chunks.extend(chunks)

    def _clear(self) -> None:
        self._chunks = []

    def scan(self) -> Iterator[StoredChunk]:
        for chunk in list(self._chunks):
            yield StoredChunk(chunk=chunk, raw_embedding=chunk.embedding)

    def count(self) -> int:
        return len(self._chunks)
