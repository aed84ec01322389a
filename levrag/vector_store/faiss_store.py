"""FAISS inner-product index with the same ranking as the linear scan."""

from __future__ import annotations

from typing import TYPE_CHECKING

import faiss
import numpy as np

from levrag.config import config
from levrag.models import RetrievedChunk
from levrag.similarity import parse_embedding

from .base import SearchOutcome, SimilarityIndex

if TYPE_CHECKING:
    from levrag.models import Chunk

    from .base import ChunkRepository

logger = config.get_logger(__name__)


class FaissIndex(SimilarityIndex):
    """Exact search over L2-normalised vectors using ``IndexFlatIP``.

    The index is rebuilt lazily whenever the repository revision changes.
    Vectors of the wrong dimension or with zero norm are indexed as zeros so
    they score 0, matching ``cosine_similarity``; unparsable embeddings are
    left out and counted as skipped.
    """

    name = "faiss"

    def __init__(self, repository: ChunkRepository) -> None:
        super().__init__(repository)
        self.dimension = repository.dimension
        self.index: faiss.IndexFlatIP | None = None
        self._chunks: list[Chunk] = []
        self._positions: list[int] = []
        self._scanned = 0
        self._skipped = 0
        self._built_revision: int | None = None

    def _normalize_embedding(self, embedding: np.ndarray | None) -> np.ndarray:
        """Normalize a vector for cosine similarity via inner product.

        Returns:
            A float32 unit vector, or zeros when the vector cannot be scored.
        """
        if embedding is None or embedding.shape[0] != self.dimension:
            return np.zeros(self.dimension, dtype="float32")
        vector = np.asarray(embedding, dtype="float32").copy()
        if np.linalg.norm(vector) == 0:
            return vector
        faiss.normalize_L2(vector.reshape(1, -1))
        return vector

    def _rebuild(self) -> None:
        vectors: list[np.ndarray] = []
        self._chunks = []
        self._positions = []
        self._scanned = 0
        self._skipped = 0

        for position, record in enumerate(self.repository.scan()):
            self._scanned += 1
            embedding = parse_embedding(record.raw_embedding)
            if embedding is None:
                self._skipped += 1
                continue
            vectors.append(self._normalize_embedding(embedding))
            self._chunks.append(record.chunk)
            self._positions.append(position)

        self.index = faiss.IndexFlatIP(self.dimension)
        if vectors:
            self.index.add(np.vstack(vectors).astype("float32"))  # pyright: ignore[reportCallIssue]
        self._built_revision = self.repository.revision
        logger.info(
            "Built FAISS index with %d vectors (%d skipped)",
            self.index.ntotal,
            self._skipped,
        )

    def search(
        self,
        query_embedding: object,
        top_k: int,
        threshold: float,
    ) -> SearchOutcome:
        if self.index is None or self._built_revision != self.repository.revision:
            self._rebuild()

        index = self.index
        if index is None or index.ntotal == 0:
            return SearchOutcome(scanned=self._scanned, skipped=self._skipped)

        query = self._normalize_embedding(parse_embedding(query_embedding))
        scores, ids = index.search(query.reshape(1, -1), index.ntotal)  # pyright: ignore[reportCallIssue]

        candidates: list[tuple[float, int, int]] = []
        for score, idx in zip(scores[0], ids[0], strict=True):
            if int(idx) == -1:  # faiss pads missing results with -1
                continue
            similarity = max(-1.0, min(1.0, float(score)))
            if similarity >= threshold:
                candidates.append((similarity, self._positions[int(idx)], int(idx)))

        candidates.sort(key=lambda item: (-item[0], item[1]))
        matches = [
            RetrievedChunk(chunk=self._chunks[idx], similarity=similarity)
            for similarity, _position, idx in candidates[:top_k]
        ]
        return SearchOutcome(
            matches=matches, scanned=self._scanned, skipped=self._skipped
        )
