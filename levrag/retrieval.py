"""Top-K retrieval over a similarity index."""

from collections.abc import Sequence

import numpy as np

from .config import config
from .models import RetrievalResult
from .vector_store import SimilarityIndex

logger = config.get_logger(__name__)


class Retriever:
    """Applies the threshold and top-K policy on top of a similarity index."""

    def __init__(
        self,
        index: SimilarityIndex,
        top_k: int | None = None,
        threshold: float | None = None,
    ) -> None:
        """Initialize the Retriever.

        Args:
            index: Similarity index to search.
            top_k: Maximum number of chunks returned. If None, uses config.TOP_K.
            threshold: Minimum similarity of a returned chunk. If None, uses
                config.SIMILARITY_THRESHOLD.
        """
        self.index = index
        self.top_k = config.TOP_K if top_k is None else top_k
        self.threshold = (
            config.SIMILARITY_THRESHOLD if threshold is None else threshold
        )

    def retrieve(self, query_embedding: Sequence[float] | np.ndarray) -> RetrievalResult:
        """Return the most similar chunks for a query vector.

        An empty result means nothing cleared the threshold; it is not an
        error.

        Returns:
            RetrievalResult with matches sorted by similarity descending.
        """
        outcome = self.index.search(query_embedding, self.top_k, self.threshold)

        logger.info(
            "Similarity scan: %d chunks, threshold %.2f, %d skipped, %d matches",
            outcome.scanned,
            self.threshold,
            outcome.skipped,
            len(outcome.matches),
        )
        if outcome.skipped:
            logger.warning(
                "Skipped %d chunks with missing or malformed embeddings",
                outcome.skipped,
            )
        if outcome.matches:
            logger.debug(
                "Top scores: %s",
                ", ".join(
                    f"{match.chunk.source}={match.similarity:.3f}"
                    for match in outcome.matches
                ),
            )

        return RetrievalResult(
            chunks=list(outcome.matches),
            scanned=outcome.scanned,
            skipped=outcome.skipped,
        )
