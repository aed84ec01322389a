"""Exact linear-scan similarity index."""

from __future__ import annotations

from levrag.models import RetrievedChunk
from levrag.similarity import cosine_similarity, parse_embedding

from .base import SearchOutcome, SimilarityIndex


class BruteForceIndex(SimilarityIndex):
    """Scores every stored chunk against the query with cosine similarity."""

    name = "bruteforce"

    def search(
        self,
        query_embedding: object,
        top_k: int,
        threshold: float,
    ) -> SearchOutcome:
        query = parse_embedding(query_embedding)
        scanned = 0
        skipped = 0
        matches: list[RetrievedChunk] = []

        for record in self.repository.scan():
            scanned += 1
            vector = parse_embedding(record.raw_embedding)
            if vector is None:
                skipped += 1
                continue
            similarity = 0.0 if query is None else cosine_similarity(query, vector)
            if similarity >= threshold:
                matches.append(RetrievedChunk(chunk=record.chunk, similarity=similarity))

        # sorted() is stable, so equal scores stay in scan order
        matches = sorted(matches, key=lambda match: match.similarity, reverse=True)
        return SearchOutcome(matches=matches[:top_k], scanned=scanned, skipped=skipped)
