"""Main RAG pipeline: Load -> Split -> Embed -> Store, and query-time retrieval."""

import asyncio
from pathlib import Path
from typing import Any

from .config import config
from .document_processing import CorpusLoader, TextChunker
from .embeddings import EmbeddingService
from .errors import LevRAGError
from .models import Chunk, RetrievalResult, SourceDocument
from .retrieval import Retriever
from .vector_store import ChunkRepository, SimilarityIndex, get_similarity_index

logger = config.get_logger(__name__)


class RAGPipeline:
    """Owns the chunk repository and everything needed to fill and search it."""

    def __init__(
        self,
        repository: ChunkRepository,
        embedding_service: EmbeddingService,
        chunker: TextChunker | None = None,
        index: SimilarityIndex | None = None,
        retriever: Retriever | None = None,
    ) -> None:
        """Initialize the RAG pipeline.

        Args:
            repository: Chunk store to fill and search.
            embedding_service: Gateway used for chunks and questions alike.
            chunker: If None, a TextChunker with configured window sizes.
            index: If None, the index named by config.SIMILARITY_INDEX.
            retriever: If None, a Retriever with configured top-K and
                threshold over ``index``.
        """
        self.repository = repository
        self.embedding_service = embedding_service
        self.chunker = chunker or TextChunker()
        self.index = index or get_similarity_index(repository)
        self.retriever = retriever or Retriever(self.index)
        self._load_lock = asyncio.Lock()
        logger.info(
            "Using %s chunk store with %s similarity index",
            repository.backend,
            self.index.name,
        )

    async def ingest_sources(self, sources: list[SourceDocument]) -> int:
        """Chunk, embed and store the given sources.

        Returns:
            Number of chunks stored.

        Raises:
            EmbeddingFailure: If any chunk cannot be embedded.
            ValueError: If the embedding count does not match the chunk count.
        """
        chunks = [chunk for source in sources for chunk in self.chunker.chunk_document(source)]
        logger.info("Total chunks created: %d", len(chunks))
        if not chunks:
            return 0

        embeddings = await self.embedding_service.get_embeddings_batch(
            [chunk.content for chunk in chunks]
        )
        if len(embeddings) != len(chunks):
            msg = (
                f"Embedding count mismatch: got {len(embeddings)}, "
                f"expected {len(chunks)}"
            )
            raise ValueError(msg)

        embedded = [
            Chunk(
                content=chunk.content,
                source_id=chunk.source_id,
                source_type=chunk.source_type,
                chunk_index=chunk.chunk_index,
                metadata=chunk.metadata,
                embedding=tuple(float(value) for value in embedding),
            )
            for chunk, embedding in zip(chunks, embeddings, strict=True)
        ]
        return self.repository.add_chunks(embedded)

    async def load_corpus(self, corpus_dir: Path | None = None) -> dict[str, Any]:
        """Load every corpus source into an empty knowledge base.

        Concurrent calls are serialised, so only the first one ingests and
        the others see a non-empty knowledge base. An unreadable corpus
        directory aborts the load with an exception; embedding and storage
        failures are reported in the result instead.

        Returns:
            ``{"success", "message"}`` plus ``"error"`` on failure.
        """
        async with self._load_lock:
            return await self._load_corpus(corpus_dir)

    async def _load_corpus(self, corpus_dir: Path | None) -> dict[str, Any]:
        existing = self.repository.count()
        if existing > 0:
            logger.warning("Knowledge base already contains %d entries", existing)
            return {
                "success": True,
                "message": (
                    f"Knowledge base already contains {existing} entries. "
                    "Clear the knowledge base to reload."
                ),
            }

        sources = CorpusLoader(corpus_dir).load()
        try:
            stored = await self.ingest_sources(sources)
        except (LevRAGError, ValueError) as e:
            logger.exception("Error loading corpus")
            return {
                "success": False,
                "message": "Failed to load data to the knowledge base",
                "error": str(e),
            }

        if stored == 0:
            logger.error("Data loading completed but no entries were stored")
            return {
                "success": False,
                "message": "Data loading completed but no entries were stored.",
                "error": "No chunks produced from the corpus",
            }

        logger.info("Loaded %d knowledge entries", stored)
        return {
            "success": True,
            "message": (
                f"Successfully loaded {stored} knowledge entries "
                "into the knowledge base."
            ),
        }

    async def query(self, question: str) -> RetrievalResult:
        """Embed a question and retrieve its most similar chunks.

        Raises:
            EmbeddingFailure: If the question cannot be embedded.
        """
        logger.info("Processing query: %s", question)
        query_embedding = await self.embedding_service.get_embedding(question)
        return self.retriever.retrieve(query_embedding)

    async def question_stats(self, question: str) -> dict[str, Any]:
        """Summarise what retrieval finds for a question, for diagnostics."""
        try:
            result = await self.query(question)
        except LevRAGError as e:
            return {
                "question": question,
                "matchingChunks": 0,
                "topSources": [],
                "error": e.message,
            }
        return {
            "question": question,
            "matchingChunks": len(result.chunks),
            "topSources": list(dict.fromkeys(m.chunk.source for m in result.chunks)),
        }

    def clear_knowledge_base(self) -> None:
        self.repository.clear()

    def knowledge_base_stats(self) -> dict[str, Any]:
        return {
            "totalEntries": self.repository.count(),
            "sourceBreakdown": self.repository.source_breakdown(),
        }

    def list_sources(self) -> list[str]:
        return self.repository.list_sources()
