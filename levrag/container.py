"""Composition root: builds and tears down the application's collaborators."""

from __future__ import annotations

from dataclasses import dataclass

from .answer import AnswerComposer
from .completion import CompletionService
from .config import config
from .conversation import ConversationService, SessionManager
from .embeddings import EmbeddingService
from .evaluation import EvaluationEngine
from .pipeline import RAGPipeline
from .vector_store import get_chunk_repository

logger = config.get_logger(__name__)


@dataclass
class Container:
    """Everything the HTTP layer needs, with an explicit lifecycle.

    Session and evaluation state live here rather than at module level, so
    each application (and each test) gets its own.
    """

    pipeline: RAGPipeline
    completion_service: CompletionService
    composer: AnswerComposer
    sessions: SessionManager
    conversations: ConversationService
    evaluation: EvaluationEngine

    @classmethod
    def build(
        cls,
        pipeline: RAGPipeline,
        completion_service: CompletionService,
        sessions: SessionManager | None = None,
        evaluation: EvaluationEngine | None = None,
    ) -> Container:
        composer = AnswerComposer(pipeline, completion_service)
        sessions = sessions or SessionManager()
        return cls(
            pipeline=pipeline,
            completion_service=completion_service,
            composer=composer,
            sessions=sessions,
            conversations=ConversationService(sessions, composer),
            evaluation=evaluation or EvaluationEngine(),
        )

    @classmethod
    def from_config(cls) -> Container:
        """Wire the configured chunk store, index and provider clients."""
        pipeline = RAGPipeline(
            repository=get_chunk_repository(),
            embedding_service=EmbeddingService(),
        )
        return cls.build(pipeline, CompletionService())

    async def aclose(self) -> None:
        """Close the provider clients."""
        await self.pipeline.embedding_service.aclose()
        await self.completion_service.aclose()
        logger.info("Closed provider clients")
