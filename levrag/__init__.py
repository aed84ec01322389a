"""LevRAG - retrieval-augmented question answering over the Lev-Boots corpus."""

from .answer import AnswerComposer
from .conversation import ConversationService, SessionManager
from .document_processing import CorpusLoader, DocumentLoader, TextChunker
from .embeddings import EmbeddingService
from .evaluation import EvaluationEngine, LexicalOverlapScorer
from .models import AskResponse, Chunk, ConversationSession, Message
from .pipeline import RAGPipeline
from .vector_store import (
    InMemoryChunkRepository,
    SQLiteChunkRepository,
    get_chunk_repository,
    get_similarity_index,
)

__all__ = [
    "AnswerComposer",
    "AskResponse",
    "Chunk",
    "ConversationService",
    "ConversationSession",
    "CorpusLoader",
    "DocumentLoader",
    "EmbeddingService",
    "EvaluationEngine",
    "InMemoryChunkRepository",
    "LexicalOverlapScorer",
    "Message",
    "RAGPipeline",
    "SQLiteChunkRepository",
    "SessionManager",
    "TextChunker",
    "get_chunk_repository",
    "get_similarity_index",
]
