"""Test configuration and fixtures for LevRAG tests.

This module provides reusable test fixtures organized by functionality:
- Constants and test data
- Fake provider gateways (embeddings, completions)
- Chunk and repository fixtures
- Pipeline, session and evaluation fixtures
- HTTP application fixtures
"""

import hashlib
import json
import sqlite3
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, Mock

import httpx
import numpy as np
import openai
import pytest
from fastapi.testclient import TestClient

from levrag.answer import AnswerComposer
from levrag.api import create_app
from levrag.container import Container
from levrag.conversation import SessionLimits, SessionManager
from levrag.document_processing import TextChunker
from levrag.evaluation import EvaluationEngine
from levrag.models import Chunk, ChunkMetadata, SourceType
from levrag.pipeline import RAGPipeline
from levrag.retrieval import Retriever
from levrag.vector_store import (
    BruteForceIndex,
    InMemoryChunkRepository,
    SQLiteChunkRepository,
)


class TestConstants:
    """Centralized test constants to avoid repetition across test files."""

    # Provider configuration
    TEST_API_KEY = "test-key"
    TEST_EMBEDDING_MODEL = "text-embedding-3-small"
    TEST_CHAT_MODEL = "gpt-4o-mini"
    EMBEDDING_DIMENSION = 8

    # Chunking configuration (words)
    SMALL_CHUNK_SIZE = 10
    SMALL_CHUNK_OVERLAP = 2

    # Retrieval configuration
    TOP_K = 5
    SIMILARITY_THRESHOLD = 0.3

    # Conversation configuration
    MAX_CONTEXT_TOKENS = 2000
    MESSAGE_TOKEN_ESTIMATE = 100
    MAX_MESSAGES = 50

    DEFAULT_ANSWER = "Lev-Boots hover using a compact magnetic field [1]."
    START_TIME = datetime(2024, 3, 1, 9, 30, tzinfo=UTC)


def hashed_embedding(
    text: str, dimension: int = TestConstants.EMBEDDING_DIMENSION
) -> np.ndarray:
    """Deterministic unit vector seeded by the text's hash."""
    seed = int.from_bytes(
        hashlib.sha256(text.lower().encode("utf-8")).digest()[:8],
        byteorder="big",
        signed=False,
    )
    rng = np.random.default_rng(seed)
    embedding = rng.normal(0, 1, dimension)
    return embedding / np.linalg.norm(embedding)


class FakeEmbeddingService:
    """Embedding gateway stand-in that never touches the network.

    Vectors are derived from the text hash unless ``overrides`` maps the text
    to a fixed vector.
    """

    def __init__(
        self,
        dimension: int = TestConstants.EMBEDDING_DIMENSION,
        overrides: dict[str, Sequence[float]] | None = None,
    ) -> None:
        self.dimension = dimension
        self.overrides = dict(overrides or {})
        self.failure: Exception | None = None
        self.requests: list[str] = []
        self.closed = False

    async def get_embedding(self, text: str) -> np.ndarray:
        self.requests.append(text)
        if self.failure is not None:
            raise self.failure
        if text in self.overrides:
            return np.asarray(self.overrides[text], dtype=np.float64)
        return hashed_embedding(text, self.dimension)

    async def get_embeddings_batch(self, texts: list[str]) -> list[np.ndarray]:
        return [await self.get_embedding(text) for text in texts]

    async def aclose(self) -> None:
        self.closed = True


class FakeCompletionService:
    """Completion gateway stand-in replaying scripted replies.

    Each reply is returned once in order; an Exception entry is raised
    instead. When the script runs out, ``default_reply`` is used.
    """

    def __init__(
        self,
        replies: Sequence[str | Exception] = (),
        default_reply: str = TestConstants.DEFAULT_ANSWER,
    ) -> None:
        self.replies = list(replies)
        self.default_reply = default_reply
        self.calls: list[list[dict[str, str]]] = []
        self.closed = False

    async def complete(self, messages: list[dict[str, str]]) -> str:
        self.calls.append(messages)
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self) -> None:
        self.closed = True


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = TestConstants.START_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def create_mock_embedding_response(embeddings: list[list[float]]) -> Mock:
    """Create a mock OpenAI embeddings API response.

    Args:
        embeddings: List of embedding vectors to return.

    Returns:
        Mock object representing OpenAI embeddings API response.
    """
    mock_response = Mock()
    mock_response.data = [Mock(embedding=emb) for emb in embeddings]
    return mock_response


def create_mock_chat_response(content: str | None) -> Mock:
    """Create a mock OpenAI chat completion response.

    Args:
        content: The content for the chat completion response.

    Returns:
        Mock object representing OpenAI chat completion response.
    """
    mock_response = Mock()
    mock_response.choices = [Mock(message=Mock(content=content))]
    return mock_response


PROVIDER_REQUEST = httpx.Request("POST", "https://api.openai.test/v1/embeddings")


def make_status_error(status_code: int) -> openai.APIStatusError:
    """Build the provider error raised for a non-2xx response."""
    response = httpx.Response(status_code, request=PROVIDER_REQUEST)
    return openai.APIStatusError(
        f"Error code: {status_code}", response=response, body=None
    )


def make_connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=PROVIDER_REQUEST)


def mock_openai_client() -> Mock:
    """Client double exposing the async endpoints the gateways call."""
    client = Mock()
    client.embeddings.create = AsyncMock()
    client.chat.completions.create = AsyncMock()
    client.close = AsyncMock()
    return client


def make_chunk(  # noqa: PLR0913
    content: str,
    embedding: Sequence[float] = (),
    *,
    source: str = "levboots_manual.pdf",
    source_id: str | None = None,
    source_type: SourceType = SourceType.DOCUMENT,
    chunk_index: int = 0,
) -> Chunk:
    """Build a chunk with sensible defaults for tests."""
    return Chunk(
        content=content,
        source_id=source_id or source,
        source_type=source_type,
        chunk_index=chunk_index,
        metadata=ChunkMetadata(source=source, chunk_count=1),
        embedding=tuple(float(value) for value in embedding),
    )


def unit(*values: float) -> list[float]:
    """Pad ``values`` with zeros to the test embedding dimension."""
    padded = list(values) + [0.0] * (TestConstants.EMBEDDING_DIMENSION - len(values))
    return padded[: TestConstants.EMBEDDING_DIMENSION]


def insert_raw_row(
    repository: SQLiteChunkRepository, content: str, embedding: str | None
) -> None:
    """Write a chunk row directly, bypassing repository validation."""
    with sqlite3.connect(repository.db_path) as conn:
        conn.execute(
            """
            INSERT INTO chunks (
                content, source_id, source_type, chunk_index,
                source, chunk_count, embedding
            )
            VALUES (?, 'bad', 'document', 0, 'bad.pdf', 1, ?)
            """,
            (content, embedding),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_embedding_service():
    return FakeEmbeddingService()


@pytest.fixture
def fake_completion_service():
    return FakeCompletionService()


@pytest.fixture
def text_chunker_small():
    """Text chunker with 10-word windows overlapping by 2 and no length floor."""
    return TextChunker(
        chunk_size=TestConstants.SMALL_CHUNK_SIZE,
        overlap=TestConstants.SMALL_CHUNK_OVERLAP,
        min_chars=0,
    )


@pytest.fixture
def memory_repository():
    return InMemoryChunkRepository(dimension=TestConstants.EMBEDDING_DIMENSION)


@pytest.fixture
def sqlite_repository(tmp_path):
    return SQLiteChunkRepository(
        db_path=tmp_path / "chunks.db",
        dimension=TestConstants.EMBEDDING_DIMENSION,
    )


@pytest.fixture(params=["memory", "sqlite"])
def chunk_repository(request, tmp_path):
    """Each chunk repository backend in turn."""
    if request.param == "memory":
        return InMemoryChunkRepository(dimension=TestConstants.EMBEDDING_DIMENSION)
    return SQLiteChunkRepository(
        db_path=tmp_path / "chunks.db",
        dimension=TestConstants.EMBEDDING_DIMENSION,
    )


@pytest.fixture
def sample_chunks():
    """Three chunks along distinct axes, from two sources."""
    return [
        make_chunk(
            "Lev-Boots use magnetic levitation to hover above the ground.",
            unit(1.0),
            source="levboots_manual.pdf",
        ),
        make_chunk(
            "Battery life of Lev-Boots is around four hours of continuous use.",
            unit(0.0, 1.0),
            source="levboots_manual.pdf",
            chunk_index=1,
        ),
        make_chunk(
            "Safety regulations require a helmet when flying above two meters.",
            unit(0.0, 0.0, 1.0),
            source="Safety Article",
            source_id="safety",
            source_type=SourceType.ARTICLE,
        ),
    ]


@pytest.fixture
def pipeline_factory(fake_embedding_service, text_chunker_small):
    """Factory for pipelines over a given repository with test retrieval policy."""

    def _create_pipeline(
        repository=None,
        *,
        embedding_service=None,
        top_k: int = TestConstants.TOP_K,
        threshold: float = TestConstants.SIMILARITY_THRESHOLD,
    ) -> RAGPipeline:
        repository = repository or InMemoryChunkRepository(
            dimension=TestConstants.EMBEDDING_DIMENSION
        )
        index = BruteForceIndex(repository)
        return RAGPipeline(
            repository=repository,
            embedding_service=embedding_service or fake_embedding_service,
            chunker=text_chunker_small,
            index=index,
            retriever=Retriever(index, top_k=top_k, threshold=threshold),
        )

    return _create_pipeline


@pytest.fixture
def pipeline(pipeline_factory):
    return pipeline_factory()


@pytest.fixture
def composer(pipeline, fake_completion_service):
    return AnswerComposer(pipeline, fake_completion_service)


@pytest.fixture
def session_limits():
    return SessionLimits(
        max_context_tokens=TestConstants.MAX_CONTEXT_TOKENS,
        message_token_estimate=TestConstants.MESSAGE_TOKEN_ESTIMATE,
        max_messages=TestConstants.MAX_MESSAGES,
        timeout=timedelta(hours=24),
    )


@pytest.fixture
def session_manager(clock, session_limits):
    return SessionManager(clock=clock, limits=session_limits)


@pytest.fixture
def evaluation_engine(clock):
    return EvaluationEngine(clock=clock, recent_size=50)


@pytest.fixture
def corpus_dir(tmp_path):
    """A small corpus with one document, one article and two chat channels."""
    root = tmp_path / "corpus"
    (root / "documents").mkdir(parents=True)
    (root / "articles").mkdir()
    (root / "chat_logs").mkdir()

    (root / "documents" / "levboots_manual.txt").write_text(
        "Lev-Boots are personal levitation devices. They use magnetic fields "
        "to lift the wearer a few centimeters above the ground. Each pair has "
        "a rechargeable battery that lasts about four hours.",
        encoding="utf-8",
    )
    (root / "articles" / "safety.md").write_text(
        "# Lev-Boots Safety Guide\n\nAlways wear a helmet when hovering above "
        "two meters. Never use Lev-Boots near power lines or during storms.",
        encoding="utf-8",
    )
    (root / "chat_logs" / "chat.json").write_text(
        json.dumps(
            [
                {"channel": "support", "text": "My boots will not charge overnight.",
                 "timestamp": "2024-01-01T10:00:00Z"},
                {"channel": "general", "text": "Hovering over the lake was amazing!",
                 "timestamp": "2024-01-01T10:05:00Z"},
                {"channel": "support", "text": "Try resetting the charging dock first.",
                 "timestamp": "2024-01-01T10:06:00Z"},
            ]
        ),
        encoding="utf-8",
    )
    return root


@pytest.fixture
def container(pipeline, fake_completion_service, session_manager, evaluation_engine):
    return Container.build(
        pipeline,
        fake_completion_service,
        sessions=session_manager,
        evaluation=evaluation_engine,
    )


@pytest.fixture
def client(container):
    """HTTP client over an application wired to the test container."""
    with TestClient(create_app(container)) as test_client:
        yield test_client
