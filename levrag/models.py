"""Data models for the RAG service."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any


class SourceType(StrEnum):
    """Kind of corpus source a chunk was cut from."""

    DOCUMENT = "document"
    ARTICLE = "article"
    CHAT_LOG = "chat-log"


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


class QuestionType(StrEnum):
    KNOWLEDGE = "knowledge"
    GENERAL = "general"
    CLARIFICATION = "clarification"


@dataclass(frozen=True)
class SourceDocument:
    """Full text of one corpus source, before chunking."""

    source_id: str
    source_type: SourceType
    name: str
    text: str


@dataclass(frozen=True)
class ChunkMetadata:
    source: str
    chunk_count: int


@dataclass(frozen=True)
class Chunk:
    """A bounded, overlapping slice of a source used as the retrieval unit."""

    content: str
    source_id: str
    source_type: SourceType
    chunk_index: int
    metadata: ChunkMetadata
    embedding: tuple[float, ...] = ()

    @property
    def source(self) -> str:
        """Human-readable label of the originating source."""
        return self.metadata.source

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "sourceId": self.source_id,
            "sourceType": self.source_type.value,
            "chunkIndex": self.chunk_index,
            "metadata": {
                "source": self.metadata.source,
                "chunkCount": self.metadata.chunk_count,
            },
        }


@dataclass(frozen=True)
class RetrievedChunk:
    chunk: Chunk
    similarity: float


@dataclass(frozen=True)
class RetrievalResult:
    """Outcome of a similarity scan; an empty ``chunks`` means no grounding."""

    chunks: list[RetrievedChunk]
    scanned: int = 0
    skipped: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.chunks


@dataclass
class AskResponse:
    """Answer envelope returned by the answer composer."""

    answer: str
    sources: list[str] = field(default_factory=list)
    bibliography: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def failure(cls, message: str) -> AskResponse:
        return cls(answer="", sources=[], bibliography=[], error=message)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "answer": self.answer,
            "sources": list(self.sources),
            "bibliography": list(self.bibliography),
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class Message:
    """A single conversational message; immutable once appended."""

    id: str
    role: Role
    content: str
    timestamp: datetime
    question_type: QuestionType | None = None
    sources: tuple[str, ...] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.question_type is not None:
            data["questionType"] = self.question_type.value
        if self.sources is not None:
            data["sources"] = list(self.sources)
        return data


@dataclass
class SessionMetadata:
    total_questions: int = 0
    total_responses: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "totalQuestions": self.total_questions,
            "totalResponses": self.total_responses,
        }


@dataclass
class ConversationSession:
    """Multi-turn conversation state owned by the session manager."""

    session_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    messages: list[Message] = field(default_factory=list)
    context_usage: int = 0
    metadata: SessionMetadata = field(default_factory=SessionMetadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "title": self.title,
            "messages": [message.to_dict() for message in self.messages],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "contextUsage": self.context_usage,
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class GroundTruthPair:
    id: str
    question: str
    expected_answer: str
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "question": self.question,
            "expectedAnswer": self.expected_answer,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class EvaluationResult:
    """Scores of one answer against one ground-truth pair; append-only."""

    pair_id: str
    actual_answer: str
    ragas_score: float
    faithfulness: float
    relevance: float
    coherence: float
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "pairId": self.pair_id,
            "actualAnswer": self.actual_answer,
            "ragasScore": self.ragas_score,
            "faithfulness": self.faithfulness,
            "relevance": self.relevance,
            "coherence": self.coherence,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class ScoreTrend:
    """Per-day bucket of evaluation scores."""

    date: str
    avg_score: float
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "avgScore": round(self.avg_score, 2),
            "count": self.count,
        }
