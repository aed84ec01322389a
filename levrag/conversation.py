"""Conversation sessions with a bounded context budget."""

from __future__ import annotations

import json
import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from .config import config
from .errors import MalformedImportPayload, SessionNotFound
from .models import (
    ConversationSession,
    Message,
    QuestionType,
    Role,
    SessionMetadata,
)

if TYPE_CHECKING:
    from .answer import AnswerComposer

logger = config.get_logger(__name__)

CONTEXT_FULL_RATIO = 0.9
MIN_MESSAGES_TO_COMPRESS = 10
KNOWLEDGE_KEYWORDS = ("how", "what", "explain", "levboots")
CLARIFICATION_PHRASES = ("what do you mean", "explain that")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


def classify_question(question: str) -> QuestionType:
    """Classify a user message with keyword rules.

    Clarification phrasing is checked before knowledge keywords, so
    "explain that" is a clarification even though it contains "explain".
    """
    text = question.lower()
    if text.startswith("clarify") or any(p in text for p in CLARIFICATION_PHRASES):
        return QuestionType.CLARIFICATION
    if any(keyword in text for keyword in KNOWLEDGE_KEYWORDS):
        return QuestionType.KNOWLEDGE
    return QuestionType.GENERAL


def estimate_context_usage(messages: Sequence[Message], token_estimate: int) -> int:
    return len(messages) * token_estimate


def message_tokens(content: str) -> int:
    """Word count used as a per-message token estimate."""
    return len(content.split())


def select_recent_messages(messages: Sequence[Message], max_tokens: int) -> list[Message]:
    """Newest messages that fit in ``max_tokens``, in chronological order.

    The walk stops at the first message that would overflow the budget, even
    if an older, shorter message would still fit.
    """
    kept: list[Message] = []
    total = 0
    for message in reversed(messages):
        tokens = message_tokens(message.content)
        if total + tokens > max_tokens:
            break
        kept.append(message)
        total += tokens
    kept.reverse()
    return kept


def compress_messages(
    messages: Sequence[Message],
    *,
    summary_id: str,
    timestamp: datetime,
) -> list[Message] | None:
    """Replace the older half of a history with one summary message.

    Returns:
        The summary followed by the ``ceil(n/2)`` newest messages, or None
        when there are fewer than ten messages.
    """
    count = len(messages)
    if count < MIN_MESSAGES_TO_COMPRESS:
        return None

    older = messages[: count // 2]
    newer = messages[count // 2 :]
    question_count = sum(1 for message in older if message.role is Role.USER)
    summary = Message(
        id=summary_id,
        role=Role.ASSISTANT,
        content=(
            f"[Summary: Previous conversation had {question_count} questions. "
            "Continuing from latest context...]"
        ),
        timestamp=timestamp,
    )
    return [summary, *newer]


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class SessionLimits:
    max_context_tokens: int
    message_token_estimate: int
    max_messages: int
    timeout: timedelta

    @classmethod
    def from_config(cls) -> SessionLimits:
        return cls(
            max_context_tokens=config.MAX_CONTEXT_TOKENS,
            message_token_estimate=config.MESSAGE_TOKEN_ESTIMATE,
            max_messages=config.MAX_MESSAGES_PER_SESSION,
            timeout=timedelta(hours=config.SESSION_TIMEOUT_HOURS),
        )


class InMemorySessionRepository:
    """Keyed in-process session store.

    Individual calls never interleave, but a caller that reads a session,
    awaits something, then writes it back is not atomic: two requests for
    the same session id can each work from a stale snapshot. This store does
    not lock; callers that need read-modify-write across an ``await`` must
    serialise access per session themselves.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, ConversationSession] = {}

    def get(self, session_id: str) -> ConversationSession | None:
        return self._sessions.get(session_id)

    def save(self, session: ConversationSession) -> None:
        self._sessions[session.session_id] = session

    def delete(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def all(self) -> list[ConversationSession]:
        return list(self._sessions.values())

    def clear(self) -> None:
        self._sessions.clear()


class SessionManager:
    """Per-conversation state machine: active sessions expire after inactivity.

    Unknown or expired session ids yield None (or False) rather than an
    exception.
    """

    def __init__(
        self,
        repository: InMemorySessionRepository | None = None,
        clock: Clock | None = None,
        limits: SessionLimits | None = None,
    ) -> None:
        self.repository = repository or InMemorySessionRepository()
        self.clock = clock or utc_now
        self.limits = limits or SessionLimits.from_config()

    def _is_expired(self, session: ConversationSession, now: datetime) -> bool:
        return now - session.updated_at > self.limits.timeout

    def _usage(self, messages: Sequence[Message]) -> int:
        return estimate_context_usage(messages, self.limits.message_token_estimate)

    def create_session(self, title: str | None = None) -> ConversationSession:
        now = self.clock()
        session = ConversationSession(
            session_id=new_id("session"),
            title=title or f"Conversation {now:%Y-%m-%d}",
            created_at=now,
            updated_at=now,
        )
        self.repository.save(session)
        logger.info("Created new conversation session: %s", session.session_id)
        return session

    def get_session(self, session_id: str) -> ConversationSession | None:
        """Return an active session; an expired one is evicted and hidden."""
        session = self.repository.get(session_id)
        if session is None:
            return None
        if self._is_expired(session, self.clock()):
            logger.info("Session %s expired", session_id)
            self.repository.delete(session_id)
            return None
        return session

    def list_sessions(self) -> list[ConversationSession]:
        now = self.clock()
        active = []
        for session in self.repository.all():
            if self._is_expired(session, now):
                logger.info("Session %s expired", session.session_id)
                self.repository.delete(session.session_id)
            else:
                active.append(session)
        return active

    def delete_session(self, session_id: str) -> bool:
        deleted = self.repository.delete(session_id)
        if deleted:
            logger.info("Deleted conversation session: %s", session_id)
        return deleted

    def add_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        sources: Sequence[str] | None = None,
        question_type: QuestionType | None = None,
    ) -> Message | None:
        """Append a message, evicting the oldest pair when the session is full.

        ``question_type`` is kept for user messages only and ``sources`` for
        assistant messages only.

        Returns:
            The appended message, or None if the session is unknown or
            expired.
        """
        session = self.get_session(session_id)
        if session is None:
            logger.error("Session not found: %s", session_id)
            return None

        if len(session.messages) >= self.limits.max_messages:
            del session.messages[:2]
            logger.debug("Removed oldest messages from session %s", session_id)

        now = self.clock()
        message = Message(
            id=new_id("msg"),
            role=role,
            content=content,
            timestamp=now,
            question_type=question_type if role is Role.USER else None,
            sources=(
                tuple(sources) if role is Role.ASSISTANT and sources is not None else None
            ),
        )
        session.messages.append(message)
        session.updated_at = now
        if role is Role.USER:
            session.metadata.total_questions += 1
        else:
            session.metadata.total_responses += 1
        session.context_usage = self._usage(session.messages)
        self.repository.save(session)

        logger.debug(
            "Added %s message to session %s. Context usage: %d/%d",
            role.value,
            session_id,
            session.context_usage,
            self.limits.max_context_tokens,
        )
        return message

    def get_messages(self, session_id: str) -> list[Message] | None:
        session = self.get_session(session_id)
        return None if session is None else list(session.messages)

    def get_recent_messages(
        self,
        session_id: str,
        max_tokens: int | None = None,
    ) -> list[Message] | None:
        session = self.get_session(session_id)
        if session is None:
            return None
        budget = self.limits.max_context_tokens if max_tokens is None else max_tokens
        return select_recent_messages(session.messages, budget)

    def is_context_window_full(self, session_id: str) -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False
        return (
            session.context_usage
            >= CONTEXT_FULL_RATIO * self.limits.max_context_tokens
        )

    def compress(self, session_id: str) -> bool:
        """Summarise the older half of the history.

        Returns:
            False if the session is unknown or has fewer than ten messages.
        """
        session = self.get_session(session_id)
        if session is None:
            return False

        now = self.clock()
        compressed = compress_messages(
            session.messages, summary_id=new_id("msg"), timestamp=now
        )
        if compressed is None:
            return False

        session.messages = compressed
        session.context_usage = self._usage(compressed)
        session.updated_at = now
        self.repository.save(session)
        logger.info(
            "Compressed message history in session %s. New message count: %d",
            session_id,
            len(compressed),
        )
        return True

    def clear_session(self, session_id: str) -> bool:
        session = self.get_session(session_id)
        if session is None:
            return False

        session.messages = []
        session.context_usage = 0
        session.metadata = SessionMetadata()
        session.updated_at = self.clock()
        self.repository.save(session)
        logger.info("Cleared messages in session %s", session_id)
        return True

    def session_stats(self, session_id: str) -> dict[str, Any] | None:
        session = self.get_session(session_id)
        if session is None:
            return None

        age = self.clock() - session.created_at
        max_tokens = self.limits.max_context_tokens
        return {
            "sessionId": session.session_id,
            "title": session.title,
            "messageCount": len(session.messages),
            "createdAt": session.created_at.isoformat(),
            "updatedAt": session.updated_at.isoformat(),
            "ageMinutes": _round_half_up(age.total_seconds() / 60),
            "contextUsage": {
                "current": session.context_usage,
                "max": max_tokens,
                "percentage": _round_half_up(session.context_usage / max_tokens * 100),
            },
            "metadata": session.metadata.to_dict(),
        }

    def export_session(self, session_id: str) -> dict[str, Any] | None:
        session = self.get_session(session_id)
        if session is None:
            return None

        messages = []
        for message in session.messages:
            data = message.to_dict()
            data.pop("id")
            messages.append(data)
        return {
            "session": {
                "sessionId": session.session_id,
                "title": session.title,
                "createdAt": session.created_at.isoformat(),
                "updatedAt": session.updated_at.isoformat(),
                "metadata": session.metadata.to_dict(),
            },
            "messages": messages,
        }

    def import_session(self, payload: str | dict[str, Any]) -> ConversationSession:
        """Create a new session from an exported payload.

        The session gets a fresh id, recomputed usage and counters, and only
        the newest messages that fit the per-session limit.

        Raises:
            MalformedImportPayload: If the payload shape is invalid.
        """
        if isinstance(payload, str):
            try:
                payload = json.loads(payload)
            except json.JSONDecodeError as e:
                msg = f"Session import is not valid JSON: {e}"
                raise MalformedImportPayload(msg) from e

        if not isinstance(payload, dict):
            msg = "Session import must be a JSON object"
            raise MalformedImportPayload(msg)
        session_data = payload.get("session")
        raw_messages = payload.get("messages")
        if not isinstance(session_data, dict) or not isinstance(raw_messages, list):
            msg = "Session import requires a 'session' object and a 'messages' list"
            raise MalformedImportPayload(msg)

        now = self.clock()
        messages = [
            self._parse_imported_message(index, raw, now)
            for index, raw in enumerate(raw_messages)
        ]
        messages = messages[-self.limits.max_messages :]

        title = session_data.get("title")
        if not isinstance(title, str) or not title:
            title = f"Conversation {now:%Y-%m-%d}"
        session = ConversationSession(
            session_id=new_id("session"),
            title=title,
            created_at=now,
            updated_at=now,
            messages=messages,
            context_usage=self._usage(messages),
            metadata=SessionMetadata(
                total_questions=sum(1 for m in messages if m.role is Role.USER),
                total_responses=sum(1 for m in messages if m.role is Role.ASSISTANT),
            ),
        )
        self.repository.save(session)
        logger.info("Imported session: %s", session.session_id)
        return session

    @staticmethod
    def _parse_imported_message(index: int, raw: object, now: datetime) -> Message:
        if not isinstance(raw, dict):
            msg = f"Message {index} must be an object"
            raise MalformedImportPayload(msg)

        try:
            role = Role(raw.get("role"))
        except ValueError as e:
            msg = f"Message {index} has an invalid role: {raw.get('role')!r}"
            raise MalformedImportPayload(msg) from e

        content = raw.get("content")
        if not isinstance(content, str):
            msg = f"Message {index} content must be a string"
            raise MalformedImportPayload(msg)

        timestamp = now
        if raw.get("timestamp") is not None:
            try:
                timestamp = datetime.fromisoformat(str(raw["timestamp"]))
            except ValueError as e:
                msg = f"Message {index} has an invalid timestamp"
                raise MalformedImportPayload(msg) from e
            if timestamp.tzinfo is None:
                timestamp = timestamp.replace(tzinfo=UTC)

        question_type = None
        if raw.get("questionType") is not None:
            try:
                question_type = QuestionType(raw["questionType"])
            except ValueError as e:
                msg = f"Message {index} has an invalid questionType"
                raise MalformedImportPayload(msg) from e

        sources = raw.get("sources")
        if sources is not None and (
            not isinstance(sources, list)
            or not all(isinstance(source, str) for source in sources)
        ):
            msg = f"Message {index} sources must be a list of strings"
            raise MalformedImportPayload(msg)

        return Message(
            id=new_id("msg"),
            role=role,
            content=content,
            timestamp=timestamp,
            question_type=question_type if role is Role.USER else None,
            sources=tuple(sources) if role is Role.ASSISTANT and sources is not None else None,
        )


class ConversationService:
    """Runs one conversational turn against the answer composer."""

    def __init__(self, manager: SessionManager, composer: AnswerComposer) -> None:
        self.manager = manager
        self.composer = composer

    async def send_message(self, session_id: str, question: str) -> dict[str, Any]:
        """Record a question, answer it with recent history, record the answer.

        History is captured before the question is appended, so the composer
        sees the question only once.

        Raises:
            SessionNotFound: If the session is unknown, expired, or deleted
                while the answer was being generated.
        """
        history = self.manager.get_recent_messages(session_id)
        if history is None:
            msg = f"Session not found: {session_id}"
            raise SessionNotFound(msg)

        user_message = self.manager.add_message(
            session_id,
            Role.USER,
            question,
            question_type=classify_question(question),
        )
        if user_message is None:
            msg = f"Session not found: {session_id}"
            raise SessionNotFound(msg)

        rag_response = await self.composer.ask(question, history)

        assistant_message = self.manager.add_message(
            session_id,
            Role.ASSISTANT,
            rag_response.answer,
            sources=rag_response.sources,
        )
        session = self.manager.get_session(session_id)
        if assistant_message is None or session is None:
            msg = f"Session not found: {session_id}"
            raise SessionNotFound(msg)

        logger.info("Message exchange in session %s", session_id)
        return {
            "userMessage": user_message.to_dict(),
            "assistantMessage": assistant_message.to_dict(),
            "ragResponse": rag_response.to_dict(),
            "contextUsage": session.context_usage,
            "contextWindowFull": self.manager.is_context_window_full(session_id),
        }
