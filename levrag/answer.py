"""Answer composition: grounding prompt, completion call and post-processing."""

import re
from collections.abc import Sequence

from .completion import CompletionService
from .config import config
from .errors import LevRAGError
from .models import AskResponse, Message, RetrievedChunk
from .pipeline import RAGPipeline

logger = config.get_logger(__name__)

NO_RESULTS_ANSWER = (
    "I could not find any relevant information in the knowledge base "
    "to answer this question."
)
CONTEXT_DELIMITER = "\n\n---\n\n"
CITATION_PATTERN = re.compile(r"\[\d+\]")

SYSTEM_PROMPT_TEMPLATE = """You are an AI assistant specialized in answering questions about Lev-Boots technology based on provided knowledge base documents.

You MUST follow these rules:
1. Only answer questions based on the provided context from the knowledge base
2. If the answer is not in the provided context, say "I don't have information about that in the knowledge base"
3. Write clear, simple paragraphs - avoid excessive markdown formatting
4. Use headings only for main sections (use # or ## sparingly)
5. Avoid bullet points when possible - use flowing prose instead
6. Be accurate, concise, and easy to read
7. Do not make up or assume information not in the context
8. Do NOT include [1], [2], etc. citations in your answer

KNOWLEDGE BASE CONTEXT:
{context}

---

Answer the user's question based ONLY on the above context. Make the answer clear and easy to read with simple, direct language."""


def build_system_prompt(chunks: Sequence[RetrievedChunk]) -> str:
    """Build the grounding instruction from retrieved chunks.

    Returns:
        The system prompt with each chunk labelled ``Source <n>: <name>``.
    """
    context = CONTEXT_DELIMITER.join(
        f"Source {i}: {match.chunk.source}\n{match.chunk.content}"
        for i, match in enumerate(chunks, start=1)
    )
    return SYSTEM_PROMPT_TEMPLATE.format(context=context)


def strip_citations(answer: str) -> str:
    return CITATION_PATTERN.sub("", answer).strip()


def extract_sources(chunks: Sequence[RetrievedChunk]) -> list[str]:
    """Distinct source labels in first-occurrence order."""
    return list(dict.fromkeys(match.chunk.source for match in chunks))


class AnswerComposer:
    """Answers a question from retrieved context, never raising past ``ask``."""

    def __init__(
        self,
        pipeline: RAGPipeline,
        completion_service: CompletionService,
    ) -> None:
        self.pipeline = pipeline
        self.completion_service = completion_service

    async def ask(
        self,
        question: str,
        history: Sequence[Message] | None = None,
    ) -> AskResponse:
        """Answer a question using the knowledge base.

        Args:
            question: The user's question.
            history: Earlier conversation turns, oldest first, placed between
                the system instruction and the question.

        Returns:
            AskResponse. An empty retrieval yields the fixed no-results
            answer with no sources; any failure yields an empty answer and
            an ``error`` description.
        """
        logger.info("User question: %s", question)
        try:
            retrieval = await self.pipeline.query(question)
            if retrieval.is_empty:
                logger.warning("No relevant chunks found in knowledge base")
                return AskResponse(answer=NO_RESULTS_ANSWER)

            logger.info("Found %d relevant chunks", len(retrieval.chunks))
            messages = [
                {"role": "system", "content": build_system_prompt(retrieval.chunks)},
                *({"role": m.role.value, "content": m.content} for m in history or ()),
                {"role": "user", "content": question},
            ]
            raw_answer = await self.completion_service.complete(messages)
        except LevRAGError as e:
            logger.exception("Error asking AI")
            return AskResponse.failure(f"Failed to get answer: {e.message}")

        sources = extract_sources(retrieval.chunks)
        logger.info("Answer generated from sources: %s", ", ".join(sources))
        return AskResponse(
            answer=strip_citations(raw_answer),
            sources=sources,
            bibliography=list(sources),
        )
