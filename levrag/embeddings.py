"""OpenAI-compatible embeddings gateway."""

import asyncio
import time

import numpy as np
import openai
from openai import AsyncOpenAI

from .config import config
from .errors import EmbeddingFailure
from .retry import create_retry_decorator
from .similarity import parse_embedding

logger = config.get_logger(__name__)


class EmbeddingService:
    """Turns text into fixed-dimension vectors, one request at a time."""

    def __init__(  # noqa: PLR0913
        self,
        api_key: str | None = None,
        model: str | None = None,
        dimension: int | None = None,
        *,
        client: AsyncOpenAI | None = None,
        request_delay: float | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> None:
        """Initialize the EmbeddingService.

        Args:
            api_key: Provider API key. If None, reads OPENAI_API_KEY.
            model: Embedding model name. If None, uses config.EMBEDDING_MODEL.
            dimension: Expected vector length. If None, uses
                config.EMBEDDING_DIMENSION.
            client: Pre-built client, mainly for tests.
            request_delay: Seconds to wait between batch requests.
            timeout: Per-attempt timeout in seconds.
            max_attempts: Attempts per text, including the first.
            base_delay: Backoff before the second attempt.
        """
        self.model = model or config.EMBEDDING_MODEL
        self.dimension = config.EMBEDDING_DIMENSION if dimension is None else dimension
        self.request_delay = (
            config.EMBEDDING_REQUEST_DELAY if request_delay is None else request_delay
        )
        self.timeout = config.REQUEST_TIMEOUT if timeout is None else timeout
        self.client = client or AsyncOpenAI(
            api_key=api_key or config.get_openai_api_key(),
            base_url=config.OPENAI_BASE_URL,
            timeout=self.timeout,
            max_retries=0,
        )
        self._with_retry = create_retry_decorator(
            max_attempts=max_attempts, base_delay=base_delay
        )

    async def _request(self, text: str) -> np.ndarray:
        response = await asyncio.wait_for(
            self.client.embeddings.create(
                model=self.model,
                input=text,
                dimensions=self.dimension,
            ),
            timeout=self.timeout,
        )
        if not response.data:
            msg = "Embedding response contained no vector"
            raise EmbeddingFailure(msg)

        embedding = parse_embedding(response.data[0].embedding)
        if embedding is None:
            msg = "Embedding response contained a malformed vector"
            raise EmbeddingFailure(msg)
        if embedding.shape[0] != self.dimension:
            msg = (
                f"Embedding dimension {embedding.shape[0]} does not match "
                f"configured dimension {self.dimension}"
            )
            raise EmbeddingFailure(msg)
        return embedding

    async def get_embedding(self, text: str) -> np.ndarray:
        """Get embedding for a single text.

        Transient provider failures are retried; a malformed response fails
        immediately.

        Returns:
            np.ndarray: The embedding vector for the input text.

        Raises:
            EmbeddingFailure: If no valid vector could be obtained.
        """
        try:
            embedding = await self._with_retry(self._request)(text)
        except EmbeddingFailure:
            logger.exception("Embedding provider returned an unusable response")
            raise
        except TimeoutError as exc:
            logger.exception("Embedding request timed out")
            msg = f"Embedding request timed out after {self.timeout:g}s"
            raise EmbeddingFailure(msg) from exc
        except openai.OpenAIError as exc:
            logger.exception("Error generating embedding")
            msg = f"Embedding request failed: {exc}"
            raise EmbeddingFailure(msg) from exc
        else:
            return embedding

    async def get_embeddings_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Get embeddings for multiple texts, strictly sequentially.

        Requests are separated by ``request_delay`` seconds to stay within
        provider rate limits.

        Returns:
            list[np.ndarray]: One embedding per input text, in order.

        Raises:
            EmbeddingFailure: If any text fails; the message names its index.
        """
        if not texts:
            logger.info("No texts provided for embedding generation")
            return []

        logger.info("Starting embedding generation for %d texts", len(texts))
        started = time.perf_counter()
        embeddings: list[np.ndarray] = []

        for i, text in enumerate(texts):
            try:
                embeddings.append(await self.get_embedding(text))
            except EmbeddingFailure as exc:
                msg = f"Embedding generation failed at index {i}: {exc.message}"
                raise EmbeddingFailure(msg) from exc

            if (i + 1) % 10 == 0:
                logger.info("Progress: generated embeddings %d/%d", i + 1, len(texts))
            if i < len(texts) - 1 and self.request_delay > 0:
                await asyncio.sleep(self.request_delay)

        logger.info(
            "Generated %d embeddings in %.1fs",
            len(embeddings),
            time.perf_counter() - started,
        )
        return embeddings

    async def aclose(self) -> None:
        await self.client.close()
