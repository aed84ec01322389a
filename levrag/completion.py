"""OpenAI-compatible chat completion gateway."""

import asyncio

import openai
from openai import AsyncOpenAI

from .config import config
from .errors import CompletionFailure
from .retry import create_retry_decorator

logger = config.get_logger(__name__)


class CompletionService:
    """Sends an ordered role/content message list and returns the reply text."""

    def __init__(  # noqa: PLR0913
        self,
        api_key: str | None = None,
        model: str | None = None,
        *,
        client: AsyncOpenAI | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        base_delay: float | None = None,
    ) -> None:
        self.model = model or config.CHAT_MODEL
        self.temperature = (
            config.CHAT_TEMPERATURE if temperature is None else temperature
        )
        self.max_tokens = config.CHAT_MAX_TOKENS if max_tokens is None else max_tokens
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

    async def _request(self, messages: list[dict[str, str]]) -> str:
        response = await asyncio.wait_for(
            self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # pyright: ignore[reportArgumentType]
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            ),
            timeout=self.timeout,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Generate a reply for the given conversation.

        Args:
            messages: Ordered ``{"role", "content"}`` dicts, system first.

        Returns:
            The generated text, possibly empty.

        Raises:
            CompletionFailure: On timeout, network or non-2xx provider errors.
        """
        logger.info(
            "Generating answer with %s (%d messages)", self.model, len(messages)
        )
        try:
            return await self._with_retry(self._request)(messages)
        except TimeoutError as exc:
            logger.exception("Completion request timed out")
            msg = f"Completion request timed out after {self.timeout:g}s"
            raise CompletionFailure(msg) from exc
        except openai.OpenAIError as exc:
            logger.exception("Completion provider error")
            msg = f"Completion request failed: {exc}"
            raise CompletionFailure(msg) from exc

    async def aclose(self) -> None:
        await self.client.close()
