"""Provider for vendors that speak the OpenAI chat completions API."""

import logging
from collections.abc import AsyncIterator
from typing import Any

import openai
from openai import AsyncOpenAI
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import settings
from ..core.domain.settings import ChatCompletionSource
from .base import ChatMessages, ChatProvider, ProviderError

logger = logging.getLogger(__name__)

BASE_URLS = {
    ChatCompletionSource.OPENAI: "https://api.openai.com/v1",
    ChatCompletionSource.OPENROUTER: "https://openrouter.ai/api/v1",
    ChatCompletionSource.MISTRALAI: "https://api.mistral.ai/v1",
    ChatCompletionSource.GROQ: "https://api.groq.com/openai/v1",
    ChatCompletionSource.DEEPSEEK: "https://api.deepseek.com",
    ChatCompletionSource.XAI: "https://api.x.ai/v1",
    ChatCompletionSource.PERPLEXITY: "https://api.perplexity.ai",
    ChatCompletionSource.MOONSHOT: "https://api.moonshot.ai/v1",
    ChatCompletionSource.FIREWORKS: "https://api.fireworks.ai/inference/v1",
}

RETRYABLE_ERRORS = (openai.APIConnectionError, openai.RateLimitError)


class OpenAICompatibleProvider(ChatProvider):
    """Chat provider backed by the official OpenAI client."""

    def __init__(
        self,
        source: ChatCompletionSource = ChatCompletionSource.OPENAI,
        api_key: str | None = None,
        base_url: str | None = None,
    ):
        """Initialize the provider.

        Args:
            source: Vendor to talk to
            api_key: API key, defaults to the configured key for the source
            base_url: Endpoint override, required for custom sources
        """
        self._source = source
        self.api_key = api_key if api_key is not None else settings.api_key_for(source.value)
        if base_url is None:
            base_url = settings.custom_url if source == ChatCompletionSource.CUSTOM else BASE_URLS.get(source)
        if not base_url:
            raise ProviderError(f"No endpoint known for {source.value}")
        self.base_url = base_url
        self.client: AsyncOpenAI | None = None

    @property
    def source(self) -> ChatCompletionSource:
        return self._source

    async def __aenter__(self) -> "OpenAICompatibleProvider":
        """Async context manager entry."""
        if not self.api_key and self._source != ChatCompletionSource.CUSTOM:
            raise ProviderError(f"{self._source.value} API key not configured")

        self.client = AsyncOpenAI(
            api_key=self.api_key or "none",
            base_url=self.base_url,
            timeout=settings.request_timeout,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        if self.client:
            await self.client.close()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        reraise=True
    )
    async def _create(self, messages: ChatMessages, stream: bool, **request: Any) -> Any:
        """Call the chat completions endpoint with retry logic."""
        if not self.client:
            raise ProviderError("Client not initialized - use async context manager")

        try:
            return await self.client.chat.completions.create(
                messages=messages, stream=stream, **request
            )
        except RETRYABLE_ERRORS as e:
            logger.warning(f"{self._source.value} request failed, retrying: {str(e)}")
            raise
        except openai.APIStatusError as e:
            logger.error(f"{self._source.value} API error {e.status_code}: {e.message}")
            raise ProviderError(f"API error: {e.status_code}") from e
        except openai.OpenAIError as e:
            logger.error(f"{self._source.value} request failed: {str(e)}")
            raise ProviderError(f"Request failed: {str(e)}") from e

    async def generate(
        self,
        messages: ChatMessages,
        *,
        model: str,
        max_tokens: int,
        **params: Any,
    ) -> str:
        try:
            response = await self._create(messages, False, model=model, max_tokens=max_tokens, **params)
        except RETRYABLE_ERRORS as e:
            raise ProviderError(f"Request failed: {str(e)}") from e

        if not response.choices:
            raise ProviderError("Vendor returned no choices")
        return response.choices[0].message.content or ""

    async def stream(
        self,
        messages: ChatMessages,
        *,
        model: str,
        max_tokens: int,
        **params: Any,
    ) -> AsyncIterator[str]:
        try:
            response = await self._create(messages, True, model=model, max_tokens=max_tokens, **params)
        except RETRYABLE_ERRORS as e:
            raise ProviderError(f"Request failed: {str(e)}") from e

        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                text = chunk.choices[0].delta.content
                if text:
                    yield text
        except openai.OpenAIError as e:
            logger.error(f"{self._source.value} stream interrupted: {str(e)}")
            raise ProviderError(f"Stream interrupted: {str(e)}") from e
        finally:
            await response.close()
