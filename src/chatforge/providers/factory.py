"""Factory for creating chat providers."""

from typing import Any

from ..core.config import settings
from ..core.domain.settings import ChatCompletionSource
from .base import ChatProvider, ProviderError
from .claude import ClaudeProvider
from .openai_compatible import BASE_URLS, OpenAICompatibleProvider


class ChatProviderFactory:
    """Factory for creating chat providers."""

    @staticmethod
    def create_provider(source: ChatCompletionSource, **kwargs: Any) -> ChatProvider:
        """Create a chat provider instance.

        Args:
            source: Chat completion source to talk to
            **kwargs: Provider-specific configuration

        Returns:
            Chat provider instance

        Raises:
            ProviderError: If the source has no provider
        """
        if source == ChatCompletionSource.CLAUDE:
            return ClaudeProvider(**kwargs)

        if source in BASE_URLS or source == ChatCompletionSource.CUSTOM:
            return OpenAICompatibleProvider(source=source, **kwargs)

        raise ProviderError(f"Unsupported chat completion source: {source.value}")


def get_chat_provider(source: ChatCompletionSource | None = None, **kwargs: Any) -> ChatProvider:
    """Get a chat provider, defaulting to the configured source."""
    source = source or ChatCompletionSource(settings.default_source)
    return ChatProviderFactory.create_provider(source, **kwargs)
