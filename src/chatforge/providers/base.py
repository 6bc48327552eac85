"""Base chat provider interface using strategy pattern."""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import Any

from ..core.domain.settings import ChatCompletionSource

ChatMessages = list[dict[str, Any]]


class ChatProvider(ABC):
    """Abstract base class for chat completion vendors."""

    @property
    @abstractmethod
    def source(self) -> ChatCompletionSource:
        """Chat completion source served by this provider."""
        pass

    @abstractmethod
    async def generate(
        self,
        messages: ChatMessages,
        *,
        model: str,
        max_tokens: int,
        **params: Any,
    ) -> str:
        """Send an assembled chat and return the full reply.

        Args:
            messages: Chat in wire format as produced by the pipeline
            model: Vendor model name
            max_tokens: Reply length limit
            **params: Sampling parameters passed through to the vendor

        Returns:
            Reply text

        Raises:
            ProviderError: If the vendor request fails
        """
        pass

    @abstractmethod
    def stream(
        self,
        messages: ChatMessages,
        *,
        model: str,
        max_tokens: int,
        **params: Any,
    ) -> AsyncIterator[str]:
        """Send an assembled chat and yield reply text as it arrives.

        Raises:
            ProviderError: If the vendor request fails
        """
        pass

    async def __aenter__(self) -> "ChatProvider":
        """Async context manager entry."""
        return self

    @abstractmethod
    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        pass


class ProviderError(Exception):
    """Exception raised for vendor request failures."""
    pass
