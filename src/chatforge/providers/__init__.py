"""Chat completion vendor adapters."""

from .base import ChatProvider, ProviderError
from .claude import ClaudeProvider
from .factory import ChatProviderFactory, get_chat_provider
from .openai_compatible import OpenAICompatibleProvider
from .streaming import StreamingReply

__all__ = [
    "ChatProvider",
    "ChatProviderFactory",
    "ClaudeProvider",
    "OpenAICompatibleProvider",
    "ProviderError",
    "StreamingReply",
    "get_chat_provider",
]
