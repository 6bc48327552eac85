"""Token counting utilities for managing context window limits."""

import json
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Any, Protocol, Union

import tiktoken

from ..config import settings

ChatDict = Mapping[str, Any]
CountInput = Union[ChatDict, Sequence[ChatDict]]

# OpenAI chat format overhead
TOKENS_PER_MESSAGE = 3
TOKENS_PER_NAME = 1
REPLY_PRIMING_TOKENS = 3


class TokenCounter(Protocol):
    """Anything that can count the tokens of chat messages."""

    async def count_async(self, messages: CountInput, full: bool = False) -> int:
        """Count tokens for one message dict or a list of them.

        Args:
            messages: A ``{role, content, ...}`` dict or a sequence of them
            full: Include the tokens that prime the assistant reply

        Returns:
            Non-negative token count, deterministic for identical input
        """
        ...


def stringify_value(value: Any) -> str:
    """Render a message field the way it is sent over the wire."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        # Multimodal content: only the text parts are counted here
        return "".join(
            part.get("text", "") for part in value if isinstance(part, Mapping)
        )
    return json.dumps(value)


class TiktokenCounter:
    """Utility for counting tokens in chat messages using tiktoken."""

    def __init__(self, model: str = "gpt-4o", encoding_name: str = "cl100k_base"):
        """Initialize token counter.

        Args:
            model: Model whose encoding should be used
            encoding_name: Fallback encoding when tiktoken does not know the model.
                          "cl100k_base" is used by GPT-4, GPT-3.5-turbo
        """
        try:
            self.encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            self.encoding = tiktoken.get_encoding(encoding_name)
        self.model = model

    def count_tokens(self, text: str) -> int:
        """Count tokens in a text string."""
        if not text:
            return 0
        return len(self.encoding.encode(text))

    def count_message_tokens(self, message: ChatDict) -> int:
        """Count tokens in a single chat message including format overhead."""
        tokens = TOKENS_PER_MESSAGE
        for key, value in message.items():
            tokens += self.count_tokens(stringify_value(value))
            if key == "name":
                tokens += TOKENS_PER_NAME
        return tokens

    async def count_async(self, messages: CountInput, full: bool = False) -> int:
        if isinstance(messages, Mapping):
            messages = [messages]

        tokens = sum(self.count_message_tokens(message) for message in messages)
        if full:
            tokens += REPLY_PRIMING_TOKENS
        return tokens


@lru_cache(maxsize=8)
def get_token_counter(model: str | None = None) -> TiktokenCounter:
    """Get a shared token counter for a model, defaulting to the configured one."""
    return TiktokenCounter(model=model or settings.tokenizer_model)
