"""Unit tests for token counting."""

from unittest.mock import MagicMock, patch

import pytest

from chatforge.core.utils.tokens import (
    REPLY_PRIMING_TOKENS,
    TOKENS_PER_MESSAGE,
    TOKENS_PER_NAME,
    TiktokenCounter,
    stringify_value,
)


class TestStringifyValue:
    """Test cases for rendering message fields."""

    def test_plain_values(self) -> None:
        assert stringify_value(None) == ""
        assert stringify_value("hello") == "hello"
        assert stringify_value({"a": 1}) == '{"a": 1}'

    def test_multimodal_content_counts_text_parts_only(self) -> None:
        content = [
            {"type": "text", "text": "look"},
            {"type": "image_url", "image_url": {"url": "data:image/png;base64,AAAA"}},
        ]

        assert stringify_value(content) == "look"


class TestTiktokenCounter:
    """Test cases for the tiktoken backed counter."""

    def setup_method(self) -> None:
        """Set up a counter with a fake one-token-per-character encoding."""
        self.encoding = MagicMock()
        self.encoding.encode.side_effect = lambda text: list(text)
        with patch("chatforge.core.utils.tokens.tiktoken.encoding_for_model", return_value=self.encoding):
            self.counter = TiktokenCounter(model="gpt-4o")

    def test_unknown_model_falls_back_to_encoding(self) -> None:
        """Test models unknown to tiktoken use the fallback encoding."""
        with patch(
            "chatforge.core.utils.tokens.tiktoken.encoding_for_model", side_effect=KeyError("x")
        ), patch("chatforge.core.utils.tokens.tiktoken.get_encoding", return_value=self.encoding) as get_encoding:
            TiktokenCounter(model="some-local-model")

        get_encoding.assert_called_once_with("cl100k_base")

    def test_count_tokens_empty(self) -> None:
        assert self.counter.count_tokens("") == 0
        self.encoding.encode.assert_not_called()

    def test_message_overhead(self) -> None:
        """Test every message carries the chat format overhead."""
        tokens = self.counter.count_message_tokens({"role": "user", "content": "hi"})

        assert tokens == TOKENS_PER_MESSAGE + len("user") + len("hi")

    def test_name_overhead(self) -> None:
        tokens = self.counter.count_message_tokens({"role": "user", "content": "hi", "name": "Al"})

        assert tokens == TOKENS_PER_MESSAGE + len("user") + len("hi") + len("Al") + TOKENS_PER_NAME

    @pytest.mark.asyncio
    async def test_count_async_single_and_list(self) -> None:
        """Test a single dict and a one-element list count the same."""
        message = {"role": "system", "content": "abc"}

        single = await self.counter.count_async(message)
        listed = await self.counter.count_async([message])
        full = await self.counter.count_async([message], full=True)

        assert single == listed
        assert full == single + REPLY_PRIMING_TOKENS

    @pytest.mark.asyncio
    async def test_count_is_deterministic(self) -> None:
        message = {"role": "assistant", "content": "same input"}

        assert await self.counter.count_async(message) == await self.counter.count_async(message)
