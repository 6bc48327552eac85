"""Shared fixtures for the test suite."""

from collections.abc import Mapping

import pytest

from chatforge.core.utils.tokens import stringify_value


class FakeTokenCounter:
    """Deterministic counter: one token per whitespace separated word.

    Only content, name and tool calls are counted, so a message whose content
    has N words costs exactly N tokens.
    """

    def __init__(self) -> None:
        self.calls = 0

    async def count_async(self, messages, full: bool = False) -> int:
        self.calls += 1
        if isinstance(messages, Mapping):
            messages = [messages]

        tokens = 0
        for message in messages:
            for key in ("content", "name", "tool_calls"):
                tokens += len(stringify_value(message.get(key)).split())
        return tokens + (3 if full else 0)


@pytest.fixture
def token_counter() -> FakeTokenCounter:
    """Word counting token counter."""
    return FakeTokenCounter()
