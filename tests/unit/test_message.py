"""Unit tests for prompt messages."""

import base64
import io
import json
import struct
import zlib
from unittest.mock import AsyncMock, MagicMock

import pytest
from PIL import Image

from chatforge.core.domain import ImageQuality, Prompt, Role, ToolInvocation
from chatforge.media.images import ImageFetchError
from chatforge.prompting import Message


def png_data_url(width: int, height: int) -> str:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color="red").save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def png_header_data_url(width: int, height: int) -> str:
    """PNG holding only a header that declares the given size."""

    def chunk(kind: bytes, data: bytes) -> bytes:
        return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))

    header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
    png = b"\x89PNG\r\n\x1a\n" + chunk(b"IHDR", header) + chunk(b"IDAT", b"") + chunk(b"IEND", b"")
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


class TestMessageCreation:
    """Test cases for creating messages."""

    @pytest.mark.asyncio
    async def test_create_counts_tokens(self, token_counter) -> None:
        message = await Message.create("user", "hello there", "greeting", token_counter)

        assert message.tokens == 2
        assert message.get_tokens() == 2

    @pytest.mark.asyncio
    async def test_empty_content_costs_nothing(self, token_counter) -> None:
        """Test an empty message is never sent to the counter."""
        message = await Message.create("system", "", "empty", token_counter)

        assert message.tokens == 0
        assert token_counter.calls == 0
        assert message.has_payload is False

    @pytest.mark.asyncio
    async def test_missing_role_defaults_to_system(self, token_counter) -> None:
        message = await Message.create(None, "text", "id", token_counter)

        assert message.role == "system"

    @pytest.mark.asyncio
    async def test_from_prompt(self, token_counter) -> None:
        prompt = Prompt(identifier="bias", role=Role.ASSISTANT, content="Sure thing")

        message = await Message.from_prompt(prompt, token_counter)

        assert message.role == "assistant"
        assert message.identifier == "bias"
        assert message.tokens == 2

    @pytest.mark.asyncio
    async def test_set_name_recounts(self, token_counter) -> None:
        message = await Message.create("system", "one two", "example", token_counter)

        await message.set_name("example_user")

        assert message.name == "example_user"
        assert message.tokens == 3
        assert message.to_chat() == {"role": "system", "content": "one two", "name": "example_user"}


class TestToolCalls:
    """Test cases for tool call messages."""

    @pytest.mark.asyncio
    async def test_set_tool_calls(self, token_counter) -> None:
        """Test invocations become wire-format tool calls."""
        message = await Message.create("assistant", None, "toolCall-chatHistory-2", token_counter)

        await message.set_tool_calls([ToolInvocation(id="c1", name="roll", parameters='{"d":20}')])

        assert message.tool_calls == [{
            "id": "c1",
            "type": "function",
            "function": {"arguments": '{"d":20}', "name": "roll"},
        }]
        assert message.tokens > 0
        assert message.has_payload is True
        assert message.to_chat() == {"role": "assistant", "tool_calls": message.tool_calls}

    @pytest.mark.asyncio
    async def test_set_tool_calls_from_dicts(self, token_counter) -> None:
        message = await Message.create("assistant", None, "call", token_counter)

        await message.set_tool_calls([{"id": "c2", "name": "search"}])

        assert message.tool_calls[0]["function"] == {"arguments": "{}", "name": "search"}

    @pytest.mark.asyncio
    async def test_tool_result_carries_call_id(self, token_counter) -> None:
        message = await Message.create("tool", "rolled 17", "c1", token_counter)

        assert message.to_chat() == {"role": "tool", "content": "rolled 17", "tool_call_id": "c1"}


class TestMedia:
    """Test cases for inline images and videos."""

    @pytest.mark.asyncio
    async def test_add_image_low_quality(self, token_counter) -> None:
        message = await Message.create("user", "look at this", "chatHistory-1", token_counter)
        image = png_data_url(64, 64)

        await message.add_image(image, quality=ImageQuality.LOW)

        assert message.tokens == 3 + 85
        assert message.content[0] == {"type": "text", "text": "look at this"}
        assert message.content[1]["type"] == "image_url"
        assert message.content[1]["image_url"]["detail"] == "low"

    @pytest.mark.asyncio
    async def test_add_image_high_quality_cost(self, token_counter) -> None:
        """Test a 1024x1024 image at high detail costs four tiles."""
        message = await Message.create("user", "hi", "chatHistory-1", token_counter)

        await message.add_image(png_data_url(1024, 1024), quality=ImageQuality.HIGH)

        assert message.tokens == 1 + 765

    @pytest.mark.asyncio
    async def test_add_image_fetch_failure_is_skipped(self, token_counter) -> None:
        """Test an unreachable image leaves the message untouched."""
        message = await Message.create("user", "hi", "chatHistory-1", token_counter)
        fetcher = MagicMock()
        fetcher.fetch_data_url = AsyncMock(side_effect=ImageFetchError("404"))

        await message.add_image("https://example.com/missing.png", fetcher=fetcher)

        assert message.content == "hi"
        assert message.tokens == 1

    @pytest.mark.asyncio
    async def test_add_image_from_fetcher(self, token_counter) -> None:
        message = await Message.create("user", "hi", "chatHistory-1", token_counter)
        fetcher = MagicMock()
        fetcher.fetch_data_url = AsyncMock(return_value=png_data_url(16, 16))

        await message.add_image("https://example.com/cat.png", fetcher=fetcher)

        fetcher.fetch_data_url.assert_awaited_once_with("https://example.com/cat.png")
        assert message.content[1]["image_url"]["url"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_add_image_undecodable_falls_back_to_flat_cost(self, token_counter) -> None:
        """Test an image that cannot be measured is still attached at the flat cost."""
        message = await Message.create("user", "hi", "chatHistory-1", token_counter)

        await message.add_image("data:image/png;base64,AAAA", quality=ImageQuality.AUTO)

        assert message.tokens == 1 + 85
        assert message.content[1]["image_url"]["url"] == "data:image/png;base64,AAAA"

    @pytest.mark.asyncio
    async def test_add_image_oversized_falls_back_to_flat_cost(self, token_counter) -> None:
        """Test a decompression-bomb sized image does not abort attaching."""
        message = await Message.create("user", "hi", "chatHistory-1", token_counter)
        image = png_header_data_url(20000, 20000)

        await message.add_image(image, quality=ImageQuality.HIGH)

        assert message.tokens == 1 + 85
        assert message.content[1]["type"] == "image_url"

    @pytest.mark.asyncio
    async def test_add_video_flat_cost(self, token_counter) -> None:
        message = await Message.create("user", "watch", "chatHistory-1", token_counter)

        await message.add_video("data:video/mp4;base64,AAAA")

        assert message.tokens == 1 + 10000
        assert message.content[1] == {"type": "video_url", "video_url": {"url": "data:video/mp4;base64,AAAA"}}

    @pytest.mark.asyncio
    async def test_multimodal_content_serializes(self, token_counter) -> None:
        message = await Message.create("user", "hi", "chatHistory-1", token_counter)
        await message.add_video("data:video/mp4;base64,AAAA")

        assert json.dumps(message.to_chat())
