"""Single prompt messages with token accounting."""

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Union

from ..core.domain.chat import ToolInvocation
from ..core.domain.prompts import Prompt
from ..core.domain.settings import ChatCompletionSource, ImageQuality
from ..core.utils.tokens import TokenCounter, get_token_counter
from ..media.images import (
    TOKENS_PER_IMAGE,
    TOKENS_PER_VIDEO,
    ImageFetcher,
    ImageFetchError,
    calculate_image_token_cost,
    compress_image,
    get_image_size,
    is_data_url,
)

logger = logging.getLogger(__name__)

Content = Union[str, list[dict[str, Any]]]


class Message:
    """One chat turn whose token count always matches its payload.

    Use :meth:`create` rather than the constructor so the initial token count
    is computed. Every mutating method recounts before returning.
    """

    tokens_per_image = TOKENS_PER_IMAGE
    tokens_per_video = TOKENS_PER_VIDEO

    def __init__(
        self,
        role: str | None,
        content: Content | None,
        identifier: str,
        token_counter: TokenCounter | None = None,
    ) -> None:
        self.identifier = identifier
        self.role = role
        self.content: Content = content or ""
        self.name: str = ""
        self.tool_calls: list[dict[str, Any]] | None = None
        self.tokens = 0
        self._token_counter = token_counter

        if not self.role:
            logger.debug(f"Message role not set, defaulting to 'system' for identifier '{identifier}'")
            self.role = "system"

    @property
    def token_counter(self) -> TokenCounter:
        if self._token_counter is None:
            self._token_counter = get_token_counter()
        return self._token_counter

    @classmethod
    async def create(
        cls,
        role: str | None,
        content: Content | None,
        identifier: str,
        token_counter: TokenCounter | None = None,
    ) -> "Message":
        """Create a message and count its tokens.

        Empty content costs nothing and does not touch the counter.
        """
        message = cls(role, content, identifier, token_counter)
        if isinstance(message.content, str) and message.content:
            message.tokens = await message.token_counter.count_async(
                {"role": message.role, "content": message.content}
            )
        return message

    @classmethod
    async def from_prompt(
        cls, prompt: Prompt, token_counter: TokenCounter | None = None
    ) -> "Message":
        """Create a message from a prompt definition."""
        return await cls.create(prompt.role.value, prompt.content, prompt.identifier, token_counter)

    async def set_name(self, name: str) -> None:
        """Attach a speaker name and recount."""
        self.name = name
        self.tokens = await self.token_counter.count_async(
            {"role": self.role, "content": self.content, "name": self.name}
        )

    async def set_content(self, content: str) -> None:
        """Replace the text content and recount."""
        self.content = content
        payload = {"role": self.role, "content": self.content}
        if self.name:
            payload["name"] = self.name
        self.tokens = await self.token_counter.count_async(payload) if content else 0

    async def set_tool_calls(
        self, invocations: Iterable[ToolInvocation | Mapping[str, Any]]
    ) -> None:
        """Turn tool invocations into wire-format tool calls and recount."""
        calls = []
        for invocation in invocations:
            if not isinstance(invocation, ToolInvocation):
                invocation = ToolInvocation.model_validate(invocation)
            calls.append({
                "id": invocation.id,
                "type": "function",
                "function": {
                    "arguments": invocation.parameters,
                    "name": invocation.name,
                },
            })
        self.tool_calls = calls
        self.tokens = await self.token_counter.count_async(
            {"role": self.role, "tool_calls": json.dumps(self.tool_calls)}
        )

    def _with_part(self, part: dict[str, Any]) -> list[dict[str, Any]]:
        if isinstance(self.content, list):
            return [*self.content, part]
        return [{"type": "text", "text": self.content}, part]

    async def _resolve(self, reference: str, fetcher: ImageFetcher | None) -> str:
        if is_data_url(reference):
            return reference
        if fetcher is not None:
            return await fetcher.fetch_data_url(reference)
        async with ImageFetcher() as own_fetcher:
            return await own_fetcher.fetch_data_url(reference)

    async def add_image(
        self,
        image: str,
        *,
        quality: ImageQuality | str = ImageQuality.LOW,
        source: ChatCompletionSource | None = None,
        fetcher: ImageFetcher | None = None,
    ) -> None:
        """Attach an image, turning the content into a text + image part list.

        A reference that cannot be fetched is skipped and the message is left
        unchanged. When the image cost cannot be computed, a flat per-image
        cost is charged instead.
        """
        try:
            image = await self._resolve(image, fetcher)
        except ImageFetchError as e:
            logger.warning(f"Image adding skipped for {self.identifier}: {str(e)}")
            return

        try:
            image = compress_image(image, source)
        except (OSError, ValueError) as e:
            logger.warning(f"Image compression failed for {self.identifier}: {str(e)}")

        quality = ImageQuality(quality)
        self.content = self._with_part(
            {"type": "image_url", "image_url": {"url": image, "detail": quality.value}}
        )

        try:
            self.tokens += self.get_image_token_cost(image, quality)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to get image token cost for {self.identifier}: {str(e)}")
            self.tokens += self.tokens_per_image

    async def add_video(self, video: str, *, fetcher: ImageFetcher | None = None) -> None:
        """Attach a video with a flat token cost since its duration is unknown."""
        try:
            video = await self._resolve(video, fetcher)
        except ImageFetchError as e:
            logger.warning(f"Video adding skipped for {self.identifier}: {str(e)}")
            return

        self.content = self._with_part({"type": "video_url", "video_url": {"url": video}})
        self.tokens += self.tokens_per_video

    def get_image_token_cost(self, data_url: str, quality: ImageQuality) -> int:
        if quality == ImageQuality.LOW:
            return self.tokens_per_image
        width, height = get_image_size(data_url)
        return calculate_image_token_cost(width, height, quality)

    def get_tokens(self) -> int:
        return self.tokens

    @property
    def has_payload(self) -> bool:
        """Whether the message carries content or tool calls."""
        return bool(self.content) or bool(self.tool_calls)

    def to_chat(self) -> dict[str, Any]:
        """Wire-format entry for this message."""
        entry: dict[str, Any] = {"role": self.role}
        if self.content:
            entry["content"] = self.content
        if self.name:
            entry["name"] = self.name
        if self.tool_calls:
            entry["tool_calls"] = self.tool_calls
        if self.role == "tool":
            entry["tool_call_id"] = self.identifier
        return entry

    def __repr__(self) -> str:
        return f"Message(role={self.role!r}, identifier={self.identifier!r}, tokens={self.tokens})"
