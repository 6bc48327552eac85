"""Anthropic Messages API provider."""

import base64
import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import settings
from ..core.domain.settings import ChatCompletionSource
from ..media.images import parse_data_url
from .base import ChatMessages, ChatProvider, ProviderError

logger = logging.getLogger(__name__)

API_URL = "https://api.anthropic.com/v1/messages"
API_VERSION = "2023-06-01"
# Claude requires the conversation to open with a user turn
PLACEHOLDER_USER_MESSAGE = "[Start a new chat]"


def _convert_part(part: dict[str, Any]) -> dict[str, Any] | None:
    if part.get("type") == "text":
        return {"type": "text", "text": part.get("text", "")}
    if part.get("type") == "image_url":
        try:
            media = parse_data_url(part["image_url"]["url"])
        except (KeyError, ValueError) as e:
            logger.warning(f"Dropping image Claude cannot accept: {str(e)}")
            return None
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": media.mime_type,
                "data": base64.b64encode(media.data).decode("ascii"),
            },
        }
    return None


def _convert_content(message: dict[str, Any]) -> list[dict[str, Any]]:
    content = message.get("content") or ""
    blocks: list[dict[str, Any]] = []

    if isinstance(content, str):
        text = f"{message['name']}: {content}" if message.get("name") and content else content
        if text:
            blocks.append({"type": "text", "text": text})
    else:
        blocks.extend(b for b in (_convert_part(p) for p in content) if b is not None)

    for call in message.get("tool_calls") or []:
        try:
            arguments = json.loads(call["function"]["arguments"] or "{}")
        except json.JSONDecodeError:
            arguments = {}
        blocks.append({
            "type": "tool_use",
            "id": call["id"],
            "name": call["function"]["name"],
            "input": arguments,
        })
    return blocks


def convert_messages(messages: ChatMessages) -> tuple[str, list[dict[str, Any]]]:
    """Convert wire-format chat into a Claude system prompt and turns.

    Leading system messages become the system prompt. Later system messages
    are sent as user turns, tool results as ``tool_result`` blocks, and
    consecutive turns with the same role are merged.
    """
    index = 0
    system_parts = []
    while index < len(messages) and messages[index]["role"] == "system":
        content = messages[index].get("content")
        if isinstance(content, str) and content:
            system_parts.append(content)
        index += 1

    turns: list[dict[str, Any]] = []
    for message in messages[index:]:
        role = message["role"]
        if role == "tool":
            role = "user"
            blocks = [{
                "type": "tool_result",
                "tool_use_id": message.get("tool_call_id", ""),
                "content": message.get("content") or "",
            }]
        else:
            role = "assistant" if role == "assistant" else "user"
            blocks = _convert_content(message)

        if not blocks:
            continue
        if turns and turns[-1]["role"] == role:
            turns[-1]["content"].extend(blocks)
        else:
            turns.append({"role": role, "content": blocks})

    if not turns or turns[0]["role"] != "user":
        turns.insert(0, {"role": "user", "content": [{"type": "text", "text": PLACEHOLDER_USER_MESSAGE}]})

    return "\n\n".join(system_parts), turns


class ClaudeProvider(ChatProvider):
    """Chat provider for Anthropic Claude over raw HTTP."""

    def __init__(self, api_key: str | None = None, api_url: str = API_URL):
        """Initialize the provider.

        Args:
            api_key: API key, defaults to the configured Claude key
            api_url: Messages endpoint
        """
        self.api_key = api_key if api_key is not None else settings.claude_api_key
        self.api_url = api_url
        self.client = httpx.AsyncClient(timeout=settings.request_timeout)

    @property
    def source(self) -> ChatCompletionSource:
        return ChatCompletionSource.CLAUDE

    async def __aenter__(self) -> "ClaudeProvider":
        """Async context manager entry."""
        if not self.api_key:
            raise ProviderError("Claude API key not configured")
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "Content-Type": "application/json",
        }

    def _body(self, messages: ChatMessages, model: str, max_tokens: int, stream: bool, **params: Any) -> dict[str, Any]:
        system, turns = convert_messages(messages)
        body: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": turns,
            "stream": stream,
            **params,
        }
        if system:
            body["system"] = system
        return body

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.RequestError),
        reraise=True
    )
    async def _call_claude(self, body: dict[str, Any]) -> dict[str, Any]:
        """Make API call to Claude with retry logic."""
        try:
            response = await self.client.post(self.api_url, headers=self._headers(), json=body)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            logger.error(f"Claude API error {e.response.status_code}: {e.response.text}")
            raise ProviderError(f"API error: {e.response.status_code}") from e

        except json.JSONDecodeError as e:
            logger.error(f"Invalid Claude response: {str(e)}")
            raise ProviderError(f"Invalid response: {str(e)}") from e

    async def generate(
        self,
        messages: ChatMessages,
        *,
        model: str,
        max_tokens: int,
        **params: Any,
    ) -> str:
        body = self._body(messages, model, max_tokens, False, **params)
        try:
            result = await self._call_claude(body)
        except httpx.RequestError as e:
            raise ProviderError(f"Request failed: {str(e)}") from e

        return "".join(
            block.get("text", "") for block in result.get("content", []) if block.get("type") == "text"
        )

    async def stream(
        self,
        messages: ChatMessages,
        *,
        model: str,
        max_tokens: int,
        **params: Any,
    ) -> AsyncIterator[str]:
        body = self._body(messages, model, max_tokens, True, **params)
        try:
            async with self.client.stream("POST", self.api_url, headers=self._headers(), json=body) as response:
                if response.status_code >= 400:
                    error = await response.aread()
                    logger.error(f"Claude API error {response.status_code}: {error.decode(errors='replace')}")
                    raise ProviderError(f"API error: {response.status_code}")

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    event = json.loads(line[len("data:"):].strip())
                    if event.get("type") == "error":
                        raise ProviderError(f"Stream error: {event.get('error', {}).get('message', '')}")
                    if event.get("type") != "content_block_delta":
                        continue
                    delta = event.get("delta", {})
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield delta["text"]

        except httpx.RequestError as e:
            logger.error(f"Claude stream failed: {str(e)}")
            raise ProviderError(f"Request failed: {str(e)}") from e
        except json.JSONDecodeError as e:
            raise ProviderError(f"Invalid stream event: {str(e)}") from e
