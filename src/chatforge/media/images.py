"""Fetching, measuring and compressing inline media.

Remote references are resolved to data URIs before they are attached to a
message, so the vendor layer never has to fetch anything itself.
"""

import base64
import binascii
import io
import logging
import math
from dataclasses import dataclass
from typing import Any

import httpx
from PIL import Image
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..core.config import settings
from ..core.domain.settings import ChatCompletionSource, ImageQuality

logger = logging.getLogger(__name__)

TOKENS_PER_IMAGE = 85
TOKENS_PER_TILE = 170
# Roughly 40 seconds of video at 263 tokens per second
TOKENS_PER_VIDEO = 10000

COMPRESS_IMAGE_SOURCES = {
    ChatCompletionSource.OPENROUTER,
    ChatCompletionSource.MAKERSUITE,
    ChatCompletionSource.MISTRALAI,
    ChatCompletionSource.VERTEXAI,
}
COMPRESS_SIZE_THRESHOLD = 2 * 1024 * 1024
SAFE_IMAGE_MIME_TYPES = {"image/jpeg", "image/png", "image/webp"}


class ImageFetchError(Exception):
    """Exception raised when a media reference cannot be resolved."""
    pass


@dataclass
class FetchedMedia:
    """Raw bytes of a resolved media reference."""

    data: bytes
    mime_type: str

    def to_data_url(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"


def is_data_url(value: str) -> bool:
    """Check whether a string is a base64 data URI."""
    return value.startswith("data:") and ";base64," in value


def parse_data_url(data_url: str) -> FetchedMedia:
    """Decode a base64 data URI.

    Raises:
        ValueError: If the value is not a valid base64 data URI
    """
    if not is_data_url(data_url):
        raise ValueError("Not a base64 data URL")

    header, payload = data_url.split(",", 1)
    mime_type = header[len("data:"):].split(";", 1)[0] or "application/octet-stream"
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    return FetchedMedia(data=data, mime_type=mime_type)


class ImageFetcher:
    """Resolves image and video references to inline data."""

    def __init__(self, timeout: float | None = None):
        """Initialize the fetcher.

        Args:
            timeout: Request timeout in seconds, defaults to the configured value
        """
        self.timeout = timeout or settings.image_fetch_timeout
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ImageFetcher":
        """Async context manager entry."""
        self.client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit."""
        if self.client:
            await self.client.aclose()
            self.client = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True
    )
    async def _download(self, url: str) -> httpx.Response:
        """Download a remote resource with retry on transport errors."""
        if not self.client:
            raise ImageFetchError("Client not initialized - use async context manager")
        response = await self.client.get(url)
        response.raise_for_status()
        return response

    async def fetch(self, url: str) -> FetchedMedia:
        """Resolve a remote URL or data URI to bytes and a mime type.

        Raises:
            ImageFetchError: If the reference cannot be resolved
        """
        if is_data_url(url):
            try:
                return parse_data_url(url)
            except ValueError as e:
                raise ImageFetchError(str(e)) from e

        try:
            response = await self._download(url)
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch media from {url}: {str(e)}")
            raise ImageFetchError(f"Failed to fetch {url}: {str(e)}") from e

        mime_type = response.headers.get("content-type", "application/octet-stream")
        return FetchedMedia(data=response.content, mime_type=mime_type.split(";")[0].strip())

    async def fetch_data_url(self, url: str) -> str:
        """Resolve a reference straight to a data URI."""
        media = await self.fetch(url)
        return media.to_data_url()


def _open_image(data: bytes) -> Image.Image:
    """Open image bytes, reporting undecodable or oversized images as ValueError."""
    try:
        return Image.open(io.BytesIO(data))
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Cannot decode image: {str(e)}") from e


def get_image_size(data_url: str) -> tuple[int, int]:
    """Measure the pixel width and height of an image data URI."""
    media = parse_data_url(data_url)
    with _open_image(media.data) as image:
        return image.size


def _thumbnail(data_url: str, max_side: int | None) -> str:
    media = parse_data_url(data_url)
    with _open_image(media.data) as image:
        image = image.convert("RGB")
        if max_side:
            image.thumbnail((max_side, max_side))
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", quality=95)
    return FetchedMedia(data=buffer.getvalue(), mime_type="image/jpeg").to_data_url()


def compress_image(data_url: str, source: ChatCompletionSource | None = None) -> str:
    """Shrink an image for vendors with payload limits and normalize odd formats.

    Images above 2 MiB are fit into 2048x2048 for vendors that reject large
    payloads; formats other than JPEG, PNG and WEBP are re-encoded as JPEG.
    """
    media = parse_data_url(data_url)
    data_size = len(data_url) * 0.75

    if source in COMPRESS_IMAGE_SOURCES and data_size > COMPRESS_SIZE_THRESHOLD:
        return _thumbnail(data_url, 2048)
    if media.mime_type not in SAFE_IMAGE_MIME_TYPES:
        return _thumbnail(data_url, None)
    return data_url


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def calculate_image_token_cost(width: int, height: int, quality: ImageQuality | str) -> int:
    """Token cost of an image of known size.

    Images are first scaled to fit within a 2048 x 2048 square, keeping their
    aspect ratio, then scaled so the shortest side is 768px long. Every 512px
    tile costs 170 tokens, plus 85 tokens for the image itself.
    """
    quality = ImageQuality(quality)
    if quality == ImageQuality.LOW:
        return TOKENS_PER_IMAGE

    if quality == ImageQuality.AUTO and width <= 512 and height <= 512:
        return TOKENS_PER_IMAGE

    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size {width}x{height}")

    fit_scale = min(1.0, 2048 / max(width, height))
    scaled_width = _round_half_up(width * fit_scale)
    scaled_height = _round_half_up(height * fit_scale)

    final_scale = 768 / min(scaled_width, scaled_height)
    final_width = _round_half_up(scaled_width * final_scale)
    final_height = _round_half_up(scaled_height * final_scale)

    tiles = math.ceil(final_width / 512) * math.ceil(final_height / 512)
    return tiles * TOKENS_PER_TILE + TOKENS_PER_IMAGE
