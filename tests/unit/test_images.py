"""Unit tests for media helpers."""

import base64
import io
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from PIL import Image

from chatforge.core.domain import ChatCompletionSource, ImageQuality
from chatforge.media.images import (
    FetchedMedia,
    ImageFetcher,
    ImageFetchError,
    calculate_image_token_cost,
    compress_image,
    get_image_size,
    is_data_url,
    parse_data_url,
)


def image_data_url(width: int, height: int, fmt: str = "PNG", mime: str = "image/png") -> str:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color="blue").save(buffer, format=fmt)
    return f"data:{mime};base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


class TestImageTokenCost:
    """Test cases for image token cost estimation."""

    def test_low_quality_is_flat(self) -> None:
        assert calculate_image_token_cost(4000, 3000, ImageQuality.LOW) == 85

    def test_auto_small_image_is_flat(self) -> None:
        assert calculate_image_token_cost(512, 300, ImageQuality.AUTO) == 85

    def test_square_1024(self) -> None:
        assert calculate_image_token_cost(1024, 1024, ImageQuality.HIGH) == 765

    def test_large_image_is_fit_first(self) -> None:
        """Test a 4096x2048 image is fit into 2048 then scaled to 768 high."""
        # 2048x1024 -> 1536x768 -> 3x2 tiles
        assert calculate_image_token_cost(4096, 2048, "high") == 6 * 170 + 85

    def test_invalid_size(self) -> None:
        with pytest.raises(ValueError):
            calculate_image_token_cost(0, 10, ImageQuality.HIGH)


class TestDataUrls:
    """Test cases for data URI helpers."""

    def test_parse_round_trip(self) -> None:
        media = FetchedMedia(data=b"abc", mime_type="image/png")

        parsed = parse_data_url(media.to_data_url())

        assert parsed == media
        assert is_data_url(media.to_data_url())

    def test_parse_rejects_plain_urls(self) -> None:
        assert not is_data_url("https://example.com/a.png")
        with pytest.raises(ValueError):
            parse_data_url("https://example.com/a.png")

    def test_parse_rejects_bad_payload(self) -> None:
        with pytest.raises(ValueError):
            parse_data_url("data:image/png;base64,***")

    def test_get_image_size(self) -> None:
        assert get_image_size(image_data_url(40, 20)) == (40, 20)

    def test_get_image_size_undecodable(self) -> None:
        with pytest.raises(ValueError):
            get_image_size("data:image/png;base64,AAAA")

    def test_get_image_size_decompression_bomb(self) -> None:
        with patch.object(Image, "MAX_IMAGE_PIXELS", 100):
            with pytest.raises(ValueError):
                get_image_size(image_data_url(40, 20))


class TestCompressImage:
    """Test cases for vendor-driven image compression."""

    def test_small_png_untouched(self) -> None:
        data_url = image_data_url(10, 10)

        assert compress_image(data_url, ChatCompletionSource.OPENROUTER) == data_url

    def test_unsafe_format_converted_to_jpeg(self) -> None:
        data_url = image_data_url(10, 10, fmt="BMP", mime="image/bmp")

        result = compress_image(data_url, ChatCompletionSource.OPENAI)

        assert result.startswith("data:image/jpeg;base64,")
        assert get_image_size(result) == (10, 10)

    def test_large_payload_for_limited_vendor(self) -> None:
        data_url = image_data_url(10, 10)
        with patch("chatforge.media.images.COMPRESS_SIZE_THRESHOLD", 1):
            result = compress_image(data_url, ChatCompletionSource.MISTRALAI)

        assert result.startswith("data:image/jpeg;base64,")


class TestImageFetcher:
    """Test cases for resolving remote media."""

    @pytest.mark.asyncio
    async def test_data_url_is_decoded_without_request(self) -> None:
        async with ImageFetcher() as fetcher:
            media = await fetcher.fetch("data:image/png;base64,YWJj")

        assert media.data == b"abc"

    @pytest.mark.asyncio
    async def test_remote_fetch(self) -> None:
        response = httpx.Response(
            200,
            content=b"abc",
            headers={"content-type": "image/webp; charset=binary"},
            request=httpx.Request("GET", "https://example.com/a.webp"),
        )
        async with ImageFetcher() as fetcher:
            with patch.object(fetcher.client, "get", AsyncMock(return_value=response)):
                data_url = await fetcher.fetch_data_url("https://example.com/a.webp")

        assert data_url == "data:image/webp;base64,YWJj"

    @pytest.mark.asyncio
    async def test_http_error_becomes_fetch_error(self) -> None:
        request = httpx.Request("GET", "https://example.com/missing.png")
        response = httpx.Response(404, request=request)
        async with ImageFetcher() as fetcher:
            with patch.object(fetcher.client, "get", AsyncMock(return_value=response)):
                with pytest.raises(ImageFetchError):
                    await fetcher.fetch("https://example.com/missing.png")

    @pytest.mark.asyncio
    async def test_requires_context_manager(self) -> None:
        with pytest.raises(ImageFetchError):
            await ImageFetcher().fetch("https://example.com/a.png")
