"""Image and video handling for multimodal prompt messages."""

from .images import (
    TOKENS_PER_IMAGE,
    TOKENS_PER_VIDEO,
    FetchedMedia,
    ImageFetchError,
    ImageFetcher,
    calculate_image_token_cost,
    compress_image,
    get_image_size,
    is_data_url,
)

__all__ = [
    "TOKENS_PER_IMAGE",
    "TOKENS_PER_VIDEO",
    "FetchedMedia",
    "ImageFetchError",
    "ImageFetcher",
    "calculate_image_token_cost",
    "compress_image",
    "get_image_size",
    "is_data_url",
]
