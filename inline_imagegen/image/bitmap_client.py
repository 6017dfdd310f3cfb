"""Bitmap-request protocol client (OpenAI-compatible `/v1/images/generations`).

Processing flow:
    1. Compose `[Style: s] prompt`.
    2. Pick `size` from the fixed bitmap enum: mapped from the requested aspect
       ratio when one is given, else the configured default size.
    3. Attach the first reference image as a data URL when present.
    4. POST once via `client.post_json` and return the first image as an
       inline data URL (`b64_json`) or a remote URL.

Error handling strategy:
    Transport and status errors come from `client.post_json`. A success body
    without image data raises `TerminalProviderError`.
"""

import logging

import httpx

from inline_imagegen.core.errors import TerminalProviderError
from inline_imagegen.image.client import bearer_headers, post_json
from inline_imagegen.image.models import GeneratedImage, GenerationOptions, compose_prompt
from inline_imagegen.image.provider_config import BITMAP_SIZES, ImageGenConfig


logger = logging.getLogger(__name__)

_LANDSCAPE = {"3:2", "4:3", "5:4", "16:9", "21:9"}
_PORTRAIT = {"2:3", "3:4", "4:5", "9:16"}


def size_for_aspect_ratio(aspect_ratio: str | None, default_size: str) -> str:
    """Map an aspect ratio onto the bitmap size enum."""
    if aspect_ratio == "1:1":
        return "1024x1024"
    if aspect_ratio in _LANDSCAPE:
        return "1792x1024"
    if aspect_ratio in _PORTRAIT:
        return "1024x1792"
    if aspect_ratio:
        logger.warning(
            "Unsupported aspect ratio %r, using default size %s", aspect_ratio, default_size
        )
    if default_size not in BITMAP_SIZES:
        logger.warning("Unsupported size %r, using 1024x1024", default_size)
        return "1024x1024"
    return default_size


def build_bitmap_payload(
    config: ImageGenConfig,
    prompt: str,
    style: str | None,
    reference_images: list[str],
    options: GenerationOptions,
) -> dict:
    payload = {
        "model": config.model,
        "prompt": compose_prompt(prompt, style),
        "n": 1,
        "size": size_for_aspect_ratio(options.aspect_ratio, config.size),
        "quality": options.quality or config.quality,
        "response_format": "b64_json",
    }
    if reference_images:
        payload["image"] = f"data:image/png;base64,{reference_images[0]}"
    return payload


def parse_bitmap_response(data: dict) -> GeneratedImage:
    items = data.get("data") or []
    if not items:
        if isinstance(data.get("url"), str) and data["url"]:
            return GeneratedImage(data["url"])
        raise TerminalProviderError("No image data in response")

    first = items[0] if isinstance(items[0], dict) else {}
    if first.get("b64_json"):
        return GeneratedImage.from_base64(first["b64_json"])
    if first.get("url"):
        return GeneratedImage(first["url"])
    raise TerminalProviderError("No image data in response")


async def generate_bitmap(
    config: ImageGenConfig,
    prompt: str,
    style: str | None,
    reference_images: list[str],
    options: GenerationOptions,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GeneratedImage:
    """Run one bitmap-protocol generation request."""
    url = f"{config.base_url()}/v1/images/generations"
    payload = build_bitmap_payload(config, prompt, style, reference_images, options)
    data = await post_json(
        url,
        payload,
        headers=bearer_headers(config.api_key),
        timeout=config.timeout_seconds,
        transport=transport,
    )
    return parse_bitmap_response(data)
