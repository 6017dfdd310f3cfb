"""Multimodal-content protocol client (Gemini-compatible `generateContent`).

Processing flow:
    1. Add up to four reference images as `inlineData` parts.
    2. Add one text part: the fidelity directive (only when references are
       present) followed by `[Style: s] prompt`.
    3. Validate aspect ratio and image size against their enums; out-of-enum
       values log a WARNING and fall back to the configured defaults.
    4. POST once and return the first inline image among the candidate parts.

Response parsing:
    Both `inlineData`/`mimeType` and `inline_data`/`mime_type` spellings are
    accepted.
"""

import logging

import httpx

from inline_imagegen.core.errors import TerminalProviderError
from inline_imagegen.image.client import bearer_headers, post_json
from inline_imagegen.image.models import GeneratedImage, GenerationOptions, compose_prompt
from inline_imagegen.image.provider_config import ImageGenConfig
from inline_imagegen.parsing.models import ASPECT_RATIOS, IMAGE_SIZES


logger = logging.getLogger(__name__)

MAX_REFERENCE_IMAGES = 4

FIDELITY_DIRECTIVE = (
    "Use the attached reference images as the exact appearance of the characters. "
    "Preserve their facial structure, eye color, hair color and style, skin tone, "
    "body type and clothing exactly as shown in the references."
)


def _validated(value: str | None, allowed: tuple[str, ...], default: str, label: str) -> str:
    if value is None:
        return default if default in allowed else allowed[0]
    if value in allowed:
        return value
    fallback = default if default in allowed else allowed[0]
    logger.warning("Invalid %s %r, falling back to %s", label, value, fallback)
    return fallback


def build_multimodal_payload(
    config: ImageGenConfig,
    prompt: str,
    style: str | None,
    reference_images: list[str],
    options: GenerationOptions,
) -> dict:
    references = reference_images[:MAX_REFERENCE_IMAGES]
    parts: list[dict] = [
        {"inlineData": {"mimeType": "image/png", "data": image}} for image in references
    ]

    text = compose_prompt(prompt, style)
    if references:
        text = f"{FIDELITY_DIRECTIVE}\n\n{text}"
    parts.append({"text": text})

    return {
        "contents": [{"role": "user", "parts": parts}],
        "generationConfig": {
            "responseModalities": ["TEXT", "IMAGE"],
            "imageConfig": {
                "aspectRatio": _validated(
                    options.aspect_ratio, ASPECT_RATIOS, config.aspect_ratio, "aspect ratio"
                ),
                "imageSize": _validated(
                    options.image_size, IMAGE_SIZES, config.image_size, "image size"
                ),
            },
        },
    }


def parse_multimodal_response(data: dict) -> GeneratedImage:
    candidates = data.get("candidates") or []
    if not candidates:
        raise TerminalProviderError("No candidates in response")

    content = candidates[0].get("content") or {}
    for part in content.get("parts") or []:
        inline = part.get("inlineData")
        if inline and inline.get("data"):
            return GeneratedImage.from_base64(inline["data"], inline.get("mimeType"))
        inline = part.get("inline_data")
        if inline and inline.get("data"):
            return GeneratedImage.from_base64(inline["data"], inline.get("mime_type"))

    raise TerminalProviderError("No image found in response")


async def generate_multimodal(
    config: ImageGenConfig,
    prompt: str,
    style: str | None,
    reference_images: list[str],
    options: GenerationOptions,
    transport: httpx.AsyncBaseTransport | None = None,
) -> GeneratedImage:
    """Run one multimodal-protocol generation request."""
    url = f"{config.base_url()}/v1beta/models/{config.model}:generateContent"
    payload = build_multimodal_payload(config, prompt, style, reference_images, options)
    data = await post_json(
        url,
        payload,
        headers=bearer_headers(config.api_key),
        timeout=config.timeout_seconds,
        transport=transport,
    )
    return parse_multimodal_response(data)
