"""Image service dispatcher used by the generation engine.

Role in pipeline:
    - Receives one instruction's prompt, style, references and layout hints.
    - Selects the protocol family (explicit `api_type`, else inferred from the
      model id).
    - Returns the provider's `GeneratedImage` unchanged.

Reference images:
    Collected once per run by `collect_references`, only for the multimodal
    protocol and only for roles whose toggle is enabled.

Error handling strategy:
    Exceptions from provider clients are intentionally propagated; the engine
    owns retry and job state.
"""

import httpx

from inline_imagegen.image.bitmap_client import generate_bitmap
from inline_imagegen.image.models import GeneratedImage, GenerationOptions
from inline_imagegen.image.multimodal_client import MAX_REFERENCE_IMAGES, generate_multimodal
from inline_imagegen.image.provider_config import ImageGenConfig
from inline_imagegen.image.references import ReferenceImageSource, ReferenceRole


class ImageGenerationService:
    """Uniform `generate` call over both protocol families."""

    def __init__(
        self,
        config: ImageGenConfig,
        references: ReferenceImageSource | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.references = references
        self.transport = transport

    async def collect_references(self) -> list[str]:
        """Gather enabled reference images for the multimodal protocol."""
        if not self.config.uses_multimodal or self.references is None:
            return []

        roles = []
        if self.config.send_char_avatar:
            roles.append(ReferenceRole.PRIMARY_CHARACTER)
        if self.config.send_user_avatar:
            roles.append(ReferenceRole.END_USER)

        images = []
        for role in roles:
            image = await self.references.get(role)
            if image:
                images.append(image)
        return images

    async def generate(
        self,
        prompt: str,
        style: str | None = None,
        reference_images: list[str] | None = None,
        options: GenerationOptions | None = None,
    ) -> GeneratedImage:
        """Generate one image via the configured protocol.

        Args:
            prompt: Text prompt.
            style: Optional style prefix.
            reference_images: Base64 images, at most four are used.
            options: Aspect ratio, image size and quality hints.
        """
        references = list(reference_images or [])[:MAX_REFERENCE_IMAGES]
        options = options or GenerationOptions()

        if self.config.uses_multimodal:
            return await generate_multimodal(
                self.config, prompt, style, references, options, transport=self.transport
            )
        return await generate_bitmap(
            self.config, prompt, style, references, options, transport=self.transport
        )
