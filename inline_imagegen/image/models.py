"""Request/response contracts shared by the provider clients."""

import re
from dataclasses import dataclass


_DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class GenerationOptions:
    """Per-instruction layout hints; `None` means "use the configured default"."""

    aspect_ratio: str | None = None
    image_size: str | None = None
    quality: str | None = None


@dataclass(frozen=True)
class GeneratedImage:
    """Encoded image returned by a provider.

    `reference` is either a `data:image/...;base64,...` URL or a remote URL the
    artifact store downloads.
    """

    reference: str

    @classmethod
    def from_base64(cls, data: str, mime_type: str = "image/png") -> "GeneratedImage":
        return cls(f"data:{mime_type or 'image/png'};base64,{data}")

    @property
    def is_inline(self) -> bool:
        return self.reference.startswith("data:")

    def inline_parts(self) -> tuple[str, str] | None:
        """Return `(mime_type, base64_data)` for data URLs, else `None`."""
        match = _DATA_URL.match(self.reference)
        if not match:
            return None
        return match.group(1), match.group(2)


def compose_prompt(prompt: str, style: str | None) -> str:
    """Fold an optional style into the prompt as a bracketed prefix."""
    return f"[Style: {style}] {prompt}" if style else prompt
