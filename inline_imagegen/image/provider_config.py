"""Provider/runtime configuration for image generation.

Architectural role:
    Centralizes endpoint, credential, model and generation defaults for
    `inline_imagegen.image.service` and the engine's retry policy.

Resolution:
    Values are read from the process environment (after `load_dotenv()`) when
    `ImageGenConfig` is instantiated without arguments. Tests and embedders
    pass explicit values instead.

Failure behavior:
    `ImageGenConfig.validate` raises `ConfigurationError` listing every missing
    setting, so a run aborts before any job starts.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from inline_imagegen.core.errors import ConfigurationError

load_dotenv()


# Model-id fragments. Video fragments are checked first and exclude a model.
VIDEO_MODEL_KEYWORDS = (
    "sora", "kling", "jimeng", "veo", "pika", "runway", "luma",
    "video", "gen-3", "minimax", "cogvideo", "mochi", "seedance",
    "vidu", "wan-ai", "hunyuan", "hailuo",
)

IMAGE_MODEL_KEYWORDS = (
    "dall-e", "midjourney", "mj", "journey", "stable-diffusion", "sdxl", "flux",
    "imagen", "drawing", "paint", "image", "seedream", "hidream", "dreamshaper",
    "ideogram", "nano-banana", "gemini-3-pro", "gpt-image", "wanx", "qwen",
)

MULTIMODAL_MODEL_KEYWORDS = ("gemini-3-pro", "nano-banana", "gemini-2.5-flash-image")

API_TYPES = ("openai", "gemini")
BITMAP_SIZES = ("1024x1024", "1792x1024", "1024x1792", "512x512")

DEFAULT_KEY_FILE = "config/iig.key"


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def load_key(path):
    """Load API key from environment override or key file.

    Resolution order:
        1. Environment variable inferred from file stem (for example
           `config/iig.key` -> `IIG_API_KEY`).
        2. Raw file contents at `path`.

    Returns:
        Key string or `None` when not available.
    """
    if not path:
        return None
    key_name = os.path.splitext(os.path.basename(path))[0].upper() + "_API_KEY"
    env_value = os.getenv(key_name)
    if env_value:
        return env_value
    if not os.path.exists(path):
        return None
    with open(path, "r") as f:
        return f.read().strip()


def is_image_model(model_id: str) -> bool:
    """Return whether a model id names an image (not video) generator."""
    mid = (model_id or "").lower()
    if any(keyword in mid for keyword in VIDEO_MODEL_KEYWORDS):
        return False
    if "vision" in mid and "preview" in mid:
        return False
    return any(keyword in mid for keyword in IMAGE_MODEL_KEYWORDS)


def is_multimodal_model(model_id: str) -> bool:
    """Return whether a model id speaks the multimodal-content protocol."""
    mid = (model_id or "").lower()
    if any(keyword in mid for keyword in VIDEO_MODEL_KEYWORDS):
        return False
    return any(keyword in mid for keyword in MULTIMODAL_MODEL_KEYWORDS)


@dataclass(frozen=True)
class ImageGenConfig:
    """Runtime configuration for image generation.

    Relevant environment variables:
        - `IIG_ENABLED`, `IIG_API_TYPE`, `IIG_ENDPOINT`, `IIG_API_KEY`, `IIG_MODEL`
        - `IIG_SIZE`, `IIG_QUALITY`, `IIG_ASPECT_RATIO`, `IIG_IMAGE_SIZE`
        - `IIG_MAX_RETRIES`, `IIG_RETRY_DELAY`, `IIG_TIMEOUT_SECONDS`
        - `IIG_CHECK_PATHS`, `IIG_SEND_CHAR_AVATAR`, `IIG_SEND_USER_AVATAR`
    """

    enabled: bool = field(default_factory=lambda: _env_bool("IIG_ENABLED", "true"))
    api_type: str = field(default_factory=lambda: os.getenv("IIG_API_TYPE", "").strip().lower())
    endpoint: str = field(default_factory=lambda: os.getenv("IIG_ENDPOINT", "").strip())
    api_key: str = field(default_factory=lambda: load_key(DEFAULT_KEY_FILE) or "")
    model: str = field(default_factory=lambda: os.getenv("IIG_MODEL", "").strip())
    size: str = field(default_factory=lambda: os.getenv("IIG_SIZE", "1024x1024"))
    quality: str = field(default_factory=lambda: os.getenv("IIG_QUALITY", "standard"))
    aspect_ratio: str = field(default_factory=lambda: os.getenv("IIG_ASPECT_RATIO", "1:1"))
    image_size: str = field(default_factory=lambda: os.getenv("IIG_IMAGE_SIZE", "1K"))
    max_retries: int = field(default_factory=lambda: int(os.getenv("IIG_MAX_RETRIES", "0")))
    retry_delay: float = field(default_factory=lambda: float(os.getenv("IIG_RETRY_DELAY", "1.0")))
    timeout_seconds: float = field(
        default_factory=lambda: float(os.getenv("IIG_TIMEOUT_SECONDS", "120"))
    )
    check_paths: bool = field(default_factory=lambda: _env_bool("IIG_CHECK_PATHS"))
    send_char_avatar: bool = field(default_factory=lambda: _env_bool("IIG_SEND_CHAR_AVATAR"))
    send_user_avatar: bool = field(default_factory=lambda: _env_bool("IIG_SEND_USER_AVATAR"))

    @property
    def uses_multimodal(self) -> bool:
        """Whether requests go to the multimodal-content protocol."""
        if self.api_type in API_TYPES:
            return self.api_type == "gemini"
        return is_multimodal_model(self.model)

    def base_url(self) -> str:
        return self.endpoint.rstrip("/")

    def validate(self) -> None:
        """Raise `ConfigurationError` if no generation request could succeed."""
        problems = []
        if not self.endpoint:
            problems.append("endpoint URL is not set")
        if not self.api_key:
            problems.append("API key is not set")
        if not self.model:
            problems.append("model is not selected")
        if self.api_type and self.api_type not in API_TYPES:
            problems.append(f"unknown API type {self.api_type!r}")
        if self.max_retries < 0:
            problems.append("max_retries must not be negative")
        if problems:
            raise ConfigurationError(problems)
