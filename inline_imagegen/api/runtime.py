"""Engine wiring shared by the HTTP and CLI adapters.

Environment variables (in addition to `ImageGenConfig`'s):
    - `IIG_CHAT_FILE`: JSON chat file used as the message store.
    - `IIG_IMAGE_DIR`: directory receiving generated images.
    - `IIG_IMAGE_URL_PREFIX`: public prefix of `IIG_IMAGE_DIR`.
    - `IIG_CHAR_AVATAR_URL` / `IIG_USER_AVATAR_URL`: reference image URLs.
    - `IIG_UPLOAD_URL`: upload endpoint; replaces local image writes when set.
    - `IIG_ASSET_BASE_URL`: base URL for HTTP existence checks; local file
      checks are used when unset.
    - `IIG_PUBLIC_DIR`: directory serving root-relative paths outside
      `IIG_IMAGE_URL_PREFIX` for local existence checks.
"""

import os

from dotenv import load_dotenv

from inline_imagegen.core.engine import GenerationEngine
from inline_imagegen.image.provider_config import ImageGenConfig
from inline_imagegen.image.references import ReferenceRole, UrlReferenceSource
from inline_imagegen.image.service import ImageGenerationService
from inline_imagegen.parsing.instruction_parser import InstructionParser
from inline_imagegen.parsing.models import TagSyntax
from inline_imagegen.persistence.artifact_store import LocalArtifactStore, UploadArtifactStore
from inline_imagegen.persistence.existence import HttpExistenceProbe, LocalFileExistenceProbe
from inline_imagegen.persistence.message_store import JsonChatStore

load_dotenv()


def build_engine(
    chat_file: str | None = None,
    image_dir: str | None = None,
    url_prefix: str | None = None,
    config: ImageGenConfig | None = None,
) -> GenerationEngine:
    """Assemble a `GenerationEngine` from arguments and environment settings.

    Args:
        chat_file: Chat JSON path; defaults to `IIG_CHAT_FILE` or `chat.json`.
        image_dir: Image directory; defaults to `IIG_IMAGE_DIR` or `images`.
        url_prefix: Public image prefix; defaults to `IIG_IMAGE_URL_PREFIX`.
        config: Provider configuration; read from the environment when omitted.
    """
    config = config or ImageGenConfig()
    chat_file = chat_file or os.getenv("IIG_CHAT_FILE", "chat.json")
    image_dir = image_dir or os.getenv("IIG_IMAGE_DIR", "images")
    url_prefix = url_prefix or os.getenv("IIG_IMAGE_URL_PREFIX", "/user/images")

    syntax = TagSyntax()
    probe = None
    if config.check_paths:
        asset_base_url = os.getenv("IIG_ASSET_BASE_URL")
        if asset_base_url:
            probe = HttpExistenceProbe(asset_base_url)
        else:
            probe = LocalFileExistenceProbe(
                image_dir, url_prefix, public_root=os.getenv("IIG_PUBLIC_DIR")
            )
    parser = InstructionParser(syntax, probe=probe, check_paths=config.check_paths)

    reference_urls = {}
    if os.getenv("IIG_CHAR_AVATAR_URL"):
        reference_urls[ReferenceRole.PRIMARY_CHARACTER] = os.getenv("IIG_CHAR_AVATAR_URL")
    if os.getenv("IIG_USER_AVATAR_URL"):
        reference_urls[ReferenceRole.END_USER] = os.getenv("IIG_USER_AVATAR_URL")
    references = UrlReferenceSource(reference_urls) if reference_urls else None

    upload_url = os.getenv("IIG_UPLOAD_URL")
    if upload_url:
        artifacts = UploadArtifactStore(upload_url, timeout=config.timeout_seconds)
    else:
        artifacts = LocalArtifactStore(image_dir, url_prefix)

    return GenerationEngine(
        config=config,
        service=ImageGenerationService(config, references=references),
        store=JsonChatStore(chat_file),
        artifacts=artifacts,
        parser=parser,
        syntax=syntax,
    )
