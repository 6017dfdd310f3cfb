"""Durable artifact stores for generated images.

Processing flow:
    1. Obtain raw bytes: decode an inline data URL, or download a remote URL.
    2. Name the file `iig_<timestamp>.<ext>` inside a per-character folder.
    3. Persist (local write or upload endpoint) and return a stable reference.

Base64 and temporary files:
    - Data URLs are decoded here; no temporary files are created.
    - Local writes run in a worker thread via `asyncio.to_thread`.

Error handling strategy:
    Every failure surfaces as `PersistenceError`, which ends the job in ERROR.
"""

import asyncio
import base64
import binascii
import logging
import os
import re
import uuid
from datetime import datetime, timezone
from typing import Protocol

import httpx

from inline_imagegen.core.errors import PersistenceError
from inline_imagegen.image.models import GeneratedImage


logger = logging.getLogger(__name__)

_UNSAFE_NAME = re.compile(r"[^\w.-]+")
_MIME_EXTENSIONS = {"jpeg": "jpg", "svg+xml": "svg"}


class ArtifactStore(Protocol):
    async def save(self, image: GeneratedImage, character_name: str | None = None) -> str:
        """Persist `image` and return its stable resource reference."""
        ...


def artifact_filename() -> str:
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%f")
    return f"iig_{timestamp}_{uuid.uuid4().hex[:6]}"


def safe_folder(character_name: str | None) -> str:
    cleaned = _UNSAFE_NAME.sub("_", (character_name or "").strip()).strip("._")
    return cleaned or "generated"


async def load_image_bytes(
    image: GeneratedImage,
    timeout: float = 60.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[bytes, str]:
    """Return `(bytes, format)` for an inline or remote image.

    Raises:
        PersistenceError: Undecodable data URL or failed download.
    """
    inline = image.inline_parts()
    if inline is not None:
        mime_type, data = inline
        try:
            raw = base64.b64decode(data, validate=False)
        except (binascii.Error, ValueError) as exc:
            raise PersistenceError("Invalid base64 image data") from exc
        return raw, mime_type.split("/", 1)[1]

    if image.is_inline:
        raise PersistenceError("Invalid data URL format")

    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True, transport=transport) as client:
            response = await client.get(image.reference)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        raise PersistenceError(f"Could not download generated image: {exc}") from exc

    content_type = response.headers.get("content-type", "image/png").split(";", 1)[0]
    fmt = content_type.split("/", 1)[1] if content_type.startswith("image/") else "png"
    return response.content, fmt


class LocalArtifactStore:
    """Writes images below `root_dir` and returns `url_prefix`-relative paths.

    Args:
        root_dir: Directory receiving `<character>/<file>` images.
        url_prefix: Public prefix of `root_dir` in resource references.
        transport: Optional transport override for remote downloads.
    """

    def __init__(
        self,
        root_dir: str,
        url_prefix: str = "/user/images",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.root_dir = root_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.transport = transport

    async def save(self, image: GeneratedImage, character_name: str | None = None) -> str:
        raw, fmt = await load_image_bytes(image, transport=self.transport)
        folder = safe_folder(character_name)
        extension = _MIME_EXTENSIONS.get(fmt, fmt)
        filename = f"{artifact_filename()}.{extension}"
        path = os.path.join(self.root_dir, folder, filename)

        try:
            await asyncio.to_thread(_write_file, path, raw)
        except OSError as exc:
            raise PersistenceError(f"Could not write {path}: {exc}") from exc

        reference = f"{self.url_prefix}/{folder}/{filename}"
        logger.info("Image saved to %s", reference)
        return reference


def _write_file(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


class UploadArtifactStore:
    """Uploads images to a host endpoint accepting `{image, format, ch_name, filename}`."""

    def __init__(
        self,
        upload_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.upload_url = upload_url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.transport = transport

    async def save(self, image: GeneratedImage, character_name: str | None = None) -> str:
        raw, fmt = await load_image_bytes(image, timeout=self.timeout, transport=self.transport)
        body = {
            "image": base64.b64encode(raw).decode("ascii"),
            "format": fmt,
            "ch_name": character_name or "generated",
            "filename": artifact_filename(),
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.upload_url, json=body, headers=self.headers)
        except httpx.HTTPError as exc:
            raise PersistenceError(f"Upload failed: {exc}") from exc

        if not response.is_success:
            try:
                detail = response.json().get("error")
            except ValueError:
                detail = None
            raise PersistenceError(detail or f"Upload failed: {response.status_code}")

        path = response.json().get("path")
        if not path:
            raise PersistenceError("Upload response carried no path")
        logger.info("Image uploaded to %s", path)
        return path
