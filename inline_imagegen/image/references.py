"""Reference-image sourcing for the multimodal protocol.

Scope:
    Avatar sourcing itself belongs to the host application. This module only
    defines the role-based interface the engine consumes and a URL-backed
    implementation that downloads and base64-encodes configured images.

Error handling strategy:
    A reference that cannot be fetched is logged and skipped; generation then
    proceeds with the remaining references (possibly none).
"""

import asyncio
import base64
import logging
from enum import Enum
from typing import Protocol

import requests


logger = logging.getLogger(__name__)


class ReferenceRole(str, Enum):
    PRIMARY_CHARACTER = "primary_character"
    END_USER = "end_user"


class ReferenceImageSource(Protocol):
    async def get(self, role: ReferenceRole) -> str | None:
        """Return base64 image data for `role`, or `None`."""
        ...


def _download_base64(url: str, timeout: float) -> str:
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    return base64.b64encode(response.content).decode("ascii")


class UrlReferenceSource:
    """Fetches reference images from fixed URLs keyed by role."""

    def __init__(self, urls: dict[ReferenceRole, str], timeout: float = 30.0) -> None:
        self.urls = dict(urls)
        self.timeout = timeout

    async def get(self, role: ReferenceRole) -> str | None:
        url = self.urls.get(role)
        if not url:
            return None
        try:
            return await asyncio.to_thread(_download_base64, url, self.timeout)
        except requests.exceptions.RequestException:
            logger.warning("Could not fetch %s reference image from %s", role.value, url)
            return None
