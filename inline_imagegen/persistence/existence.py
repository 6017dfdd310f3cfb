"""Existence probes used for hallucination recovery.

A probe answers whether a resource reference written in a message actually has
a backing asset. Probes are tolerant of transport failure: when the answer is
unknown they report the asset as present, so an unreachable host never causes
mass regeneration. A local path that no configured directory can back is not
an unknown answer; it is reported missing.
"""

import asyncio
import logging
import os
from urllib.parse import unquote, urljoin, urlparse

import httpx


logger = logging.getLogger(__name__)


def _contained(root: str, relative: str) -> str | None:
    root = os.path.abspath(root)
    candidate = os.path.abspath(os.path.join(root, relative))
    if not candidate.startswith(root + os.sep):
        return None
    return candidate


class LocalFileExistenceProbe:
    """Maps root-relative references onto local files.

    `url_prefix/...` references resolve below `root_dir`; any other
    root-relative path resolves below `public_root` when one is configured.
    Remote references (with a scheme or host) cannot be checked locally and
    count as present.
    """

    def __init__(
        self,
        root_dir: str,
        url_prefix: str = "/user/images",
        public_root: str | None = None,
    ) -> None:
        self.root_dir = root_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.public_root = public_root

    def _local_path(self, path: str) -> str | None:
        if path.startswith(self.url_prefix + "/"):
            return _contained(self.root_dir, path[len(self.url_prefix) + 1:])
        if self.public_root:
            return _contained(self.public_root, path.lstrip("/"))
        return None

    async def exists(self, path: str) -> bool:
        parsed = urlparse(path)
        if parsed.scheme or parsed.netloc:
            logger.debug("Reference %r is remote; assuming present", path)
            return True
        local = self._local_path(unquote(parsed.path))
        if local is None:
            logger.debug("Reference %r has no local backing", path)
            return False
        return await asyncio.to_thread(os.path.isfile, local)


class HttpExistenceProbe:
    """Issues a HEAD request for the reference, resolved against `base_url`."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def exists(self, path: str) -> bool:
        url = urljoin(self.base_url, path)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True, transport=self.transport
            ) as client:
                response = await client.head(url)
        except httpx.HTTPError as exc:
            logger.warning("Existence check for %s failed (%s); assuming present", url, exc)
            return True
        return response.is_success
