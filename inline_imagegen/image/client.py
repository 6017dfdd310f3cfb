"""Shared HTTP transport for image-provider clients.

Processing flow:
    1. Build bearer-authenticated JSON headers.
    2. POST the payload with `httpx.AsyncClient`.
    3. Map every failure onto the provider error taxonomy and return the parsed
       JSON object on success.

Error handling strategy:
    - Non-2xx statuses -> `provider_error_for_status` (transient or terminal).
    - Timeouts and transport failures -> `TransientProviderError`.
    - Non-JSON or non-object bodies -> `TerminalProviderError`.
    Retrying is the engine's job; this module makes exactly one attempt.

Security considerations:
    Error messages include the upstream response body, truncated.
"""

import logging
from typing import Any

import httpx

from inline_imagegen.core.errors import (
    TerminalProviderError,
    TransientProviderError,
    provider_error_for_status,
)


logger = logging.getLogger(__name__)

_MAX_ERROR_BODY = 500


def bearer_headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


async def post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """POST `payload` to `url` once and return the decoded JSON object.

    Args:
        url: Provider endpoint.
        payload: JSON request body.
        headers: Request headers.
        timeout: Request timeout in seconds.
        transport: Optional transport override (tests use `httpx.MockTransport`).

    Raises:
        TransientProviderError: Retryable status, timeout or network failure.
        TerminalProviderError: Any other failure.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as exc:
        raise TransientProviderError(f"Request timeout: {exc}") from exc
    except httpx.TransportError as exc:
        raise TransientProviderError(f"Network error: {exc}") from exc

    if not response.is_success:
        raise provider_error_for_status(response.status_code, response.text[:_MAX_ERROR_BODY])

    try:
        data = response.json()
    except ValueError as exc:
        raise TerminalProviderError("Provider returned a non-JSON response") from exc

    if not isinstance(data, dict):
        raise TerminalProviderError("Provider returned an unexpected response shape")

    logger.debug("Provider %s answered %d", url, response.status_code)
    return data
