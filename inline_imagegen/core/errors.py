"""Error taxonomy for the inline image-generation pipeline.

Propagation model:
    - `InstructionParseError` and `ResolutionMiss` stay local to one instruction.
    - `ConfigurationError` aborts a whole run before any job starts.
    - `ProviderError` subclasses and `PersistenceError` are scoped to one job and
      end that job in the ERROR state.

Retry classification:
    `TransientProviderError` is the only retryable class. Construct provider
    errors through `provider_error_for_status` so HTTP statuses map to the
    right class in one place.
"""

# Statuses treated as transient: rate limiting, request timeout and upstream
# failures (internal error, bad gateway, unavailable, gateway timeout).
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class ImageGenError(Exception):
    """Base class for all pipeline errors."""


class InstructionParseError(ImageGenError):
    """An instruction tag could not be decoded into a valid instruction."""


class ResolutionMiss(ImageGenError):
    """No node in the rendered view matched an instruction."""


class ConfigurationError(ImageGenError):
    """Endpoint, credential or model configuration is unusable."""

    def __init__(self, problems: list[str]):
        self.problems = list(problems)
        super().__init__("Configuration error: " + ", ".join(self.problems))


class ProviderError(ImageGenError):
    """A generation backend returned no usable image."""

    retryable = False

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class TransientProviderError(ProviderError):
    """Rate limiting, upstream unavailability, timeouts and network failures."""

    retryable = True


class TerminalProviderError(ProviderError):
    """Any provider failure that retrying cannot fix."""


class PersistenceError(ImageGenError):
    """The artifact store or the log store rejected a write."""


def provider_error_for_status(status_code: int, body: str) -> ProviderError:
    """Build the provider error matching an HTTP status.

    Args:
        status_code: Non-success HTTP status returned by the backend.
        body: Response text, included in the message for the error placeholder.

    Returns:
        `TransientProviderError` for retryable statuses, otherwise
        `TerminalProviderError`.
    """
    message = f"API Error ({status_code}): {body}"
    if status_code in RETRYABLE_STATUS_CODES:
        return TransientProviderError(message, status_code=status_code)
    return TerminalProviderError(message, status_code=status_code)
