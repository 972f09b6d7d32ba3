"""
Dispatcher error taxonomy and retry predicates.

Terminal conditions a caller can distinguish:
- ConfigurationError: no usable credentials at all (never retried)
- NonRetryableProviderError: permanent failure, surfaced without rotation
- ExhaustedRetriesError: every allowed attempt failed with a retryable error

The retry predicate decides which failures rotate to the next credential.
Two policies ship with the package:
- is_retryable_error: rate-limit / quota / transient failures only
- retry_on_any_error: every failure rotates
"""

from collections.abc import Callable

RetryPredicate = Callable[[Exception], bool]


class DispatchError(Exception):
    """Base class for all dispatcher failures."""


class ConfigurationError(DispatchError):
    """No usable credentials are configured."""


class ProviderError(DispatchError):
    """
    Failure reported by the generation endpoint.

    Attributes:
        credential_index: Index of the credential that made the failing attempt
        cause: The underlying exception raised by the provider client
    """

    def __init__(
        self,
        message: str,
        credential_index: int | None = None,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.credential_index = credential_index
        self.cause = cause


class RetryableProviderError(ProviderError):
    """Rate-limit, quota or transient failure; another credential may succeed."""


class NonRetryableProviderError(ProviderError):
    """Permanent failure (bad request, invalid schema); rotating cannot help."""


class ExhaustedRetriesError(ProviderError):
    """
    Retry budget spent without a successful attempt.

    Attributes:
        attempts: Number of attempts made (initial + retries)
        last_error: Error raised by the final attempt
    """

    def __init__(
        self,
        message: str,
        attempts: int,
        last_error: Exception,
        credential_index: int | None = None,
    ) -> None:
        super().__init__(message, credential_index=credential_index, cause=last_error)
        self.attempts = attempts
        self.last_error = last_error


RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})

RETRYABLE_MARKERS = (
    "429",
    "rate limit",
    "rate_limit",
    "ratelimit",
    "quota",
    "resource exhausted",
    "resource_exhausted",
    "too many requests",
    "overloaded",
    "unavailable",
    "deadline exceeded",
    "timed out",
    "timeout",
    "connection error",
)


def _status_code(error: Exception) -> int | None:
    """Extract an HTTP-like status code from SDK exceptions, if any."""
    for attr in ("status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    return None


def is_retryable_error(error: Exception) -> bool:
    """
    Classify an error as worth retrying on another credential.

    Checks, in order: explicit provider error classes, timeouts and
    connection errors, 429/5xx status codes, then rate-limit markers in
    the error text.

    Args:
        error: Exception raised by a generation client.

    Returns:
        True when rotating to another credential could help.
    """
    if isinstance(error, RetryableProviderError):
        return True
    if isinstance(error, NonRetryableProviderError):
        return False

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    status = _status_code(error)
    if status is not None and status in RETRYABLE_STATUS_CODES:
        return True

    message = str(error).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


def retry_on_any_error(error: Exception) -> bool:
    """Treat every failure as retryable."""
    return True


RETRY_POLICIES: dict[str, RetryPredicate] = {
    "classified": is_retryable_error,
    "any": retry_on_any_error,
}


def get_retry_predicate(policy: str) -> RetryPredicate:
    """
    Look up a retry predicate by policy name.

    Raises:
        ValueError: If the policy name is unknown.
    """
    try:
        return RETRY_POLICIES[policy]
    except KeyError:
        raise ValueError(
            f"Unknown retry policy '{policy}', expected one of {sorted(RETRY_POLICIES)}"
        ) from None
