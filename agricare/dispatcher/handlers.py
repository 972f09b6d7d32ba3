"""
Dispatcher Handlers - Multi-key generation dispatch with credential rotation.

The dispatcher holds an ordered list of API keys, lazily creates one client
per key, and sends each generation request through the currently active
key. When an attempt fails with a retryable error the cursor advances to
the next key (wrapping around) and the same request is retried, up to a
fixed retry budget.

Key components:
- KeyRotatingDispatcher: cursor, client cache and bounded retry loop
- get_dispatcher(): process-wide instance built from settings
- reset_dispatcher(): drop the process-wide instance (tests)

The cursor and client cache are shared by every concurrent dispatch call.
Both are guarded by a threading.Lock whose critical sections never await,
and rotation is compare-and-advance so that two calls failing on the same
key rotate past it only once.
"""

import asyncio
import logging
import threading
import time

from agricare.config import Settings, get_settings, mask_credential
from agricare.dispatcher.clients import (
    ClientFactory,
    GenerationClient,
    GenerationRequest,
    GenerationResult,
    client_factory_for,
)
from agricare.dispatcher.errors import (
    ConfigurationError,
    ExhaustedRetriesError,
    NonRetryableProviderError,
    RetryPredicate,
    get_retry_predicate,
)
from agricare.metrics.store import (
    OUTCOME_CONFIGURATION_ERROR,
    OUTCOME_EXHAUSTED,
    OUTCOME_NON_RETRYABLE,
    OUTCOME_SUCCESS,
    DispatchMetric,
    DispatchStatsStore,
    get_stats_store,
)

logger = logging.getLogger(__name__)


class KeyRotatingDispatcher:
    """
    Deliver generation requests, rotating API keys on provider failures.

    Callers never see which key served a request. Terminal failures are
    always raised, never replaced with a default payload:
    - ConfigurationError when no key is configured
    - NonRetryableProviderError when the retry predicate rejects the error
    - ExhaustedRetriesError when every allowed attempt failed

    Usage:
        dispatcher = KeyRotatingDispatcher()  # keys and policy from settings
        result = await dispatcher.dispatch(request)

    Attributes:
        cursor: Index of the active credential
        credential_count: Number of usable credentials
    """

    def __init__(
        self,
        credentials: list[str] | None = None,
        client_factory: ClientFactory | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        is_retryable: RetryPredicate | None = None,
        stats: DispatchStatsStore | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize the dispatcher.

        Every argument left as None is taken from settings, so the
        zero-argument form reads keys, provider and retry policy from the
        environment.

        Args:
            credentials: Ordered API keys; settings.credentials() when None.
            client_factory: api_key -> client; provider from settings when None.
            max_retries: Default retry budget per dispatch call.
            retry_delay: Flat pause in seconds between attempts.
            is_retryable: Predicate deciding which errors rotate and retry.
            stats: Optional store receiving one DispatchMetric per call.
            settings: Settings instance; get_settings() when None.
        """
        settings = settings or get_settings()

        self._credentials: list[str] = list(
            settings.credentials() if credentials is None else credentials
        )
        self._client_factory = client_factory or client_factory_for(
            settings.ai_provider
        )
        self._max_retries = (
            settings.dispatch_retries if max_retries is None else max_retries
        )
        self._retry_delay = (
            settings.retry_delay_seconds if retry_delay is None else retry_delay
        )
        self._is_retryable = is_retryable or get_retry_predicate(settings.retry_policy)
        self._stats = stats

        if self._max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self._lock = threading.Lock()
        self._cursor = 0
        self._clients: dict[str, GenerationClient] = {}

    @property
    def cursor(self) -> int:
        """Index of the credential the next attempt will use."""
        with self._lock:
            return self._cursor

    @property
    def credential_count(self) -> int:
        return len(self._credentials)

    @property
    def has_credentials(self) -> bool:
        return bool(self._credentials)

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def credential_labels(self) -> list[str]:
        """Masked labels of the configured keys, in priority order."""
        return [mask_credential(key) for key in self._credentials]

    def _active_client(self) -> tuple[int, GenerationClient]:
        """
        Resolve the client bound to the credential at the cursor.

        Returns:
            (credential index, client) pair.

        Raises:
            ConfigurationError: If no credentials are configured.
        """
        if not self._credentials:
            raise ConfigurationError(
                "No AI credentials configured. Set GEMINI_API_KEY "
                "(or GEMINI_API_KEY_2 / GEMINI_API_KEY_3)."
            )

        with self._lock:
            index = self._cursor
            credential = self._credentials[index]
            client = self._clients.get(credential)
            if client is None:
                client = self._client_factory(credential)
                self._clients[credential] = client
                logger.debug(f"Initialized client for credential #{index}")
            return index, client

    def _rotate(self, failed_index: int) -> int:
        """
        Advance the cursor past a credential that just failed.

        Only advances when the cursor still points at failed_index; another
        call may already have rotated past it.

        Returns:
            The cursor value after rotation.
        """
        with self._lock:
            if self._cursor == failed_index:
                self._cursor = (failed_index + 1) % len(self._credentials)
            return self._cursor

    def _record(
        self,
        outcome: str,
        attempts: int,
        rotations: int,
        credential_index: int | None,
        start_time: float,
        request: GenerationRequest,
        result: GenerationResult | None = None,
    ) -> None:
        if self._stats is None:
            return
        self._stats.record(
            DispatchMetric(
                timestamp=time.time(),
                outcome=outcome,
                attempts=attempts,
                rotations=rotations,
                credential_index=credential_index,
                latency_ms=(time.perf_counter() - start_time) * 1000,
                model=request.model,
                input_tokens=result.tokens.input_tokens if result else 0,
                output_tokens=result.tokens.output_tokens if result else 0,
            )
        )

    async def dispatch(
        self,
        request: GenerationRequest,
        retries: int | None = None,
    ) -> GenerationResult:
        """
        Send a request, rotating credentials on retryable failures.

        Makes at most retries + 1 attempts. After a retryable failure the
        cursor moves to the next credential before the next attempt; the
        final failed attempt does not rotate, so the cursor is left on the
        credential that made it.

        Args:
            request: Generation envelope, passed unchanged to every attempt.
            retries: Retry budget for this call; the dispatcher default
                     when None.

        Returns:
            The client's GenerationResult, unmodified.

        Raises:
            ConfigurationError: No credentials configured (never retried).
            NonRetryableProviderError: The retry predicate rejected the error.
            ExhaustedRetriesError: Every attempt failed with a retryable error.
        """
        budget = self._max_retries if retries is None else retries
        if budget < 0:
            raise ValueError("retries must be >= 0")

        start_time = time.perf_counter()
        rotations = 0
        last_error: Exception | None = None
        index: int | None = None

        for attempt in range(budget + 1):
            try:
                index, client = self._active_client()
            except ConfigurationError:
                logger.error("Dispatch requested but no AI credentials are configured")
                self._record(
                    OUTCOME_CONFIGURATION_ERROR, attempt, rotations, None, start_time, request
                )
                raise

            try:
                result = await client.generate(request)
            except Exception as e:
                last_error = e

                if not self._is_retryable(e):
                    logger.error(
                        f"Non-retryable failure on credential #{index} "
                        f"(attempt {attempt + 1}): {e}"
                    )
                    self._record(
                        OUTCOME_NON_RETRYABLE, attempt + 1, rotations, index, start_time, request
                    )
                    raise NonRetryableProviderError(
                        f"Generation request rejected: {e}",
                        credential_index=index,
                        cause=e,
                    ) from e

                if attempt >= budget:
                    break

                next_index = self._rotate(index)
                rotations += 1
                logger.warning(
                    f"Dispatch failed on credential #{index} "
                    f"(attempt {attempt + 1}/{budget + 1}), "
                    f"retrying with credential #{next_index}: {e}"
                )
                if self._retry_delay > 0:
                    await asyncio.sleep(self._retry_delay)
                continue

            logger.debug(
                f"Dispatch succeeded on credential #{index} "
                f"(attempt {attempt + 1}, latency={result.latency_ms:.0f}ms)"
            )
            self._record(
                OUTCOME_SUCCESS, attempt + 1, rotations, index, start_time, request, result
            )
            return result

        attempts = budget + 1
        logger.error(f"Dispatch failed after {attempts} attempts: {last_error}")
        self._record(OUTCOME_EXHAUSTED, attempts, rotations, index, start_time, request)
        raise ExhaustedRetriesError(
            f"All {attempts} attempts failed: {last_error}",
            attempts=attempts,
            last_error=last_error,
            credential_index=index,
        ) from last_error


_dispatcher: KeyRotatingDispatcher | None = None


def get_dispatcher() -> KeyRotatingDispatcher:
    """
    Get the global dispatcher instance.

    Created on first use from settings and shared by every caller, so the
    cursor and client cache live for the whole process.

    Returns:
        The singleton KeyRotatingDispatcher instance.
    """
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = KeyRotatingDispatcher(stats=get_stats_store())
    return _dispatcher


def reset_dispatcher() -> None:
    """Drop the global dispatcher so the next call rebuilds it."""
    global _dispatcher
    _dispatcher = None
