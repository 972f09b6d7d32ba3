"""
Metrics Store for Dispatch Tracking

Aggregates per-dispatch metrics for analysis and reporting: how many
logical requests succeeded, how many attempts and credential rotations
they needed, and which credential finally served or failed them.

Uses in-memory storage; the store is thread-safe using threading.Lock.
"""

import threading
from collections import defaultdict
from dataclasses import dataclass, field


OUTCOME_SUCCESS = "success"
OUTCOME_CONFIGURATION_ERROR = "configuration_error"
OUTCOME_NON_RETRYABLE = "non_retryable"
OUTCOME_EXHAUSTED = "exhausted"

VALID_OUTCOMES = frozenset(
    {
        OUTCOME_SUCCESS,
        OUTCOME_CONFIGURATION_ERROR,
        OUTCOME_NON_RETRYABLE,
        OUTCOME_EXHAUSTED,
    }
)


@dataclass
class DispatchMetric:
    """
    Record of a single dispatch call.

    Attributes:
        timestamp: Unix timestamp when the call finished
        outcome: One of VALID_OUTCOMES
        attempts: Attempts made (0 when no credentials were configured)
        rotations: Times the cursor advanced during the call
        credential_index: Credential that served or last failed the call
        latency_ms: Wall time of the whole call, retries included
        model: Model name from the request envelope
        input_tokens: Input tokens of the successful attempt
        output_tokens: Output tokens of the successful attempt
    """

    timestamp: float
    outcome: str
    attempts: int
    rotations: int
    credential_index: int | None
    latency_ms: float
    model: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens processed (input + output)."""
        return self.input_tokens + self.output_tokens

    @property
    def succeeded(self) -> bool:
        return self.outcome == OUTCOME_SUCCESS


@dataclass
class _CredentialAggregate:
    """Internal aggregate for per-credential metrics."""

    successes: int = 0
    failures: int = 0
    latencies: list[float] = field(default_factory=list)


@dataclass
class AggregatedMetrics:
    """
    Aggregated metrics snapshot for reporting.

    Attributes:
        total_dispatches: Number of dispatch calls recorded
        total_attempts: Attempts across all calls
        total_rotations: Credential rotations across all calls
        total_input_tokens: Input tokens across successful calls
        total_output_tokens: Output tokens across successful calls
        outcomes: Count of calls per outcome
        by_credential: Success/failure counts keyed by credential index
        latencies: Call latencies for averages
    """

    total_dispatches: int = 0
    total_attempts: int = 0
    total_rotations: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    outcomes: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    by_credential: dict[int, _CredentialAggregate] = field(
        default_factory=lambda: defaultdict(_CredentialAggregate)
    )
    latencies: list[float] = field(default_factory=list)


class DispatchStatsStore:
    """
    Thread-safe in-memory dispatch metrics storage.

    Example:
        store = DispatchStatsStore()
        store.record(DispatchMetric(
            timestamp=time.time(),
            outcome="success",
            attempts=2,
            rotations=1,
            credential_index=1,
            latency_ms=840.0,
        ))
        aggregated = store.get_aggregated()
    """

    def __init__(self, max_history: int = 10000):
        """
        Initialize the store.

        Args:
            max_history: Maximum individual metrics to retain.
                         Aggregates are preserved regardless of this limit.
        """
        self._lock = threading.Lock()
        self._metrics: list[DispatchMetric] = []
        self._max_history = max_history

        self._total_dispatches = 0
        self._total_attempts = 0
        self._total_rotations = 0
        self._total_input_tokens = 0
        self._total_output_tokens = 0
        self._outcomes: dict[str, int] = defaultdict(int)
        self._by_credential: dict[int, _CredentialAggregate] = defaultdict(
            _CredentialAggregate
        )
        self._latencies: list[float] = []

    def record(self, metric: DispatchMetric) -> None:
        """
        Record a dispatch metric.

        Args:
            metric: The dispatch metric to record

        Raises:
            ValueError: If the outcome is not a known outcome.
        """
        if metric.outcome not in VALID_OUTCOMES:
            raise ValueError(f"Unknown dispatch outcome: {metric.outcome}")

        with self._lock:
            self._metrics.append(metric)
            if len(self._metrics) > self._max_history:
                self._metrics = self._metrics[-self._max_history :]

            self._total_dispatches += 1
            self._total_attempts += metric.attempts
            self._total_rotations += metric.rotations
            self._total_input_tokens += metric.input_tokens
            self._total_output_tokens += metric.output_tokens
            self._outcomes[metric.outcome] += 1

            if metric.credential_index is not None:
                cred_agg = self._by_credential[metric.credential_index]
                if metric.succeeded:
                    cred_agg.successes += 1
                else:
                    cred_agg.failures += 1
                cred_agg.latencies.append(metric.latency_ms)
                if len(cred_agg.latencies) > self._max_history:
                    cred_agg.latencies = cred_agg.latencies[-self._max_history :]

            self._latencies.append(metric.latency_ms)
            if len(self._latencies) > self._max_history:
                self._latencies = self._latencies[-self._max_history :]

    def get_aggregated(self) -> AggregatedMetrics:
        """
        Get a snapshot of the current aggregates.

        The returned object is a copy and safe to use outside the lock.
        """
        with self._lock:
            by_credential_copy = {
                index: _CredentialAggregate(
                    successes=agg.successes,
                    failures=agg.failures,
                    latencies=list(agg.latencies),
                )
                for index, agg in self._by_credential.items()
            }

            return AggregatedMetrics(
                total_dispatches=self._total_dispatches,
                total_attempts=self._total_attempts,
                total_rotations=self._total_rotations,
                total_input_tokens=self._total_input_tokens,
                total_output_tokens=self._total_output_tokens,
                outcomes=dict(self._outcomes),
                by_credential=by_credential_copy,
                latencies=list(self._latencies),
            )

    def get_recent(self, count: int = 100) -> list[DispatchMetric]:
        """Return copies of the most recent dispatch metrics."""
        with self._lock:
            return list(self._metrics[-count:])

    def reset(self) -> None:
        """Clear all stored data and aggregates. Primarily used for testing."""
        with self._lock:
            self._metrics.clear()
            self._total_dispatches = 0
            self._total_attempts = 0
            self._total_rotations = 0
            self._total_input_tokens = 0
            self._total_output_tokens = 0
            self._outcomes.clear()
            self._by_credential.clear()
            self._latencies.clear()


_store: DispatchStatsStore | None = None


def get_stats_store() -> DispatchStatsStore:
    """
    Get the global dispatch metrics store instance.

    Returns:
        Singleton DispatchStatsStore instance
    """
    global _store
    if _store is None:
        _store = DispatchStatsStore()
    return _store
