"""
Metrics Reporter for API Responses

Transforms raw aggregated dispatch metrics into structured API responses
with computed fields like success rate and average latencies.

The reporter bridges the internal metrics representation to the
Pydantic schemas used by the REST API.
"""

from agricare.metrics.store import (
    OUTCOME_SUCCESS,
    DispatchStatsStore,
    get_stats_store,
)
from agricare.schemas.api import CredentialMetrics, MetricsResponse


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class MetricsReporter:
    """
    Generate metrics reports from aggregated data.

    Example:
        reporter = MetricsReporter()
        response = reporter.generate_report()
        return response  # Ready for JSON serialization
    """

    def __init__(self, store: DispatchStatsStore | None = None):
        """
        Initialize the reporter.

        Args:
            store: DispatchStatsStore instance to report from.
                   If None, uses the global singleton.
        """
        self._store = store or get_stats_store()

    def generate_report(self) -> MetricsResponse:
        """
        Generate a complete metrics report.

        Returns:
            MetricsResponse ready for API serialization
        """
        agg = self._store.get_aggregated()

        by_credential: dict[str, CredentialMetrics] = {}
        for index, cred_data in sorted(agg.by_credential.items()):
            by_credential[str(index)] = CredentialMetrics(
                credential_index=index,
                successes=cred_data.successes,
                failures=cred_data.failures,
                avg_latency_ms=round(_mean(cred_data.latencies), 2),
            )

        successes = agg.outcomes.get(OUTCOME_SUCCESS, 0)
        success_rate = (
            successes / agg.total_dispatches * 100 if agg.total_dispatches else 0.0
        )

        return MetricsResponse(
            total_dispatches=agg.total_dispatches,
            total_attempts=agg.total_attempts,
            total_rotations=agg.total_rotations,
            success_rate=round(success_rate, 2),
            outcomes=dict(agg.outcomes),
            by_credential=by_credential,
            total_tokens=agg.total_input_tokens + agg.total_output_tokens,
            avg_latency_ms=round(_mean(agg.latencies), 2),
        )

    def get_rotation_rate(self) -> float:
        """
        Average number of credential rotations per dispatch call.

        Returns:
            Rotations per call, 0.0 when nothing was dispatched
        """
        agg = self._store.get_aggregated()
        if agg.total_dispatches == 0:
            return 0.0
        return round(agg.total_rotations / agg.total_dispatches, 3)


def get_reporter(store: DispatchStatsStore | None = None) -> MetricsReporter:
    """
    Get a metrics reporter instance.

    Args:
        store: Optional DispatchStatsStore to use. Defaults to global singleton.

    Returns:
        MetricsReporter instance
    """
    return MetricsReporter(store)
