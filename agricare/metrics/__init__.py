"""
Metrics Module: Dispatch Statistics

Tracks how the key-rotating dispatcher behaves in production: how many
calls succeeded, how many attempts and credential rotations they needed,
and which credential slot served or failed them.

Components:
    DispatchStatsStore: Thread-safe in-memory metrics aggregation
    DispatchMetric: Individual dispatch call record
    AggregatedMetrics: Pre-computed aggregates for reporting

MetricsReporter (API responses) is imported from agricare.metrics.reporter.

Usage:
    from agricare.metrics import get_stats_store
    from agricare.metrics.reporter import MetricsReporter

    store = get_stats_store()
    response = MetricsReporter(store).generate_report()  # MetricsResponse

Singleton Access:
    get_stats_store(): Returns global DispatchStatsStore instance
"""

from agricare.metrics.store import (
    OUTCOME_SUCCESS,
    OUTCOME_CONFIGURATION_ERROR,
    OUTCOME_NON_RETRYABLE,
    OUTCOME_EXHAUSTED,
    VALID_OUTCOMES,
    DispatchStatsStore,
    DispatchMetric,
    AggregatedMetrics,
    get_stats_store,
)


__all__ = [
    # Outcomes
    "OUTCOME_SUCCESS",
    "OUTCOME_CONFIGURATION_ERROR",
    "OUTCOME_NON_RETRYABLE",
    "OUTCOME_EXHAUSTED",
    "VALID_OUTCOMES",
    # Storage
    "DispatchStatsStore",
    "DispatchMetric",
    "AggregatedMetrics",
    "get_stats_store",
]
