"""Reconstruction of tests and steps from raw instrumentation events."""

from rewind.aggregation.steps import (
    AggregationError,
    MismatchedStepError,
    UnknownTestError,
    aggregate,
)

__all__ = [
    "AggregationError",
    "MismatchedStepError",
    "UnknownTestError",
    "aggregate",
]
