"""Telemetry integrations for rewind."""

from rewind.telemetry.sentry_integration import (
    init_sentry,
    is_sentry_enabled,
    record_metric_count,
    record_metric_distribution,
    start_span,
)

__all__ = [
    "init_sentry",
    "is_sentry_enabled",
    "record_metric_count",
    "record_metric_distribution",
    "start_span",
]
