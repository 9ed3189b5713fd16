"""Prometheus metrics module."""

from servicekit.metrics.registry import MetricDescriptor, MetricKind, MetricsRegistry
from servicekit.metrics.routes import create_metrics_blueprint

__all__ = [
    "MetricDescriptor",
    "MetricKind",
    "MetricsRegistry",
    "create_metrics_blueprint",
]
