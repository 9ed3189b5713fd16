"""Production scaffolding for Flask services: metrics, health and graceful shutdown."""

from servicekit.config import Settings
from servicekit.core.middleware import Middleware, MiddlewareChain
from servicekit.core.runner import configure_logging, run
from servicekit.core.service import Service, ServiceState
from servicekit.health.registry import HealthProbe, HealthRegistry, HealthStatus
from servicekit.metrics.registry import MetricDescriptor, MetricKind, MetricsRegistry

__all__ = [
    "HealthProbe",
    "HealthRegistry",
    "HealthStatus",
    "MetricDescriptor",
    "MetricKind",
    "MetricsRegistry",
    "Middleware",
    "MiddlewareChain",
    "Service",
    "ServiceState",
    "Settings",
    "configure_logging",
    "run",
]
