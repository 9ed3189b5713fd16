"""Request-scoped accessors for the logger, metrics and health registries.

Middleware sets these on ``flask.g`` when a request enters the chain; view
code reads them back. Outside a request (or when the corresponding middleware
is not installed) the getters fall back to a safe default instead of failing.
"""

import logging
from typing import TYPE_CHECKING

from flask import g, has_request_context

from servicekit.exceptions import MetricsUnavailableError

if TYPE_CHECKING:
    from servicekit.health.registry import HealthRegistry
    from servicekit.metrics.registry import MetricsRegistry

_DEFAULT_LOGGER = logging.getLogger("servicekit.request")


def set_logger(request_logger: logging.Logger | logging.LoggerAdapter) -> None:
    g.servicekit_logger = request_logger


def get_logger() -> logging.Logger | logging.LoggerAdapter:
    """Return the request logger, or the default logger outside a request."""
    if not has_request_context():
        return _DEFAULT_LOGGER
    return getattr(g, "servicekit_logger", _DEFAULT_LOGGER)


def get_request_id() -> str | None:
    if not has_request_context():
        return None
    return getattr(g, "request_id", None)


def set_metrics(metrics: "MetricsRegistry") -> None:
    g.servicekit_metrics = metrics


def get_metrics() -> "MetricsRegistry | None":
    if not has_request_context():
        return None
    return getattr(g, "servicekit_metrics", None)


def set_health_registry(health: "HealthRegistry") -> None:
    g.servicekit_health = health


def get_health_registry() -> "HealthRegistry | None":
    if not has_request_context():
        return None
    return getattr(g, "servicekit_health", None)


def _require_metrics() -> "MetricsRegistry":
    metrics = get_metrics()
    if metrics is None:
        raise MetricsUnavailableError()
    return metrics


# Helpers for metric manipulation from view functions


def inc_counter(name: str, *labels: str) -> None:
    _require_metrics().inc_counter(name, *labels)


def add_counter(name: str, value: float, *labels: str) -> None:
    _require_metrics().add_counter(name, value, *labels)


def set_gauge(name: str, value: float, *labels: str) -> None:
    _require_metrics().set_gauge(name, value, *labels)


def inc_gauge(name: str, *labels: str) -> None:
    _require_metrics().inc_gauge(name, *labels)


def dec_gauge(name: str, *labels: str) -> None:
    _require_metrics().dec_gauge(name, *labels)


def add_gauge(name: str, value: float, *labels: str) -> None:
    _require_metrics().add_gauge(name, value, *labels)


def observe_histogram(name: str, value: float, *labels: str) -> None:
    _require_metrics().observe_histogram(name, value, *labels)


def observe_summary(name: str, value: float, *labels: str) -> None:
    _require_metrics().observe_summary(name, value, *labels)
