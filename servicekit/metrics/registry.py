"""Prometheus metrics registry owned by a single service instance.

Every service gets its own ``CollectorRegistry`` rather than the process-wide
default one, so two services (or two tests) never see each other's series.
Metric names are prefixed with the service name:

    metrics = MetricsRegistry("orders")
    metrics.register_counter(MetricDescriptor("created_total", "Orders created", ("region",)))
    metrics.inc_counter("created_total", "eu")   # orders_created_total{region="eu"}

Registration is rare and serialized by a lock. Observations look up the
published handle map without locking and rely on the per-metric locks inside
``prometheus_client``.
"""

import logging
import re
import threading
import time
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Summary,
    generate_latest,
)
from prometheus_client.metrics_core import Metric

from servicekit.exceptions import (
    InvalidMetricDescriptorError,
    InvalidMetricValueError,
    LabelMismatchError,
    MetricAlreadyExistsError,
    MetricNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_BUCKETS: tuple[float, ...] = (
    0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)
DEFAULT_OBJECTIVES: tuple[tuple[float, float], ...] = ((0.5, 0.05), (0.9, 0.01), (0.99, 0.001))

HTTP_LABELS = ("method", "route", "status")


class MetricKind(str, Enum):
    """Kinds of metric the registry can hold."""

    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"
    SUMMARY = "summary"


@dataclass(frozen=True)
class MetricDescriptor:
    """Description of a metric to register.

    ``kind`` is filled in by the registry on registration; the stored copy also
    carries the prefixed name. ``buckets`` only applies to histograms and
    ``objectives`` (quantile -> allowed error) only to summaries.
    """

    name: str
    help: str = ""
    labels: tuple[str, ...] = ()
    kind: MetricKind | None = None
    buckets: tuple[float, ...] | None = None
    objectives: tuple[tuple[float, float], ...] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "labels", tuple(self.labels))
        if self.buckets is not None:
            object.__setattr__(self, "buckets", tuple(float(b) for b in self.buckets))
        if self.objectives is not None:
            pairs = self.objectives.items() if isinstance(self.objectives, Mapping) else self.objectives
            object.__setattr__(
                self, "objectives", tuple(sorted((float(q), float(e)) for q, e in pairs))
            )


@dataclass(frozen=True)
class _RegisteredMetric:
    descriptor: MetricDescriptor
    handle: Any = field(compare=False)


def normalize_prefix(service_name: str) -> str:
    """Turn a service name into a valid Prometheus metric name prefix."""
    prefix = re.sub(r"[^a-zA-Z0-9_:]", "_", service_name)
    if not prefix or prefix[0].isdigit():
        prefix = f"_{prefix}"
    return prefix


class MetricsRegistry:
    """Thread-safe registry of counters, gauges, histograms and summaries."""

    def __init__(self, service_name: str, registry: CollectorRegistry | None = None):
        """Initialize the registry and its built-in HTTP metrics.

        Args:
            service_name: Service name used as metric prefix.
            registry: Collector registry to register into; a fresh one is
                created when omitted.
        """
        self.service_name = service_name
        self.prefix = normalize_prefix(service_name)
        self.reserved_prefix = f"{self.prefix}_http_"

        self._registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.Lock()
        self._metrics: dict[str, _RegisteredMetric] = {}

        self.http_requests_total = Counter(
            f"{self.reserved_prefix}requests_total",
            "Total number of HTTP requests",
            HTTP_LABELS,
            registry=self._registry,
        )
        self.http_request_duration_seconds = Histogram(
            f"{self.reserved_prefix}request_duration_seconds",
            "HTTP request duration in seconds",
            HTTP_LABELS,
            buckets=DEFAULT_BUCKETS,
            registry=self._registry,
        )
        self.http_requests_in_flight = Gauge(
            f"{self.reserved_prefix}requests_in_flight",
            "Number of HTTP requests currently being processed",
            registry=self._registry,
        )

        logger.debug(f"MetricsRegistry initialized with prefix {self.prefix}")

    @property
    def collector_registry(self) -> CollectorRegistry:
        """The underlying Prometheus registry, for custom integrations."""
        return self._registry

    @property
    def content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def prefixed(self, name: str) -> str:
        """Return ``name`` with the service prefix, adding it only once."""
        if name.startswith(f"{self.prefix}_"):
            return name
        return f"{self.prefix}_{name}"

    # ── Registration ───────────────────────────────────────────────────

    def register_counter(self, descriptor: MetricDescriptor) -> None:
        self._register(descriptor, MetricKind.COUNTER)

    def register_gauge(self, descriptor: MetricDescriptor) -> None:
        self._register(descriptor, MetricKind.GAUGE)

    def register_histogram(self, descriptor: MetricDescriptor) -> None:
        self._register(descriptor, MetricKind.HISTOGRAM)

    def register_summary(self, descriptor: MetricDescriptor) -> None:
        self._register(descriptor, MetricKind.SUMMARY)

    def _register(self, descriptor: MetricDescriptor, kind: MetricKind) -> None:
        name = self.prefixed(descriptor.name)
        stored = replace(descriptor, name=name, kind=kind)

        if not descriptor.name:
            raise InvalidMetricDescriptorError(name, "name must not be empty")
        if name.startswith(self.reserved_prefix):
            raise InvalidMetricDescriptorError(
                name, f"names starting with {self.reserved_prefix} are reserved"
            )

        if kind == MetricKind.HISTOGRAM and stored.buckets is None:
            stored = replace(stored, buckets=DEFAULT_BUCKETS)
        if kind == MetricKind.SUMMARY:
            if stored.objectives is None:
                stored = replace(stored, objectives=DEFAULT_OBJECTIVES)
            self._validate_objectives(stored)

        with self._lock:
            if name in self._metrics:
                raise MetricAlreadyExistsError(name)

            try:
                handle = self._create_handle(stored)
            except ValueError as e:
                if "Duplicated timeseries" in str(e):
                    raise MetricAlreadyExistsError(name) from e
                raise InvalidMetricDescriptorError(name, str(e)) from e

            metrics = dict(self._metrics)
            metrics[name] = _RegisteredMetric(stored, handle)
            self._metrics = metrics

        logger.debug(f"Registered {kind.value} {name}")

    def _create_handle(self, descriptor: MetricDescriptor) -> Any:
        common: dict[str, Any] = {
            "name": descriptor.name,
            "documentation": descriptor.help,
            "labelnames": descriptor.labels,
            "registry": self._registry,
        }
        match descriptor.kind:
            case MetricKind.COUNTER:
                return Counter(**common)
            case MetricKind.GAUGE:
                return Gauge(**common)
            case MetricKind.HISTOGRAM:
                return Histogram(buckets=descriptor.buckets, **common)
            case MetricKind.SUMMARY:
                return Summary(**common)
        raise InvalidMetricDescriptorError(descriptor.name, f"unknown kind {descriptor.kind}")

    @staticmethod
    def _validate_objectives(descriptor: MetricDescriptor) -> None:
        for quantile, error in descriptor.objectives or ():
            if not 0 < quantile < 1:
                raise InvalidMetricDescriptorError(
                    descriptor.name, f"quantile {quantile} must be between 0 and 1"
                )
            if not 0 <= error < 1:
                raise InvalidMetricDescriptorError(
                    descriptor.name, f"error {error} for quantile {quantile} must be in [0, 1)"
                )

    # ── Introspection ──────────────────────────────────────────────────

    def descriptor(self, name: str) -> MetricDescriptor | None:
        metric = self._metrics.get(self.prefixed(name))
        return metric.descriptor if metric else None

    def names(self) -> list[str]:
        return sorted(self._metrics)

    def sample_value(self, name: str, labels: dict[str, str] | None = None) -> float | None:
        """Read one exposed sample, e.g. ``sample_value("jobs_total", {"queue": "a"})``."""
        return self._registry.get_sample_value(self.prefixed(name), labels or {})

    # ── Observation ────────────────────────────────────────────────────

    def inc_counter(self, name: str, *labels: str) -> None:
        self.add_counter(name, 1.0, *labels)

    def add_counter(self, name: str, value: float, *labels: str) -> None:
        series = self._series(MetricKind.COUNTER, name, labels)
        try:
            series.inc(value)
        except ValueError as e:
            raise InvalidMetricValueError(self.prefixed(name), str(e)) from e

    def set_gauge(self, name: str, value: float, *labels: str) -> None:
        self._series(MetricKind.GAUGE, name, labels).set(value)

    def inc_gauge(self, name: str, *labels: str) -> None:
        self._series(MetricKind.GAUGE, name, labels).inc()

    def dec_gauge(self, name: str, *labels: str) -> None:
        self._series(MetricKind.GAUGE, name, labels).dec()

    def add_gauge(self, name: str, value: float, *labels: str) -> None:
        self._series(MetricKind.GAUGE, name, labels).inc(value)

    def observe_histogram(self, name: str, value: float, *labels: str) -> None:
        self._series(MetricKind.HISTOGRAM, name, labels).observe(value)

    def observe_summary(self, name: str, value: float, *labels: str) -> None:
        self._series(MetricKind.SUMMARY, name, labels).observe(value)

    def _series(self, kind: MetricKind, name: str, labels: tuple[str, ...]) -> Any:
        prefixed = self.prefixed(name)
        metric = self._metrics.get(prefixed)
        if metric is None or metric.descriptor.kind != kind:
            raise MetricNotFoundError(kind.value, prefixed)

        expected = len(metric.descriptor.labels)
        if len(labels) != expected:
            raise LabelMismatchError(prefixed, expected, len(labels))

        if not expected:
            return metric.handle
        return metric.handle.labels(*(str(v) for v in labels))

    # ── Built-in HTTP metrics ──────────────────────────────────────────

    @contextmanager
    def track_in_flight(self) -> Iterator[None]:
        """Count a request as in flight for the duration of the block."""
        self.http_requests_in_flight.inc()
        try:
            yield
        finally:
            self.http_requests_in_flight.dec()

    def record_request(self, method: str, route: str, status_code: int, duration: float) -> None:
        status = f"{status_code // 100}xx"
        self.http_requests_total.labels(method, route, status).inc()
        self.http_request_duration_seconds.labels(method, route, status).observe(duration)

    # ── Export ─────────────────────────────────────────────────────────

    def export(self) -> bytes:
        """Render every series in the Prometheus text exposition format."""
        start = time.perf_counter()
        output = generate_latest(self._registry)
        logger.debug(f"Exported metrics in {time.perf_counter() - start:.4f}s")
        return output

    def snapshot(self) -> list[Metric]:
        """Collect all metric families currently held by the registry."""
        return list(self._registry.collect())
