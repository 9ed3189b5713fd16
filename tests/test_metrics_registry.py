"""Tests for the metrics registry."""

import pytest
from prometheus_client import CollectorRegistry

from servicekit.exceptions import (
    InvalidMetricDescriptorError,
    InvalidMetricValueError,
    LabelMismatchError,
    MetricAlreadyExistsError,
    MetricNotFoundError,
)
from servicekit.metrics.registry import (
    DEFAULT_OBJECTIVES,
    MetricDescriptor,
    MetricKind,
    MetricsRegistry,
    normalize_prefix,
)
from tests.testing_utils import run_concurrently


class TestPrefixing:
    """Tests for metric name prefixing."""

    def test_service_name_is_normalized(self):
        assert normalize_prefix("test-service") == "test_service"
        assert normalize_prefix("orders.v2") == "orders_v2"
        assert normalize_prefix("9lives") == "_9lives"

    def test_prefixing_is_idempotent(self, metrics: MetricsRegistry):
        assert metrics.prefixed("jobs") == "test_service_jobs"
        assert metrics.prefixed("test_service_jobs") == "test_service_jobs"

    def test_registered_descriptor_carries_prefixed_name_and_kind(self, metrics: MetricsRegistry):
        metrics.register_gauge(MetricDescriptor(name="queue_depth", help="Depth"))

        descriptor = metrics.descriptor("queue_depth")

        assert descriptor is not None
        assert descriptor.name == "test_service_queue_depth"
        assert descriptor.kind == MetricKind.GAUGE


class TestRegistration:
    """Tests for registering metrics."""

    def test_duplicate_name_same_kind_rejected(self, metrics: MetricsRegistry):
        metrics.register_counter(MetricDescriptor(name="jobs_total"))

        with pytest.raises(MetricAlreadyExistsError):
            metrics.register_counter(MetricDescriptor(name="jobs_total"))

        metrics.inc_counter("jobs_total")
        assert metrics.sample_value("jobs_total") == 1.0

    def test_duplicate_name_across_kinds_rejected(self, metrics: MetricsRegistry):
        """Test uniqueness holds across counter, gauge, histogram and summary."""
        metrics.register_counter(MetricDescriptor(name="work"))

        with pytest.raises(MetricAlreadyExistsError):
            metrics.register_gauge(MetricDescriptor(name="work"))
        with pytest.raises(MetricAlreadyExistsError):
            metrics.register_histogram(MetricDescriptor(name="test_service_work"))

    def test_prefixed_and_unprefixed_names_collide(self, metrics: MetricsRegistry):
        metrics.register_gauge(MetricDescriptor(name="temperature"))

        with pytest.raises(MetricAlreadyExistsError):
            metrics.register_gauge(MetricDescriptor(name="test_service_temperature"))

    def test_reserved_http_prefix_rejected(self, metrics: MetricsRegistry):
        with pytest.raises(InvalidMetricDescriptorError):
            metrics.register_counter(MetricDescriptor(name="http_requests_total"))

    def test_empty_name_rejected(self, metrics: MetricsRegistry):
        with pytest.raises(InvalidMetricDescriptorError):
            metrics.register_counter(MetricDescriptor(name=""))

    def test_invalid_label_name_rejected(self, metrics: MetricsRegistry):
        with pytest.raises(InvalidMetricDescriptorError):
            metrics.register_counter(MetricDescriptor(name="bad", labels=("not-valid",)))

    def test_histogram_gets_default_buckets(self, metrics: MetricsRegistry):
        metrics.register_histogram(MetricDescriptor(name="latency_seconds"))

        descriptor = metrics.descriptor("latency_seconds")

        assert descriptor is not None
        assert descriptor.buckets

    def test_summary_gets_default_objectives(self, metrics: MetricsRegistry):
        metrics.register_summary(MetricDescriptor(name="payload_bytes"))

        descriptor = metrics.descriptor("payload_bytes")

        assert descriptor is not None
        assert dict(descriptor.objectives or ()) == dict(DEFAULT_OBJECTIVES)

    @pytest.mark.parametrize("objectives", [{1.5: 0.01}, {0.5: 1.0}, {0.0: 0.1}])
    def test_invalid_summary_objectives_rejected(
        self, metrics: MetricsRegistry, objectives: dict[float, float]
    ):
        with pytest.raises(InvalidMetricDescriptorError):
            metrics.register_summary(MetricDescriptor(name="sizes", objectives=objectives))

    def test_failed_registration_leaves_name_free(self, metrics: MetricsRegistry):
        with pytest.raises(InvalidMetricDescriptorError):
            metrics.register_summary(MetricDescriptor(name="sizes", objectives={2.0: 0.1}))

        metrics.register_summary(MetricDescriptor(name="sizes"))

        assert "test_service_sizes" in metrics.names()

    def test_separate_registries_do_not_collide(self):
        """Test two services in one process each own their collectors."""
        first = MetricsRegistry("svc")
        second = MetricsRegistry("svc")

        first.register_counter(MetricDescriptor(name="jobs"))
        second.register_counter(MetricDescriptor(name="jobs"))

        first.inc_counter("jobs")

        assert first.sample_value("jobs_total") == 1.0
        assert second.sample_value("jobs_total") == 0.0

    def test_explicit_collector_registry_is_used(self):
        registry = CollectorRegistry()

        metrics = MetricsRegistry("svc", registry=registry)

        assert metrics.collector_registry is registry


class TestObservation:
    """Tests for updating registered metrics."""

    def test_counter_with_labels(self, metrics: MetricsRegistry):
        metrics.register_counter(MetricDescriptor(name="jobs_total", labels=("queue",)))

        metrics.inc_counter("jobs_total", "default")
        metrics.add_counter("jobs_total", 2, "default")
        metrics.inc_counter("jobs_total", "priority")

        assert metrics.sample_value("jobs_total", {"queue": "default"}) == 3.0
        assert metrics.sample_value("jobs_total", {"queue": "priority"}) == 1.0

    def test_gauge_operations(self, metrics: MetricsRegistry):
        metrics.register_gauge(MetricDescriptor(name="connections"))

        metrics.set_gauge("connections", 10)
        metrics.inc_gauge("connections")
        metrics.dec_gauge("connections")
        metrics.dec_gauge("connections")
        metrics.add_gauge("connections", -4)

        assert metrics.sample_value("connections") == 5.0

    def test_histogram_observation(self, metrics: MetricsRegistry):
        metrics.register_histogram(
            MetricDescriptor(name="latency_seconds", buckets=(0.1, 1.0))
        )

        metrics.observe_histogram("latency_seconds", 0.05)
        metrics.observe_histogram("latency_seconds", 0.5)

        assert metrics.sample_value("latency_seconds_count") == 2.0
        assert metrics.sample_value("latency_seconds_bucket", {"le": "0.1"}) == 1.0

    def test_summary_observation(self, metrics: MetricsRegistry):
        metrics.register_summary(MetricDescriptor(name="payload_bytes"))

        metrics.observe_summary("payload_bytes", 100)
        metrics.observe_summary("payload_bytes", 300)

        assert metrics.sample_value("payload_bytes_count") == 2.0
        assert metrics.sample_value("payload_bytes_sum") == 400.0

    def test_unknown_metric_raises(self, metrics: MetricsRegistry):
        with pytest.raises(MetricNotFoundError):
            metrics.inc_counter("never_registered")

    def test_wrong_kind_raises(self, metrics: MetricsRegistry):
        metrics.register_gauge(MetricDescriptor(name="connections"))

        with pytest.raises(MetricNotFoundError):
            metrics.inc_counter("connections")

    def test_label_arity_mismatch_is_rejected(self, metrics: MetricsRegistry):
        """Test missing label values are rejected instead of padded."""
        metrics.register_counter(MetricDescriptor(name="jobs", labels=("queue", "result")))

        with pytest.raises(LabelMismatchError) as exc_info:
            metrics.inc_counter("jobs", "default")

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 1

    def test_negative_counter_increment_rejected(self, metrics: MetricsRegistry):
        metrics.register_counter(MetricDescriptor(name="jobs"))

        with pytest.raises(InvalidMetricValueError):
            metrics.add_counter("jobs", -1)

    def test_concurrent_increments_are_not_lost(self, metrics: MetricsRegistry):
        metrics.register_counter(MetricDescriptor(name="hits", labels=("worker",)))
        threads, per_thread = 16, 500

        def increment(index: int) -> None:
            for _ in range(per_thread):
                metrics.inc_counter("hits", "shared")

        errors = run_concurrently(threads, increment)

        assert errors == []
        assert metrics.sample_value("hits_total", {"worker": "shared"}) == threads * per_thread


class TestHttpMetrics:
    """Tests for the built-in request metrics."""

    def test_builtin_series_exist(self, metrics: MetricsRegistry):
        output = metrics.export().decode()

        assert "test_service_http_requests_total" in output
        assert "test_service_http_request_duration_seconds" in output
        assert "test_service_http_requests_in_flight" in output

    def test_record_request_uses_status_class(self, metrics: MetricsRegistry):
        metrics.record_request("GET", "/hello/<name>", 204, 0.01)
        metrics.record_request("GET", "/hello/<name>", 200, 0.02)

        labels = {"method": "GET", "route": "/hello/<name>", "status": "2xx"}
        assert metrics.sample_value("http_requests_total", labels) == 2.0
        assert metrics.sample_value("http_request_duration_seconds_count", labels) == 2.0

    def test_track_in_flight_releases_on_error(self, metrics: MetricsRegistry):
        with pytest.raises(RuntimeError):
            with metrics.track_in_flight():
                assert metrics.sample_value("http_requests_in_flight") == 1.0
                raise RuntimeError("boom")

        assert metrics.sample_value("http_requests_in_flight") == 0.0


class TestExport:
    """Tests for export and snapshot."""

    def test_export_contains_registered_metrics(self, metrics: MetricsRegistry):
        metrics.register_counter(MetricDescriptor(name="jobs", help="Jobs processed"))
        metrics.inc_counter("jobs")

        output = metrics.export().decode()

        assert "# HELP test_service_jobs_total Jobs processed" in output
        assert "test_service_jobs_total 1.0" in output

    def test_content_type_is_prometheus_text(self, metrics: MetricsRegistry):
        assert metrics.content_type.startswith("text/plain")

    def test_snapshot_lists_families(self, metrics: MetricsRegistry):
        metrics.register_gauge(MetricDescriptor(name="connections"))

        names = {family.name for family in metrics.snapshot()}

        assert "test_service_connections" in names
        assert "test_service_http_requests" in names
