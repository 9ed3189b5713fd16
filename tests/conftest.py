"""Pytest fixtures for servicekit tests.

Unit tests use Flask test clients against the primary and operational apps.
Lifecycle tests bind real waitress listeners on 127.0.0.1 port 0 and talk to
them with ``requests``.
"""

from collections.abc import Generator

import pytest
from flask.testing import FlaskClient

from servicekit.config import Settings
from servicekit.core.service import Service, ServiceState
from servicekit.exceptions import ServiceKitError
from servicekit.health.registry import HealthRegistry
from servicekit.metrics.registry import MetricsRegistry

SERVICE_NAME = "test-service"


def _build_test_settings() -> Settings:
    """Construct base Settings object for tests."""
    return Settings(
        addr="127.0.0.1:0",
        read_timeout=5.0,
        write_timeout=5.0,
        idle_timeout=5.0,
        waitress_threads=4,
        metrics_addr="127.0.0.1:0",
        metrics_path="/metrics",
        health_path="/health",
        readiness_path="/ready",
        liveness_path="/live",
        health_check_timeout=1.0,
        shutdown_timeout=5.0,
        version="1.2.3",
        log_level="DEBUG",
    )


@pytest.fixture
def test_settings() -> Settings:
    return _build_test_settings()


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry(SERVICE_NAME)


@pytest.fixture
def health() -> HealthRegistry:
    return HealthRegistry(SERVICE_NAME, version="1.2.3", default_timeout=1.0)


@pytest.fixture
def service(test_settings: Settings) -> Generator[Service, None, None]:
    """Service that is not started; stopped at teardown if a test started it."""
    service = Service(SERVICE_NAME, test_settings)

    yield service

    if service.state in (ServiceState.STARTING, ServiceState.RUNNING):
        try:
            service.stop(timeout=10)
        except ServiceKitError:
            pass


@pytest.fixture
def client(service: Service) -> FlaskClient:
    return service.test_client()


@pytest.fixture
def operational_client(service: Service) -> FlaskClient:
    return service.operational_test_client()
