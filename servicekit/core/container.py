"""Dependency injection container for service infrastructure."""

from dependency_injector import containers, providers

from servicekit.config import Settings
from servicekit.core.shutdown import ShutdownSequencer
from servicekit.health.registry import HealthRegistry
from servicekit.metrics.registry import MetricsRegistry


class ServiceContainer(containers.DeclarativeContainer):
    """Container with the shared infrastructure of one service.

    ``config`` and ``service_name`` must be overridden before use. Tests and
    embedding applications may override any provider to inject their own
    registries:

        container = ServiceContainer()
        container.metrics_registry.override(providers.Object(my_registry))
        service = Service("orders", settings, container=container)
    """

    config = providers.Dependency(instance_of=Settings)
    service_name = providers.Dependency(instance_of=str)

    metrics_registry = providers.Singleton(
        MetricsRegistry,
        service_name=service_name,
    )

    health_registry = providers.Singleton(
        HealthRegistry,
        service_name=service_name,
        version=config.provided.version,
        default_timeout=config.provided.health_check_timeout,
    )

    shutdown_sequencer = providers.Singleton(ShutdownSequencer)
