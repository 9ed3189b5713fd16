"""Health checking module."""

from servicekit.health.registry import (
    HealthProbe,
    HealthRegistry,
    HealthSnapshot,
    HealthStatus,
    ProbeResult,
    ProbeStatus,
)
from servicekit.health.routes import create_health_blueprint

__all__ = [
    "HealthProbe",
    "HealthRegistry",
    "HealthSnapshot",
    "HealthStatus",
    "ProbeResult",
    "ProbeStatus",
    "create_health_blueprint",
]
