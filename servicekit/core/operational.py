"""Flask application served on the operational listener."""

from collections.abc import Callable

from servicekit.config import Settings
from servicekit.core.flask_app import App
from servicekit.health.registry import HealthRegistry
from servicekit.health.routes import create_health_blueprint
from servicekit.metrics.registry import MetricsRegistry
from servicekit.metrics.routes import create_metrics_blueprint


def create_operational_app(
    metrics: MetricsRegistry,
    health: HealthRegistry,
    settings: Settings,
    shutting_down: Callable[[], bool] | None = None,
) -> App:
    """Create the app exposing metrics, health, readiness and liveness.

    Args:
        metrics: Registry exported on the metrics path.
        health: Registry evaluated by the health and readiness paths.
        settings: Source of the endpoint paths and health deadline.
        shutting_down: Reports readiness as lost once it returns True.
    """
    app = App(__name__)

    app.register_blueprint(create_metrics_blueprint(metrics, settings.metrics_path))
    app.register_blueprint(
        create_health_blueprint(
            health,
            health_path=settings.health_path,
            readiness_path=settings.readiness_path,
            liveness_path=settings.liveness_path,
            timeout=settings.health_check_timeout,
            shutting_down=shutting_down,
        )
    )

    return app
