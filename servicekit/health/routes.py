"""Health check endpoints for Kubernetes probes."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from flask import Blueprint, Response, jsonify

from servicekit.health.registry import HealthRegistry, HealthStatus

logger = logging.getLogger(__name__)


def create_health_blueprint(
    health: HealthRegistry,
    health_path: str = "/health",
    readiness_path: str = "/ready",
    liveness_path: str = "/live",
    timeout: float = 5.0,
    shutting_down: Callable[[], bool] | None = None,
) -> Blueprint:
    """Build the blueprint serving aggregate health, readiness and liveness.

    Args:
        health: Registry whose probes back the endpoints.
        health_path: Path of the aggregate JSON health endpoint.
        readiness_path: Path of the readiness probe.
        liveness_path: Path of the liveness probe.
        timeout: Overall evaluation deadline for health and readiness.
        shutting_down: When it returns True, readiness fails without
            evaluating probes so traffic drains away before listeners close.
    """
    health_bp = Blueprint("health", __name__)

    @health_bp.route(health_path, methods=["GET"])
    def get_health() -> Any:
        """Aggregate health with per-probe status; 200 when healthy, 503 otherwise."""
        try:
            snapshot = health.evaluate(timeout)
        except Exception as e:
            logger.error(f"Health evaluation failed: {e}", exc_info=True)
            body = {
                "status": HealthStatus.UNAVAILABLE.value,
                "timestamp": datetime.now(UTC).isoformat(),
                "component": {"name": health.service_name, "version": health.version},
                "failures": {"health": str(e)},
            }
            return jsonify(body), 503

        return jsonify(snapshot.to_dict()), 200 if snapshot.healthy else 503

    @health_bp.route(readiness_path, methods=["GET"])
    def get_readiness() -> Any:
        if shutting_down is not None and shutting_down():
            return _plain("Not Ready", 503)
        if health.is_ready(timeout):
            return _plain("Ready", 200)
        return _plain("Not Ready", 503)

    @health_bp.route(liveness_path, methods=["GET"])
    def get_liveness() -> Any:
        if health.is_live():
            return _plain("Alive", 200)
        return _plain("Not Alive", 503)

    return health_bp


def _plain(body: str, status: int) -> Response:
    return Response(body, status=status, content_type="text/plain; charset=utf-8")
