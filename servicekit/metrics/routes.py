"""Metrics endpoint for Prometheus scraping."""

from typing import Any

from flask import Blueprint, Response

from servicekit.metrics.registry import MetricsRegistry


def create_metrics_blueprint(metrics: MetricsRegistry, path: str = "/metrics") -> Blueprint:
    """Build the blueprint serving ``metrics`` at ``path``."""
    metrics_bp = Blueprint("metrics", __name__)

    @metrics_bp.route(path, methods=["GET"])
    def get_metrics() -> Any:
        """Return metrics in Prometheus text format.

        Returns:
            Response with metrics data in Prometheus exposition format
        """
        return Response(metrics.export(), content_type=metrics.content_type)

    return metrics_bp
