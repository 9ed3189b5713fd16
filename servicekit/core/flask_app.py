"""Flask application class shared by the primary and operational listeners."""

from typing import TYPE_CHECKING

from flask import Flask

if TYPE_CHECKING:
    from servicekit.core.container import ServiceContainer


class App(Flask):
    """Flask app that carries the service container.

    ``Service`` builds two of these, one for application routes and one for
    metrics and health, and points both at the same container so views and
    extensions can reach the registries through ``current_app.container``.
    """

    container: "ServiceContainer"
