"""Tests for the process runner."""

import socket
import threading

from servicekit.config import Settings
from servicekit.core.runner import run
from servicekit.core.service import Service, ServiceState


class TestRun:
    """Tests for run() exit codes."""

    def test_clean_shutdown_returns_zero(self, service: Service):
        def on_state(state: ServiceState) -> None:
            if state == ServiceState.RUNNING:
                threading.Timer(0.2, service.stop).start()

        service.register_lifecycle_notification(on_state)

        assert run(service) == 0
        assert service.state == ServiceState.STOPPED

    def test_startup_failure_returns_one(self, test_settings: Settings):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen()
            port = blocker.getsockname()[1]

            service = Service("busy", test_settings.model_copy(update={"addr": f"127.0.0.1:{port}"}))

            assert run(service) == 1

        assert service.state == ServiceState.STOPPED
