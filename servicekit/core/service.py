"""Service lifecycle: two listeners, one coordinated graceful shutdown.

A service owns a primary listener (application routes wrapped by the
middleware chain) and an operational listener (metrics and health). Both are
started together by ``start()``, which blocks until SIGINT/SIGTERM, ``stop()``
or a listener failure, then runs the shutdown hooks and stops both listeners
against one shared deadline.

    service = Service("greeter")

    @service.route("/hello/{name}")
    def hello(name: str) -> str:
        return f"Hello, {name}!"

    service.start()
"""

import logging
import re
import signal
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from servicekit.config import Settings
from servicekit.core.container import ServiceContainer
from servicekit.core.flask_app import App
from servicekit.core.listener import Listener
from servicekit.core.middleware import Middleware, View, default_chain
from servicekit.core.operational import create_operational_app
from servicekit.core.shutdown import ShutdownHook
from servicekit.exceptions import (
    LifecycleStateError,
    ListenerError,
    ServiceKitError,
    ShutdownError,
    ShutdownTimeoutError,
    StartupError,
)
from servicekit.health.registry import HealthProbe, ProbeCheck
from servicekit.metrics.registry import MetricDescriptor

logger = logging.getLogger(__name__)

_OPERATIONAL_THREADS = 4
_OPERATIONAL_CHANNEL_TIMEOUT = 300.0


class ServiceState(str, Enum):
    """Lifecycle states; transitions only move forward."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting-down"
    STOPPED = "stopped"


_TRANSITIONS: dict[ServiceState, set[ServiceState]] = {
    ServiceState.IDLE: {ServiceState.STARTING, ServiceState.SHUTTING_DOWN},
    ServiceState.STARTING: {ServiceState.RUNNING, ServiceState.STOPPED},
    ServiceState.RUNNING: {ServiceState.SHUTTING_DOWN},
    ServiceState.SHUTTING_DOWN: {ServiceState.STOPPED},
    ServiceState.STOPPED: set(),
}


def to_flask_rule(rule: str) -> str:
    """Accept ``{name}`` and ``{name...}`` placeholders alongside Flask syntax."""
    rule = re.sub(r"\{(\w+)\.\.\.\}", r"<path:\1>", rule)
    return re.sub(r"\{(\w+)\}", r"<\1>", rule)


class Service:
    """A request-handling service with metrics, health and graceful shutdown."""

    def __init__(
        self,
        name: str,
        settings: Settings | None = None,
        container: ServiceContainer | None = None,
    ):
        """Initialize the service.

        Args:
            name: Service name, also the metric prefix and health component.
            settings: Service settings, loaded from the environment if omitted.
            container: Container providing registries and the shutdown
                sequencer; a fresh one is created if omitted.
        """
        self.name = name
        self.settings = settings if settings is not None else Settings.load()

        self.container = container if container is not None else ServiceContainer()
        self.container.config.override(self.settings)
        self.container.service_name.override(name)

        self.metrics = self.container.metrics_registry()
        self.health = self.container.health_registry()
        self._shutdown_sequencer = self.container.shutdown_sequencer()

        self.request_logger = logging.getLogger(f"servicekit.request.{name}")
        self._chain = default_chain(self.metrics, self.request_logger, self.health)

        self.app = App(__name__)
        self.app.container = self.container
        self.operational_app = create_operational_app(
            self.metrics, self.health, self.settings, shutting_down=self.is_shutting_down
        )
        self.operational_app.container = self.container

        self._state = ServiceState.IDLE
        self._state_lock = threading.RLock()
        self._notifications: list[Callable[[ServiceState], None]] = []

        self._primary: Listener | None = None
        self._operational: Listener | None = None
        self._trigger = threading.Event()
        self._trigger_reason: str | None = None
        self._failure: ListenerError | None = None

        self._started = threading.Event()
        self._background: threading.Thread | None = None
        self._background_error: BaseException | None = None

        logger.info(f"Service {name} initialized")

    # ── State ──────────────────────────────────────────────────────────

    @property
    def state(self) -> ServiceState:
        with self._state_lock:
            return self._state

    def is_shutting_down(self) -> bool:
        return self.state in (ServiceState.SHUTTING_DOWN, ServiceState.STOPPED)

    def register_lifecycle_notification(self, callback: Callable[[ServiceState], None]) -> None:
        """Register a callback invoked with every state the service enters."""
        with self._state_lock:
            self._notifications.append(callback)

    def _transition(self, new_state: ServiceState) -> None:
        with self._state_lock:
            if new_state not in _TRANSITIONS[self._state]:
                raise LifecycleStateError(f"move to {new_state.value}", self._state.value)
            self._state = new_state
            callbacks = list(self._notifications)

        logger.debug(f"Service {self.name} is now {new_state.value}")
        for callback in callbacks:
            try:
                callback(new_state)
            except Exception as e:
                logger.error(
                    f"Error in lifecycle notification "
                    f"{getattr(callback, '__name__', repr(callback))}: {e}"
                )

    def _require_idle(self, operation: str) -> None:
        state = self.state
        if state != ServiceState.IDLE:
            raise LifecycleStateError(operation, state.value)

    # ── Registration ───────────────────────────────────────────────────

    def use(self, middleware: Middleware) -> None:
        """Append a middleware; applies to routes registered afterwards."""
        self._require_idle("add middleware")
        self._chain.use(middleware)

    def handle(
        self,
        rule: str,
        view: View,
        methods: list[str] | None = None,
        endpoint: str | None = None,
    ) -> None:
        """Register ``view`` for ``rule`` behind the middleware chain."""
        self._require_idle("register route")
        flask_rule = to_flask_rule(rule)
        self.app.add_url_rule(
            flask_rule,
            endpoint=endpoint or f"{getattr(view, '__name__', 'view')}@{flask_rule}",
            view_func=self._chain.apply(view),
            methods=methods,
        )

    def route(self, rule: str, **options: Any) -> Callable[[View], View]:
        """Decorator form of ``handle``."""

        def decorator(view: View) -> View:
            self.handle(rule, view, **options)
            return view

        return decorator

    def add_shutdown_hook(self, hook: ShutdownHook, name: str | None = None) -> None:
        with self._state_lock:
            if self._state in (ServiceState.SHUTTING_DOWN, ServiceState.STOPPED):
                raise LifecycleStateError("add shutdown hook", self._state.value)
            self._shutdown_sequencer.add_hook(hook, name)

    def register_counter(self, descriptor: MetricDescriptor) -> None:
        self.metrics.register_counter(descriptor)

    def register_gauge(self, descriptor: MetricDescriptor) -> None:
        self.metrics.register_gauge(descriptor)

    def register_histogram(self, descriptor: MetricDescriptor) -> None:
        self.metrics.register_histogram(descriptor)

    def register_summary(self, descriptor: MetricDescriptor) -> None:
        self.metrics.register_summary(descriptor)

    def register_health_check(self, probe: HealthProbe) -> None:
        self.health.register(probe)

    def register_check(
        self,
        name: str,
        check: ProbeCheck,
        timeout: float | None = None,
        critical: bool = True,
    ) -> None:
        self.health.register_check(name, check, timeout=timeout, critical=critical)

    # ── Listeners ──────────────────────────────────────────────────────

    @property
    def primary_address(self) -> tuple[str, int] | None:
        return self._primary.address if self._primary is not None else None

    @property
    def operational_address(self) -> tuple[str, int] | None:
        return self._operational.address if self._operational is not None else None

    def test_client(self) -> Any:
        return self.app.test_client()

    def operational_test_client(self) -> Any:
        return self.operational_app.test_client()

    # ── Run ────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Serve until a termination signal, ``stop()`` or a listener failure.

        Raises:
            StartupError: A listener could not bind; nothing is left running.
            ListenerError: A listener failed while serving (after shutdown).
            ShutdownError: A listener did not stop cleanly before the deadline.
        """
        self._transition(ServiceState.STARTING)
        self._chain.freeze()

        operational = Listener(
            "operational",
            self.operational_app,
            self.settings.operational_host,
            self.settings.operational_port,
            threads=_OPERATIONAL_THREADS,
            channel_timeout=_OPERATIONAL_CHANNEL_TIMEOUT,
        )
        primary = Listener(
            "primary",
            self.app,
            self.settings.primary_host,
            self.settings.primary_port,
            threads=self.settings.waitress_threads,
            channel_timeout=self.settings.channel_timeout,
        )

        try:
            operational.bind()
            primary.bind()
        except StartupError as e:
            logger.error(f"Service {self.name} failed to start: {e}")
            self._close_unstarted(operational, primary)
            self._transition(ServiceState.STOPPED)
            raise

        self._operational = operational
        self._primary = primary

        previous_handlers = self._install_signal_handlers()
        try:
            operational.start(on_failure=self._on_listener_failure)
            primary.start(on_failure=self._on_listener_failure)

            self._transition(ServiceState.RUNNING)
            self._started.set()
            logger.info(
                f"Service {self.name} running "
                f"(primary {_format(self.primary_address)}, "
                f"operational {_format(self.operational_address)})"
            )

            while not self._trigger.wait(0.5):
                pass

            self._shutdown_gracefully()
        finally:
            self._restore_signal_handlers(previous_handlers)

    def start_background(self, timeout: float | None = None) -> None:
        """Run ``start()`` on a background thread and return once it is running.

        Raises:
            StartupError: A listener could not bind, or startup timed out.
        """
        self._require_idle("start")

        def runner() -> None:
            try:
                self.start()
            except ServiceKitError as e:
                self._background_error = e
            except Exception as e:
                logger.error(f"Service {self.name} failed: {e}", exc_info=True)
                self._background_error = e
            finally:
                self._started.set()

        self._background = threading.Thread(
            target=runner, name=f"{self.name}-service", daemon=True
        )
        self._background.start()

        if not self._started.wait(timeout):
            raise StartupError("service", f"not running after {timeout}s")
        if self._background_error is not None:
            raise self._background_error

    def stop(self, timeout: float | None = None) -> None:
        """Trigger graceful shutdown.

        When the service runs in the background, wait for it to finish and
        re-raise its error. A service that never started only runs its
        shutdown hooks.
        """
        with self._state_lock:
            idle = self._state == ServiceState.IDLE
            if idle:
                self._transition(ServiceState.SHUTTING_DOWN)

        if idle:
            self._shutdown_sequencer.run(time.monotonic() + self.settings.shutdown_timeout)
            self._transition(ServiceState.STOPPED)
            return

        self._request_shutdown("stop requested")

        if self._background is not None and self._background is not threading.current_thread():
            self._background.join(timeout)
            if self._background.is_alive():
                raise ShutdownTimeoutError("service", timeout or 0.0)
            if self._background_error is not None:
                raise self._background_error

    def _request_shutdown(self, reason: str) -> None:
        with self._state_lock:
            if self._trigger.is_set():
                logger.warning(f"Shutdown already in progress, ignoring {reason}")
                return
            self._trigger_reason = reason
            self._trigger.set()

    def _on_listener_failure(self, listener: Listener, error: BaseException) -> None:
        with self._state_lock:
            if self._failure is None:
                self._failure = ListenerError(listener.name, str(error))
        self._request_shutdown(f"{listener.name} listener failure")

    def _shutdown_gracefully(self) -> None:
        self._transition(ServiceState.SHUTTING_DOWN)
        deadline = time.monotonic() + self.settings.shutdown_timeout
        logger.info(
            f"Starting graceful shutdown of {self.name} ({self._trigger_reason}, "
            f"timeout: {self.settings.shutdown_timeout}s)"
        )

        self._shutdown_sequencer.run(deadline)

        errors: list[ShutdownError] = []
        for listener in (self._primary, self._operational):
            if listener is None:
                continue
            try:
                listener.shutdown(deadline)
            except ShutdownError as e:
                logger.error(f"{listener.name.capitalize()} listener shutdown error: {e}")
                errors.append(e)

        self._transition(ServiceState.STOPPED)

        if self._failure is not None:
            raise self._failure
        if errors:
            logger.error(f"Shutdown completed with {len(errors)} error(s)")
            raise errors[0]

        logger.info(f"Graceful shutdown of {self.name} completed")

    @staticmethod
    def _close_unstarted(*listeners: Listener) -> None:
        deadline = time.monotonic()
        for listener in listeners:
            try:
                listener.shutdown(deadline)
            except ShutdownError as e:
                logger.warning(f"Failed to close {listener.name} listener: {e}")

    # ── Signals ────────────────────────────────────────────────────────

    def _handle_signal(self, signum: int, frame: object) -> None:
        logger.info(f"Received signal {signum}, initiating graceful shutdown")
        self._request_shutdown(f"signal {signal.Signals(signum).name}")

    def _install_signal_handlers(self) -> dict[int, Any]:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, skipping signal handler installation")
            return {}

        previous: dict[int, Any] = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle_signal)
        return previous

    @staticmethod
    def _restore_signal_handlers(previous: dict[int, Any]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)


def _format(address: tuple[str, int] | None) -> str:
    if address is None:
        return "-"
    host, port = address
    return f"{host}:{port}"
