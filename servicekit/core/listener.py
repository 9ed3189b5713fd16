"""Waitress-backed HTTP listener with deadline-bounded graceful shutdown.

A listener goes ``none -> active -> closed`` exactly once. Binding happens
synchronously in ``bind()`` so address errors surface before anything is
served. Serving runs the waitress socket map on a dedicated thread; all
socket closing is done on that thread between poll iterations, which keeps
the shutdown caller from racing the event loop.
"""

import logging
import math
import threading
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

from waitress import wasyncore
from waitress.server import BaseWSGIServer, create_server

from servicekit.exceptions import (
    LifecycleStateError,
    ShutdownError,
    ShutdownTimeoutError,
    StartupError,
)

logger = logging.getLogger(__name__)

_DRAIN_POLL_INTERVAL = 0.05
_CLOSE_GRACE = 0.5


class ListenerState(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    CLOSED = "closed"


class Listener:
    """One WSGI application served on one address."""

    def __init__(
        self,
        name: str,
        app: Callable[..., Any],
        host: str,
        port: int,
        threads: int = 4,
        channel_timeout: float = 120.0,
        poll_interval: float = 0.5,
    ):
        self.name = name
        self._app = app
        self._host = host
        self._port = port
        self._threads = threads
        self._channel_timeout = channel_timeout
        self._poll_interval = poll_interval

        self._state = ListenerState.NONE
        self._state_lock = threading.Lock()
        self._server: Any = None
        self._thread: threading.Thread | None = None
        self._stop_accepting = threading.Event()
        self._close_channels = threading.Event()
        self._stopped = threading.Event()
        self._error: BaseException | None = None
        self._on_failure: Callable[["Listener", BaseException], None] | None = None

    @property
    def state(self) -> ListenerState:
        with self._state_lock:
            return self._state

    @property
    def address(self) -> tuple[str, int] | None:
        """The effective bound address, useful when binding port 0."""
        if self._server is None:
            return None
        if hasattr(self._server, "effective_listen"):
            host, port = self._server.effective_listen[0]
            return host, int(port)
        return self._server.effective_host, int(self._server.effective_port)

    def bind(self) -> None:
        """Bind the listening socket; raises ``StartupError`` on failure."""
        with self._state_lock:
            if self._state != ListenerState.NONE:
                raise LifecycleStateError(f"bind {self.name} listener", self._state.value)

            try:
                self._server = create_server(
                    self._app,
                    host=self._host,
                    port=self._port,
                    threads=self._threads,
                    channel_timeout=max(1, math.ceil(self._channel_timeout)),
                    asyncore_use_poll=True,
                )
            except OSError as e:
                raise StartupError(self.name, f"{self._host}:{self._port}: {e}") from e

            self._state = ListenerState.ACTIVE

        host, port = self.address or (self._host, self._port)
        logger.info(f"Bound {self.name} listener on {host}:{port} ({self._threads} threads)")

    def start(self, on_failure: Callable[["Listener", BaseException], None] | None = None) -> None:
        """Serve on a background thread.

        Args:
            on_failure: Called from the serving thread if serving fails.
        """
        if self.state != ListenerState.ACTIVE:
            raise LifecycleStateError(f"start {self.name} listener", self.state.value)

        self._on_failure = on_failure
        self._thread = threading.Thread(
            target=self._serve, name=f"{self.name}-listener", daemon=True
        )
        self._thread.start()

    def _serve(self) -> None:
        socket_map = self._socket_map()
        try:
            self._run_loop(socket_map)
        except Exception as e:
            self._error = e
            logger.error(f"{self.name.capitalize()} listener failed: {e}", exc_info=True)
        finally:
            # Sockets are released even when the loop dies.
            wasyncore.close_all(socket_map)
            self._stopped.set()

        if self._error is not None and self._on_failure is not None:
            self._on_failure(self, self._error)

    def _run_loop(self, socket_map: dict[int, Any]) -> None:
        accepting = True
        while not self._close_channels.is_set():
            if accepting and self._stop_accepting.is_set():
                for server in self._listening_servers(socket_map):
                    # Only the listening socket; the trigger stays open to wake us.
                    wasyncore.dispatcher.close(server)
                accepting = False

            wasyncore.loop(timeout=self._poll_interval, map=socket_map, use_poll=True, count=1)

    def shutdown(self, deadline: float) -> None:
        """Stop accepting, drain in-flight requests, then close everything.

        Args:
            deadline: ``time.monotonic()`` value after which remaining
                connections are closed and ``ShutdownTimeoutError`` is raised.
        """
        with self._state_lock:
            previous = self._state
            self._state = ListenerState.CLOSED

        if previous == ListenerState.CLOSED:
            return
        if previous == ListenerState.NONE:
            logger.debug(f"{self.name.capitalize()} listener was never started")
            return

        budget = max(0.0, deadline - time.monotonic())
        logger.info(f"Shutting down {self.name} listener (timeout: {budget:.1f}s)")

        if self._thread is None:
            # Bound but never served: close synchronously, no loop thread to race.
            wasyncore.close_all(self._socket_map())
            self._server.task_dispatcher.shutdown(cancel_pending=True, timeout=0)
            return

        self._stop_accepting.set()
        self._wake()

        drained = self._wait_for_drain(deadline)

        self._close_channels.set()
        self._wake()
        # The loop thread does the closing; it gets a short grace past the deadline.
        self._thread.join(max(_CLOSE_GRACE, deadline - time.monotonic()))
        loop_stopped = not self._thread.is_alive()

        self._server.task_dispatcher.shutdown(
            cancel_pending=True, timeout=max(0.0, deadline - time.monotonic())
        )

        if not drained or not loop_stopped:
            raise ShutdownTimeoutError(self.name, budget)
        if self._error is not None:
            raise ShutdownError(self.name, str(self._error)) from self._error

        logger.info(f"{self.name.capitalize()} listener stopped")

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the serving thread has exited."""
        return self._stopped.wait(timeout)

    def _wait_for_drain(self, deadline: float) -> bool:
        while True:
            if self._is_idle():
                return True
            if self._stopped.is_set():
                return True
            if time.monotonic() >= deadline:
                logger.warning(f"{self.name.capitalize()} listener did not drain before deadline")
                return False
            time.sleep(_DRAIN_POLL_INTERVAL)

    def _is_idle(self) -> bool:
        dispatcher = self._server.task_dispatcher
        if dispatcher.active_count or dispatcher.queue:
            return False
        return not any(
            getattr(channel, "total_outbufs_len", 0) for channel in list(self._socket_map().values())
        )

    def _wake(self) -> None:
        if self._stopped.is_set():
            # The loop is gone and has closed the trigger along with everything else.
            return
        for server in self._listening_servers(self._socket_map()):
            server.trigger.pull_trigger()
            return

    def _socket_map(self) -> dict[int, Any]:
        socket_map = getattr(self._server, "_map", None)
        if socket_map is None:
            socket_map = self._server.map
        return socket_map

    def _listening_servers(self, socket_map: dict[int, Any]) -> list[BaseWSGIServer]:
        servers = [obj for obj in list(socket_map.values()) if isinstance(obj, BaseWSGIServer)]
        if not servers and isinstance(self._server, BaseWSGIServer):
            servers = [self._server]
        return servers
