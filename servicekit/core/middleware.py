"""Composable view middleware.

A middleware is a function that takes a Flask view and returns a wrapped
view. The chain applies its middlewares when a route is registered, in
reverse order, so the first middleware added is the outermost one: it sees
the request first and the response last.

The default chain, outermost first, is:

    metrics -> logger context -> recovery -> request logging -> health registry

Metrics wraps recovery so that a failing view is still recorded exactly once,
with the 500 status produced by recovery.
"""

import functools
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterator
from typing import TYPE_CHECKING, Any

from flask import Response, g, make_response, request
from werkzeug.exceptions import HTTPException

from servicekit.core.context import get_request_id, set_health_registry, set_logger, set_metrics
from servicekit.exceptions import LifecycleStateError

if TYPE_CHECKING:
    from servicekit.health.registry import HealthRegistry
    from servicekit.metrics.registry import MetricsRegistry

logger = logging.getLogger(__name__)

View = Callable[..., Any]
Middleware = Callable[[View], View]

REQUEST_ID_HEADER = "X-Request-ID"


class MiddlewareChain:
    """Ordered list of middlewares, frozen once the service accepts traffic.

    ``use`` is meant for startup code. Once the service freezes the chain,
    further ``use`` calls raise ``LifecycleStateError``. Routes registered
    before a ``use`` call keep the chain they were registered with.
    """

    def __init__(self, middlewares: list[Middleware] | None = None):
        self._lock = threading.Lock()
        self._middlewares: list[Middleware] = list(middlewares or [])
        self._frozen = False

    def use(self, middleware: Middleware) -> None:
        with self._lock:
            if self._frozen:
                raise LifecycleStateError("add middleware", "accepting traffic")
            self._middlewares.append(middleware)
            logger.debug(
                f"Registered middleware {getattr(middleware, '__name__', repr(middleware))}"
            )

    def apply(self, view: View) -> View:
        """Wrap ``view`` so that the first registered middleware is outermost."""
        with self._lock:
            middlewares = list(self._middlewares)

        handler = view
        for middleware in reversed(middlewares):
            handler = middleware(handler)
        return handler

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        with self._lock:
            return self._frozen

    def __len__(self) -> int:
        with self._lock:
            return len(self._middlewares)

    def __iter__(self) -> Iterator[Middleware]:
        with self._lock:
            return iter(list(self._middlewares))


def default_chain(
    metrics: "MetricsRegistry",
    request_logger: logging.Logger,
    health: "HealthRegistry | None" = None,
) -> MiddlewareChain:
    """Build the chain every service starts with."""
    middlewares = [
        metrics_middleware(metrics),
        logger_middleware(request_logger),
        recovery_middleware(request_logger),
        request_logging_middleware(request_logger),
    ]
    if health is not None:
        middlewares.append(health_registry_middleware(health))
    return MiddlewareChain(middlewares)


def metrics_middleware(metrics: "MetricsRegistry") -> Middleware:
    """Record request count, duration and in-flight requests."""

    def middleware(view: View) -> View:
        @functools.wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            set_metrics(metrics)
            # Views only run after a rule matched, so url_rule is always set here.
            route = request.url_rule.rule  # type: ignore[union-attr]
            status_code = 500
            start = time.perf_counter()

            with metrics.track_in_flight():
                try:
                    response = make_response(view(*args, **kwargs))
                    status_code = response.status_code
                    return response
                finally:
                    metrics.record_request(
                        request.method, route, status_code, time.perf_counter() - start
                    )

        return wrapper

    return middleware


def logger_middleware(base_logger: logging.Logger) -> Middleware:
    """Attach a request logger carrying the request id to the request context.

    The id comes from the ``X-Request-ID`` header when present and is echoed
    back on the response.
    """

    def middleware(view: View) -> View:
        @functools.wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
            g.request_id = request_id
            set_logger(
                logging.LoggerAdapter(
                    base_logger,
                    {"request_id": request_id, "method": request.method, "path": request.path},
                )
            )

            response = make_response(view(*args, **kwargs))
            response.headers.setdefault(REQUEST_ID_HEADER, request_id)
            return response

        return wrapper

    return middleware


def recovery_middleware(base_logger: logging.Logger) -> Middleware:
    """Turn any exception escaping the view into a 500 response."""

    def middleware(view: View) -> View:
        @functools.wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                # Building the response inside the guard catches invalid view return values.
                return make_response(view(*args, **kwargs))
            except HTTPException as e:
                return e.get_response()
            except Exception as e:
                base_logger.error(
                    f"Panic recovered on {request.method} {request.path}: {e}",
                    exc_info=True,
                    extra={
                        "method": request.method,
                        "path": request.path,
                        "request_id": get_request_id(),
                    },
                )
                return Response(
                    "Internal Server Error",
                    status=500,
                    content_type="text/plain; charset=utf-8",
                )

        return wrapper

    return middleware


def request_logging_middleware(base_logger: logging.Logger) -> Middleware:
    """Log every incoming request."""

    def middleware(view: View) -> View:
        @functools.wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            base_logger.info(
                f"Incoming request {request.method} {request.path}",
                extra={
                    "method": request.method,
                    "path": request.path,
                    "remote_addr": request.remote_addr,
                    "user_agent": request.user_agent.string,
                    "request_id": get_request_id(),
                },
            )
            return view(*args, **kwargs)

        return wrapper

    return middleware


def health_registry_middleware(health: "HealthRegistry") -> Middleware:
    """Expose the health registry to view code."""

    def middleware(view: View) -> View:
        @functools.wraps(view)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            set_health_registry(health)
            return view(*args, **kwargs)

        return wrapper

    return middleware
