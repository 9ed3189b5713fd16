"""Service scaffold exceptions with user-ready messages."""


class ServiceKitError(Exception):
    """Base exception class for service scaffold errors."""

    def __init__(self, message: str, error_code: str) -> None:
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class ConfigurationError(ServiceKitError):
    """Raised when service configuration is invalid."""

    def __init__(self, message: str) -> None:
        super().__init__(message, error_code="CONFIGURATION_INVALID")


class MetricsError(ServiceKitError):
    """Base class for metrics registry errors."""

    pass


class MetricAlreadyExistsError(MetricsError):
    """Raised when a metric name is registered twice."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Metric {name} already exists", error_code="METRIC_EXISTS")


class MetricNotFoundError(MetricsError):
    """Raised when observing a metric that was never registered."""

    def __init__(self, kind: str, name: str) -> None:
        self.name = name
        super().__init__(f"{kind.capitalize()} {name} not found", error_code="METRIC_NOT_FOUND")


class InvalidMetricDescriptorError(MetricsError):
    """Raised when a metric descriptor cannot be registered."""

    def __init__(self, name: str, cause: str) -> None:
        self.name = name
        self.cause = cause
        super().__init__(f"Invalid metric {name}: {cause}", error_code="METRIC_INVALID")


class LabelMismatchError(MetricsError):
    """Raised when label values do not match the registered label names."""

    def __init__(self, name: str, expected: int, actual: int) -> None:
        self.name = name
        self.expected = expected
        self.actual = actual
        message = f"Metric {name} expects {expected} label value(s), got {actual}"
        super().__init__(message, error_code="METRIC_LABEL_MISMATCH")


class InvalidMetricValueError(MetricsError):
    """Raised when a value is rejected by the underlying metric."""

    def __init__(self, name: str, cause: str) -> None:
        self.name = name
        super().__init__(f"Invalid value for metric {name}: {cause}", error_code="METRIC_VALUE_INVALID")


class MetricsUnavailableError(MetricsError):
    """Raised when request helpers are used outside the metrics middleware."""

    def __init__(self) -> None:
        super().__init__(
            "Metrics not available in request context", error_code="METRICS_UNAVAILABLE"
        )


class ProbeAlreadyExistsError(ServiceKitError):
    """Raised when a health probe name is registered twice."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Health check {name} already exists", error_code="PROBE_EXISTS")


class InvalidProbeError(ServiceKitError):
    """Raised when a health probe is registered with invalid settings."""

    def __init__(self, name: str, cause: str) -> None:
        self.name = name
        self.cause = cause
        super().__init__(f"Invalid health check {name}: {cause}", error_code="PROBE_INVALID")


class LifecycleStateError(ServiceKitError):
    """Raised when an operation is not allowed in the current lifecycle state."""

    def __init__(self, operation: str, state: str) -> None:
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while service is {state}", error_code="INVALID_STATE")


class StartupError(ServiceKitError):
    """Raised when a listener cannot be started."""

    def __init__(self, listener: str, cause: str) -> None:
        self.listener = listener
        self.cause = cause
        super().__init__(f"Failed to start {listener} listener: {cause}", error_code="STARTUP_FAILED")


class ListenerError(ServiceKitError):
    """Raised when a listener fails while serving."""

    def __init__(self, listener: str, cause: str) -> None:
        self.listener = listener
        self.cause = cause
        super().__init__(f"{listener.capitalize()} listener failed: {cause}", error_code="LISTENER_FAILED")


class ShutdownError(ServiceKitError):
    """Raised when a listener does not shut down cleanly."""

    def __init__(self, listener: str, cause: str, error_code: str = "SHUTDOWN_FAILED") -> None:
        self.listener = listener
        self.cause = cause
        super().__init__(f"Failed to shut down {listener} listener: {cause}", error_code=error_code)


class ShutdownTimeoutError(ShutdownError):
    """Raised when a listener does not drain before the shutdown deadline."""

    def __init__(self, listener: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(
            listener,
            f"deadline exceeded after {timeout:.1f}s",
            error_code="SHUTDOWN_TIMEOUT",
        )
