"""Configuration management using Pydantic settings.

Two-layer configuration system:
1. Environment: Loads raw values from environment variables (UPPER_CASE)
2. Settings: Clean service settings with lowercase fields and derived values
"""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from servicekit.exceptions import ConfigurationError

_PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Environment(BaseSettings):
    """Raw environment variable loading."""

    model_config = SettingsConfigDict(
        env_file=_PROJECT_ROOT / ".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ── Primary listener ───────────────────────────────────────────────

    ADDR: str = Field(default=":8080")
    READ_TIMEOUT: float = Field(default=10.0)
    WRITE_TIMEOUT: float = Field(default=10.0)
    IDLE_TIMEOUT: float = Field(default=120.0)
    WAITRESS_THREADS: int = Field(default=8)

    # ── Operational listener ───────────────────────────────────────────

    METRICS_ADDR: str = Field(default=":9090")
    METRICS_PATH: str = Field(default="/metrics")
    HEALTH_PATH: str = Field(default="/health")
    READINESS_PATH: str = Field(default="/ready")
    LIVENESS_PATH: str = Field(default="/live")
    HEALTH_CHECK_TIMEOUT: float = Field(default=5.0)

    # ── Lifecycle ──────────────────────────────────────────────────────

    SHUTDOWN_TIMEOUT: float = Field(default=30.0)
    VERSION: str = Field(default="")
    LOG_LEVEL: str = Field(default="INFO")


class Settings(BaseModel):
    """Service settings with lowercase fields and derived values."""

    model_config = ConfigDict(from_attributes=True)

    addr: str = ":8080"
    read_timeout: float = 10.0
    write_timeout: float = 10.0
    idle_timeout: float = 120.0
    waitress_threads: int = 8

    metrics_addr: str = ":9090"
    metrics_path: str = "/metrics"
    health_path: str = "/health"
    readiness_path: str = "/ready"
    liveness_path: str = "/live"
    health_check_timeout: float = 5.0

    shutdown_timeout: float = 30.0
    version: str = ""
    log_level: str = "INFO"

    @property
    def primary_host(self) -> str:
        return parse_address(self.addr)[0]

    @property
    def primary_port(self) -> int:
        return parse_address(self.addr)[1]

    @property
    def operational_host(self) -> str:
        return parse_address(self.metrics_addr)[0]

    @property
    def operational_port(self) -> int:
        return parse_address(self.metrics_addr)[1]

    @property
    def channel_timeout(self) -> float:
        """Inactivity timeout handed to waitress for the primary listener."""
        return max(self.read_timeout, self.write_timeout, self.idle_timeout)

    def validate_config(self) -> None:
        errors: list[str] = []

        for field, value in (("ADDR", self.addr), ("METRICS_ADDR", self.metrics_addr)):
            try:
                parse_address(value)
            except ValueError as e:
                errors.append(f"{field} is invalid: {e}")

        for field, value in (
            ("METRICS_PATH", self.metrics_path),
            ("HEALTH_PATH", self.health_path),
            ("READINESS_PATH", self.readiness_path),
            ("LIVENESS_PATH", self.liveness_path),
        ):
            if not value.startswith("/"):
                errors.append(f"{field} must start with '/', got {value!r}")

        paths = [self.metrics_path, self.health_path, self.readiness_path, self.liveness_path]
        if len(set(paths)) != len(paths):
            errors.append("Operational endpoint paths must be distinct")

        for field, value in (
            ("READ_TIMEOUT", self.read_timeout),
            ("WRITE_TIMEOUT", self.write_timeout),
            ("IDLE_TIMEOUT", self.idle_timeout),
            ("SHUTDOWN_TIMEOUT", self.shutdown_timeout),
            ("HEALTH_CHECK_TIMEOUT", self.health_check_timeout),
        ):
            if value <= 0:
                errors.append(f"{field} must be positive, got {value}")

        if self.waitress_threads < 1:
            errors.append(f"WAITRESS_THREADS must be at least 1, got {self.waitress_threads}")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            )

    @classmethod
    def load(cls, env: "Environment | None" = None) -> "Settings":
        if env is None:
            try:
                env = Environment()
            except ValidationError as e:
                raise ConfigurationError(f"Invalid environment configuration: {e}") from e

        settings = cls(
            addr=env.ADDR,
            read_timeout=env.READ_TIMEOUT,
            write_timeout=env.WRITE_TIMEOUT,
            idle_timeout=env.IDLE_TIMEOUT,
            waitress_threads=env.WAITRESS_THREADS,
            metrics_addr=env.METRICS_ADDR,
            metrics_path=env.METRICS_PATH,
            health_path=env.HEALTH_PATH,
            readiness_path=env.READINESS_PATH,
            liveness_path=env.LIVENESS_PATH,
            health_check_timeout=env.HEALTH_CHECK_TIMEOUT,
            shutdown_timeout=env.SHUTDOWN_TIMEOUT,
            version=env.VERSION,
            log_level=env.LOG_LEVEL.upper(),
        )
        settings.validate_config()
        return settings


def parse_address(address: str) -> tuple[str, int]:
    """Split a ``host:port`` listen address.

    An empty host (``":8080"``) listens on all interfaces. IPv6 hosts may be
    given in brackets (``"[::1]:8080"``).
    """
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"missing port in address {address!r}")

    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]

    try:
        port_number = int(port)
    except ValueError:
        raise ValueError(f"port {port!r} is not a number") from None

    if not 0 <= port_number <= 65535:
        raise ValueError(f"port {port_number} is out of range")

    return host or "0.0.0.0", port_number
