"""Health probe registry with per-probe timeouts and criticality.

Probes are not polled in the background; they run when a health, readiness
or liveness question is asked. Each evaluation starts every probe on its own
daemon thread and waits for each one until its own timeout (or the caller's
overall deadline, whichever comes first). A probe that overruns is reported
as timed out for that evaluation and its thread is left to finish on its own.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from servicekit.exceptions import InvalidProbeError, ProbeAlreadyExistsError

logger = logging.getLogger(__name__)

ProbeCheck = Callable[[], Any]


class ProbeStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    TIMEOUT = "timeout"


class HealthStatus(str, Enum):
    """Aggregate status reported by the health endpoint."""

    OK = "OK"
    PARTIALLY_AVAILABLE = "Partially Available"
    UNAVAILABLE = "Unavailable"


@dataclass(frozen=True)
class HealthProbe:
    """A named health check.

    The check takes no arguments. Returning ``None`` or ``True`` means healthy,
    ``False`` means unhealthy, and a ``(healthy, detail)`` tuple carries a
    message along. Raising counts as unhealthy with the exception text as
    detail.

    Non-critical (advisory) probes are reported but never flip the overall
    status to unhealthy.
    """

    name: str
    check: ProbeCheck = field(compare=False)
    timeout: float | None = None
    critical: bool = True


@dataclass(frozen=True)
class ProbeResult:
    name: str
    status: ProbeStatus
    critical: bool
    detail: str = ""
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == ProbeStatus.OK


@dataclass(frozen=True)
class HealthSnapshot:
    """Result of evaluating every registered probe at one instant."""

    status: HealthStatus
    timestamp: datetime
    results: tuple[ProbeResult, ...]
    component: str = ""
    version: str = ""

    @property
    def healthy(self) -> bool:
        return self.status != HealthStatus.UNAVAILABLE

    @property
    def failures(self) -> dict[str, str]:
        return {r.name: r.detail for r in self.results if not r.ok}

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp.isoformat(),
            "component": {"name": self.component, "version": self.version},
            "checks": {
                r.name: {
                    "status": r.status.value,
                    "critical": r.critical,
                    "detail": r.detail,
                    "duration_ms": round(r.duration * 1000, 3),
                }
                for r in self.results
            },
            "failures": self.failures,
        }


class _ProbeRun:
    """One execution of a probe on its own daemon thread."""

    def __init__(self, probe: HealthProbe):
        self.probe = probe
        self.done = threading.Event()
        self.status = ProbeStatus.FAILED
        self.detail = ""
        self.duration = 0.0
        self._thread = threading.Thread(
            target=self._run, name=f"health-probe-{probe.name}", daemon=True
        )

    def start(self) -> "_ProbeRun":
        self._thread.start()
        return self

    def _run(self) -> None:
        start = time.perf_counter()
        try:
            self.status, self.detail = _interpret(self.probe.check())
        except Exception as e:
            self.status = ProbeStatus.FAILED
            self.detail = str(e) or e.__class__.__name__
        finally:
            self.duration = time.perf_counter() - start
            self.done.set()


def _interpret(outcome: Any) -> tuple[ProbeStatus, str]:
    if outcome is None:
        return ProbeStatus.OK, ""
    if isinstance(outcome, tuple) and len(outcome) == 2:
        healthy, detail = outcome
        return (ProbeStatus.OK if healthy else ProbeStatus.FAILED), str(detail)
    if outcome:
        return ProbeStatus.OK, ""
    return ProbeStatus.FAILED, "check failed"


class HealthRegistry:
    """Thread-safe set of health probes aggregated into health snapshots."""

    def __init__(self, service_name: str, version: str = "", default_timeout: float = 5.0):
        self.service_name = service_name
        self.version = version
        self.default_timeout = default_timeout
        self._lock = threading.Lock()
        self._probes: dict[str, HealthProbe] = {}

    def register(self, probe: HealthProbe) -> None:
        if probe.timeout is not None and probe.timeout <= 0:
            raise InvalidProbeError(probe.name, f"timeout must be positive, got {probe.timeout}")

        with self._lock:
            if probe.name in self._probes:
                raise ProbeAlreadyExistsError(probe.name)
            probes = dict(self._probes)
            probes[probe.name] = probe
            self._probes = probes

        logger.info(
            f"Registered health check {probe.name} "
            f"({'critical' if probe.critical else 'advisory'}, "
            f"timeout {self._timeout_for(probe)}s)"
        )

    def register_check(
        self,
        name: str,
        check: ProbeCheck,
        timeout: float | None = None,
        critical: bool = True,
    ) -> None:
        self.register(HealthProbe(name=name, check=check, timeout=timeout, critical=critical))

    def names(self) -> list[str]:
        return list(self._probes)

    def evaluate(self, timeout: float | None = None) -> HealthSnapshot:
        """Run every probe concurrently and aggregate the results.

        Args:
            timeout: Overall deadline in seconds for this evaluation. Probes
                still running when it elapses are reported as timed out.
        """
        probes = list(self._probes.values())
        start = time.monotonic()
        deadline = start + timeout if timeout is not None else None

        runs = [_ProbeRun(probe).start() for probe in probes]

        results: list[ProbeResult] = []
        for run in runs:
            probe_timeout = self._timeout_for(run.probe)
            probe_deadline = start + probe_timeout
            if deadline is not None:
                probe_deadline = min(probe_deadline, deadline)

            if run.done.wait(max(0.0, probe_deadline - time.monotonic())):
                result = ProbeResult(
                    name=run.probe.name,
                    status=run.status,
                    critical=run.probe.critical,
                    detail=run.detail,
                    duration=run.duration,
                )
            else:
                result = ProbeResult(
                    name=run.probe.name,
                    status=ProbeStatus.TIMEOUT,
                    critical=run.probe.critical,
                    detail=f"timed out after {time.monotonic() - start:.2f}s",
                    duration=time.monotonic() - start,
                )

            if not result.ok:
                logger.warning(
                    f"Health check {result.name} {result.status.value}: {result.detail}"
                )
            results.append(result)

        return HealthSnapshot(
            status=self._aggregate(results),
            timestamp=datetime.now(UTC),
            results=tuple(results),
            component=self.service_name,
            version=self.version,
        )

    def is_healthy(self, timeout: float | None = None) -> bool:
        return self.evaluate(timeout).healthy

    def is_ready(self, timeout: float | None = None) -> bool:
        """Readiness uses the full critical-probe evaluation."""
        return self.is_healthy(timeout)

    def is_live(self) -> bool:
        """Liveness only reports that the process is running.

        It never depends on probes, so degraded dependencies do not get the
        process restarted.
        """
        return True

    def _timeout_for(self, probe: HealthProbe) -> float:
        return probe.timeout if probe.timeout is not None else self.default_timeout

    @staticmethod
    def _aggregate(results: list[ProbeResult]) -> HealthStatus:
        if any(not r.ok and r.critical for r in results):
            return HealthStatus.UNAVAILABLE
        if any(not r.ok for r in results):
            return HealthStatus.PARTIALLY_AVAILABLE
        return HealthStatus.OK
