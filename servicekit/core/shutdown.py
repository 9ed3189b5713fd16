"""Shutdown hook sequencing for graceful termination."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from servicekit.exceptions import LifecycleStateError

logger = logging.getLogger(__name__)

ShutdownHook = Callable[[], object]


@dataclass(frozen=True)
class HookFailure:
    name: str
    error: BaseException


class ShutdownSequencer:
    """Runs cleanup hooks in registration order during shutdown.

    Every hook runs even when an earlier one fails or the budget is already
    spent; failures are logged and reported back. Hooks are not individually
    time-boxed: a hook that blocks past the deadline delays everything after
    it, including listener shutdown.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hooks: list[tuple[str, ShutdownHook]] = []
        self._started = False

        logger.debug("ShutdownSequencer initialized")

    def add_hook(self, hook: ShutdownHook, name: str | None = None) -> None:
        """Append a zero-argument cleanup action.

        Args:
            hook: Callable run during shutdown; raising marks it failed.
            name: Name used in logs, defaults to the callable's name.
        """
        hook_name = name or getattr(hook, "__name__", repr(hook))
        with self._lock:
            if self._started:
                raise LifecycleStateError("add shutdown hook", "shutting down")
            self._hooks.append((hook_name, hook))
            logger.debug(f"Registered shutdown hook: {hook_name}")

    def __len__(self) -> int:
        with self._lock:
            return len(self._hooks)

    @property
    def started(self) -> bool:
        with self._lock:
            return self._started

    def run(self, deadline: float) -> list[HookFailure]:
        """Run all hooks once.

        Args:
            deadline: ``time.monotonic()`` value by which shutdown should be
                done; used for reporting only.

        Returns:
            The hooks that raised, in the order they ran.
        """
        with self._lock:
            if self._started:
                logger.warning("Shutdown hooks already run, ignoring")
                return []
            self._started = True
            hooks = list(self._hooks)

        logger.info(
            f"Executing {len(hooks)} shutdown hook(s) "
            f"(budget: {max(0.0, deadline - time.monotonic()):.1f}s)"
        )

        failures: list[HookFailure] = []
        for index, (name, hook) in enumerate(hooks):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(f"Shutdown budget exceeded before hook {name}, running it anyway")

            start_time = time.perf_counter()
            try:
                logger.info(f"Executing shutdown hook {index}: {name}")
                hook()
            except Exception as e:
                logger.error(f"Shutdown hook {index} ({name}) failed: {e}", exc_info=True)
                failures.append(HookFailure(name, e))
            finally:
                logger.debug(
                    f"Shutdown hook {name} took {time.perf_counter() - start_time:.3f}s"
                )

        if failures:
            logger.error(f"{len(failures)} of {len(hooks)} shutdown hook(s) failed")
        return failures
