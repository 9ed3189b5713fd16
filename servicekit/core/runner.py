"""Process entry point with logging setup and exit codes."""

import logging
from typing import TYPE_CHECKING

from servicekit.exceptions import ServiceKitError

if TYPE_CHECKING:
    from servicekit.core.service import Service

logger = logging.getLogger(__name__)


def configure_logging(level: str | int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def run(service: "Service") -> int:
    """Run the service until it shuts down.

    Usage in run.py:
        service = Service("greeter")
        ...
        if __name__ == "__main__":
            sys.exit(run(service))

    Returns:
        Process exit code: 0 after a clean shutdown, 1 otherwise.
    """
    configure_logging(service.settings.log_level)

    try:
        service.start()
    except ServiceKitError as e:
        logger.error(f"Service {service.name} exited with error [{e.error_code}]: {e.message}")
        return 1

    return 0
