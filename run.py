"""Demo service entry point."""

import sys

from servicekit import MetricDescriptor, Service, run
from servicekit.core import context

service = Service("greeter")

service.register_counter(
    MetricDescriptor(name="greetings_total", help="Greetings sent", labels=("name",))
)


@service.route("/hello/{name}")
def hello(name: str) -> str:
    context.get_logger().info(f"Greeting {name}")
    context.inc_counter("greetings_total", name)
    return f"Hello, {name}!"


service.register_check("self", lambda: True, critical=True)
service.add_shutdown_hook(lambda: context.get_logger().info("Goodbye"), name="goodbye")


if __name__ == "__main__":
    sys.exit(run(service))
