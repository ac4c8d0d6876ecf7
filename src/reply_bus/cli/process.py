"""Run listeners over one or more queues.

This module provides a CLI that loads handler modules, registers each one as a
listener on the queue it is configured for and runs the listener
orchestrator. Replies returned by handlers are routed back to the sender's
response queue.
"""

import importlib
import logging
import os
import sys
from typing import Any, Sequence

import click
import dotenv

from config import Settings, get_settings
from reply_bus.exceptions import UnknownProviderError
from reply_bus.listeners import ListenerRegistry, descriptor_for
from reply_bus.orchestrator import ListenerOrchestrator
from reply_bus.transports import get_transport

logger = logging.getLogger(__name__)


def get_handlers(
    handler_names: Sequence[str],
    handlers_package: str = "reply_bus.handlers",
    handlers_path: Sequence[str] = (),
) -> dict[str, Any]:
    """Load and return the handler instance for each handler module name.

    Args:
        handler_names: Module names, relative to handlers_package.
        handlers_package: Package holding the handler modules.
        handlers_path: Extra directories added to sys.path before importing.
    Returns:
        Mapping of handler name to handler instance.

    Raises:
        click.ClickException: If a module cannot be imported or has no Handler class.
    """
    for path in handlers_path:
        if os.path.exists(path) and path not in sys.path:
            sys.path.append(path)
    handlers: dict[str, Any] = {}
    for name in handler_names:
        try:
            handler_module = importlib.import_module(f"{handlers_package}.{name}")
        except ImportError as e:
            raise click.ClickException(f"Handler {name} not found in {handlers_package}: {e}") from e
        if not hasattr(handler_module, "Handler"):
            raise click.ClickException(f"Module {handlers_package}.{name} has no Handler class")
        handlers[name] = handler_module.Handler()
    return handlers


def build_registry(handlers: dict[str, Any], settings: Settings) -> ListenerRegistry:
    """Register every handler on the queue it is configured for."""
    registry = ListenerRegistry()
    for name, handler in handlers.items():
        try:
            registry.register(descriptor_for(handler, settings))
        except ValueError as e:
            raise click.ClickException(f"No queue url for handler {name}: {e}") from e
    return registry


@click.command()
@click.option(
    "--handler",
    "handler_names",
    type=str,
    required=True,
    multiple=True,
    help="The name of a handler module to run, can be used multiple times",
)
@click.option(
    "--handlers-package",
    type=str,
    default="reply_bus.handlers",
    help="The package the handler modules live in",
)
@click.option(
    "--handlers-path",
    type=str,
    multiple=True,
    help="A directory to add to the import path before loading handlers, multiple allowed",
)
@click.option("--provider", type=str, required=False, help="The queue provider to use (default from settings)")
@click.option(
    "--max-polls",
    type=int,
    default=None,
    help="Stop after this many polls per listener, default is to run until interrupted",
)
@click.option(
    "--failure-suspension",
    type=float,
    default=None,
    help="Seconds a listener is skipped after a failed poll",
)
def main(**kwargs: Any) -> None:
    """Poll the queues of the given handlers and dispatch their messages.

    Each handler listens on the queue named by its queue_url_setting (for
    example TWOWAYS_QUEUE_URL). A listener whose poll fails is suspended for
    the failure suspension while the others keep running.
    """
    if os.path.exists(".env"):
        dotenv.load_dotenv()
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s",
    )
    failure_suspension = kwargs["failure_suspension"]
    if failure_suspension is None:
        failure_suspension = settings.failure_suspension_seconds

    handlers = get_handlers(
        kwargs["handler_names"],
        handlers_package=kwargs["handlers_package"],
        handlers_path=kwargs["handlers_path"],
    )
    registry = build_registry(handlers, settings)

    try:
        transport = get_transport(settings, kwargs["provider"])
    except UnknownProviderError as e:
        raise click.ClickException(str(e)) from e
    try:
        orchestrator = ListenerOrchestrator(transport, registry, failure_suspension=failure_suspension)
        try:
            orchestrator.start(requested_polls=kwargs["max_polls"])
            orchestrator.join()
        except KeyboardInterrupt:
            orchestrator.stop()
            click.secho("Interrupted, listeners stopped", err=True, fg="yellow")
    finally:
        transport.close()


if __name__ == "__main__":
    main()
