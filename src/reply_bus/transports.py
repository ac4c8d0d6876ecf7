"""Transport provider registry.

Maps a provider name (the queue_provider setting) to a factory that builds a
QueueTransport from the settings. Names are case-sensitive.
"""

from typing import Callable

from config import Settings
from reply_bus.exceptions import UnknownProviderError
from reply_bus.persist_base import QueueTransport
from reply_bus.persist_memory import MemoryTransport
from reply_bus.persist_sqs import SQSTransport

TransportFactory = Callable[[Settings], QueueTransport]

_factories: dict[str, TransportFactory] = {}


def register_transport(provider: str, factory: TransportFactory) -> None:
    """Register (or replace) the factory used for a provider name."""
    _factories[provider] = factory


def providers() -> list[str]:
    """Return the registered provider names."""
    return sorted(_factories)


def get_transport(settings: Settings, provider: str | None = None) -> QueueTransport:
    """Build the transport for the given provider, defaulting to settings.queue_provider."""
    name = provider or settings.queue_provider
    factory = _factories.get(name)
    if factory is None:
        raise UnknownProviderError(f"Unsupported queue provider: {name}. Use one of: {', '.join(providers())}")
    return factory(settings)


register_transport(
    "sqs",
    lambda settings: SQSTransport(region_name=settings.aws_region, endpoint_url=settings.sqs_endpoint_url),
)
register_transport("memory", lambda settings: MemoryTransport())
