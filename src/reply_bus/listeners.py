"""Listener registry.

Listeners are registered explicitly with a ListenerDescriptor, through the
``listener`` decorator, or from a BaseHandler whose class attributes carry the
polling options. The registry is frozen once the orchestrator starts.
"""

import logging
import threading
from typing import Callable, Iterator

from config import Settings
from reply_bus.exceptions import DuplicateListenerError, RegistryFrozenError
from reply_bus.handlers.base import BaseHandler
from reply_bus.queue_model_dto import MAX_BATCH, ListenerDescriptor

logger = logging.getLogger(__name__)


class ListenerRegistry:
    """Write-once collection of listener descriptors keyed by source queue URL."""

    def __init__(self) -> None:
        self._descriptors: dict[str, ListenerDescriptor] = {}
        self._frozen = False
        self._lock = threading.Lock()

    def register(self, descriptor: ListenerDescriptor) -> ListenerDescriptor:
        """Add a descriptor. Each source queue may only have one listener."""
        with self._lock:
            if self._frozen:
                raise RegistryFrozenError("listeners cannot be registered after the orchestrator started")
            if descriptor.source_queue_url in self._descriptors:
                raise DuplicateListenerError(f"a listener for {descriptor.source_queue_url} is already registered")
            self._descriptors[descriptor.source_queue_url] = descriptor
        logger.info(
            "Registered listener for %s (parallel=%s, max_batch=%d, min_processing_ms=%d)",
            descriptor.source_queue_url,
            descriptor.parallel,
            descriptor.max_batch,
            descriptor.min_processing_ms,
        )
        return descriptor

    def listener(
        self,
        queue_url: str,
        parallel: bool = True,
        max_batch: int = MAX_BATCH,
        min_processing_ms: int = 0,
    ) -> Callable:
        """Decorator registering a function as the handler for queue_url."""

        def decorator(handler: Callable) -> Callable:
            self.register(
                ListenerDescriptor(
                    source_queue_url=queue_url,
                    handler=handler,
                    parallel=parallel,
                    max_batch=max_batch,
                    min_processing_ms=min_processing_ms,
                )
            )
            return handler

        return decorator

    def register_handler(self, handler: BaseHandler, settings: Settings | None = None) -> ListenerDescriptor:
        """Register a handler object using its polling options and queue URL."""
        return self.register(descriptor_for(handler, settings))

    def freeze(self) -> None:
        """Refuse further registrations; called once listeners are launched."""
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        """True once freeze has been called."""
        return self._frozen

    def get(self, queue_url: str) -> ListenerDescriptor | None:
        """Return the listener registered for queue_url, or None."""
        return self._descriptors.get(queue_url)

    def descriptors(self) -> list[ListenerDescriptor]:
        """Snapshot of the registered listeners in registration order."""
        with self._lock:
            return list(self._descriptors.values())

    def __iter__(self) -> Iterator[ListenerDescriptor]:
        return iter(self.descriptors())

    def __len__(self) -> int:
        return len(self._descriptors)


def descriptor_for(handler: BaseHandler, settings: Settings | None = None) -> ListenerDescriptor:
    """Build a descriptor from a handler's class attributes.

    The queue URL is the handler's ``queue_url`` or, failing that, the value of
    the setting named by ``queue_url_setting``.

    Raises:
        ValueError: No queue URL could be resolved.
    """
    queue_url = handler.queue_url
    if not queue_url and handler.queue_url_setting and settings is not None:
        queue_url = getattr(settings, handler.queue_url_setting, None)
    if not queue_url:
        raise ValueError(f"No queue url configured for handler {type(handler).__module__}")
    return ListenerDescriptor(
        source_queue_url=queue_url,
        handler=handler,
        parallel=handler.parallel,
        max_batch=handler.max_batch,
        min_processing_ms=handler.min_processing_ms,
    )
