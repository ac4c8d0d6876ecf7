"""Base handler interface for listener modules.

Each handler module defines a ``Handler`` class. The process CLI loads handlers
by module name, resolves the queue each one listens on and registers it with
the listener registry. Class attributes carry the polling options.
"""

from abc import ABC, abstractmethod

from reply_bus.queue_model_dto import MAX_BATCH


class BaseHandler(ABC):
    """Abstract base for listener handlers.

    Subclasses set either ``queue_url`` or ``queue_url_setting`` (the name of
    the Settings field holding the URL). ``handle`` returns the reply body, or
    None when the sender expects no reply.
    """

    queue_url: str | None = None
    queue_url_setting: str | None = None
    parallel: bool = True
    max_batch: int = MAX_BATCH
    min_processing_ms: int = 0

    def validate(self, body: str) -> None:
        """Optionally validate the message; raise if invalid."""
        return None

    @abstractmethod
    def handle(self, body: str) -> str | None:
        """Process the message and return the reply body, if any."""
        pass

    def __call__(self, body: str) -> str | None:
        self.validate(body)
        return self.handle(body)
