"""Error taxonomy for the reply bus.

Transport errors carry the cause reported by the queue backend. Correlation
and registry errors signal misuse of the broker or the listener registry.
A reply that never arrives is not an error: awaiting returns None.
"""


class ReplyBusError(Exception):
    """Base class for every error raised by the reply bus."""


class TransportError(ReplyBusError):
    """A queue operation failed in the transport."""

    operation = "queue operation"

    def __init__(self, cause: str) -> None:
        super().__init__(f"{self.operation} failed: {cause}")
        self.cause = cause


class SendError(TransportError):
    operation = "send"


class PollError(TransportError):
    operation = "receive"


class AckError(TransportError):
    operation = "delete message"


class QueueCreationError(TransportError):
    operation = "create queue"


class QueueRemovalError(TransportError):
    operation = "delete queue"


class QueueLookupError(TransportError):
    operation = "get queue url"


class NoResponseQueueError(ReplyBusError):
    """The broker has no response queue, so replies cannot be awaited."""


class DuplicateTokenError(ReplyBusError):
    """A correlation token was registered twice."""


class UnknownTokenError(ReplyBusError):
    """A reply was awaited for a token that has no pending slot."""


class StoreClosedError(ReplyBusError):
    """A token was registered after the correlation store was closed."""


class MissingCorrelationError(ReplyBusError):
    """A message lacks the attributes needed to route its reply."""


class DuplicateListenerError(ReplyBusError):
    """Two listeners were registered for the same source queue."""


class RegistryFrozenError(ReplyBusError):
    """A listener was registered after the orchestrator started."""


class UnknownProviderError(ReplyBusError):
    """No transport factory is registered under the requested provider name."""
