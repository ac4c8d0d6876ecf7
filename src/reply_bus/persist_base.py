"""Abstract base for queue transports.

Defines the queue operations the broker and the orchestrator rely on:
creating, looking up and deleting queues, sending, long-poll receiving and
deleting (acking) messages. Implementations (e.g. SQSTransport) provide the
concrete backend and must be safe to use from several threads at once.
"""

from abc import ABC, abstractmethod

from reply_bus.queue_model_dto import QueueMessage

LONG_POLL_SECONDS = 20


class QueueTransport(ABC):
    """Abstract base class for queue transports.

    Every operation raises the matching TransportError subclass on failure
    (SendError, PollError, AckError, QueueCreationError, QueueRemovalError,
    QueueLookupError).
    """

    @abstractmethod
    def create_queue(self, queue_name: str) -> str:
        """Create a queue and return its URL."""
        pass

    @abstractmethod
    def delete_queue(self, queue_url: str) -> None:
        """Delete the queue and its messages."""
        pass

    @abstractmethod
    def get_queue_url(self, queue_name: str) -> str | None:
        """Return the URL of the named queue, or None if it does not exist."""
        pass

    @abstractmethod
    def send(self, queue_url: str, body: str, attributes: dict[str, str] | None = None) -> None:
        """Send a message with optional string attributes."""
        pass

    @abstractmethod
    def receive(
        self,
        queue_url: str,
        max_messages: int = 10,
        wait_seconds: int = LONG_POLL_SECONDS,
    ) -> list[QueueMessage]:
        """Long-poll for up to max_messages. Returns an empty list when none arrive in time."""
        pass

    @abstractmethod
    def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """Permanently delete (ack) a received message."""
        pass

    def close(self) -> None:
        """Release client resources."""
        return None
