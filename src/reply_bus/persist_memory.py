"""In-process queue transport.

Behaves like SQS for the operations the bus uses: long-poll receive, messages
invisible while in flight, redelivery when the visibility timeout expires and
deletion by receipt handle. Used for local development and tests; queues live
only as long as the transport object.
"""

import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field

from reply_bus.exceptions import (
    AckError,
    PollError,
    QueueCreationError,
    QueueLookupError,
    QueueRemovalError,
    SendError,
)
from reply_bus.persist_base import LONG_POLL_SECONDS, QueueTransport
from reply_bus.queue_model_dto import MAX_BATCH, QueueMessage

logger = logging.getLogger(__name__)

URL_SCHEME = "memory://"


@dataclass
class _StoredMessage:
    message_id: str
    body: str
    attributes: dict[str, str]


@dataclass
class _MemoryQueue:
    name: str
    visible: deque = field(default_factory=deque)
    # receipt handle -> (message, visible again at)
    in_flight: dict[str, tuple[_StoredMessage, float]] = field(default_factory=dict)

    def requeue_expired(self, now: float) -> None:
        for handle, (message, expires_at) in list(self.in_flight.items()):
            if expires_at <= now:
                del self.in_flight[handle]
                self.visible.append(message)

    def next_expiry(self) -> float | None:
        return min((expires_at for _, expires_at in self.in_flight.values()), default=None)


class MemoryTransport(QueueTransport):
    """Queue transport backed by in-process queues.

    One condition variable guards every queue; senders and queue deletion
    wake long-polling receivers.
    """

    def __init__(self, visibility_timeout: float = 30.0) -> None:
        self.visibility_timeout = visibility_timeout
        self._queues: dict[str, _MemoryQueue] = {}
        self._condition = threading.Condition()

    @staticmethod
    def url_for(queue_name: str) -> str:
        """Return the URL a queue with this name gets."""
        return f"{URL_SCHEME}{queue_name}"

    def create_queue(self, queue_name: str) -> str:
        """Create the queue; an existing queue with the same name is reused."""
        if not queue_name:
            raise QueueCreationError("queue name must not be empty")
        url = self.url_for(queue_name)
        with self._condition:
            self._queues.setdefault(url, _MemoryQueue(name=queue_name))
        return url

    def delete_queue(self, queue_url: str) -> None:
        """Drop the queue and wake anyone polling it."""
        with self._condition:
            if self._queues.pop(queue_url, None) is None:
                raise QueueRemovalError(f"queue {queue_url} does not exist")
            self._condition.notify_all()

    def get_queue_url(self, queue_name: str) -> str | None:
        """Return the queue URL or None if no such queue exists."""
        if not queue_name:
            raise QueueLookupError("queue name must not be empty")
        url = self.url_for(queue_name)
        with self._condition:
            return url if url in self._queues else None

    def send(self, queue_url: str, body: str, attributes: dict[str, str] | None = None) -> None:
        """Append the message and wake receivers."""
        with self._condition:
            queue = self._queues.get(queue_url)
            if queue is None:
                raise SendError(f"queue {queue_url} does not exist")
            queue.visible.append(_StoredMessage(str(uuid.uuid4()), body, dict(attributes or {})))
            self._condition.notify_all()

    def receive(
        self,
        queue_url: str,
        max_messages: int = MAX_BATCH,
        wait_seconds: int = LONG_POLL_SECONDS,
    ) -> list[QueueMessage]:
        """Wait up to wait_seconds for visible messages and mark them in flight."""
        max_messages = max(1, min(max_messages, MAX_BATCH))
        deadline = time.monotonic() + wait_seconds
        with self._condition:
            while True:
                queue = self._queues.get(queue_url)
                if queue is None:
                    raise PollError(f"queue {queue_url} does not exist")
                now = time.monotonic()
                queue.requeue_expired(now)
                if queue.visible:
                    return self._take(queue, max_messages, now)
                remaining = deadline - now
                if remaining <= 0:
                    return []
                next_expiry = queue.next_expiry()
                if next_expiry is not None:
                    remaining = min(remaining, max(next_expiry - now, 0.0))
                self._condition.wait(remaining)

    def delete_message(self, queue_url: str, receipt_handle: str) -> None:
        """Remove an in-flight message by its receipt handle."""
        with self._condition:
            queue = self._queues.get(queue_url)
            if queue is None:
                raise AckError(f"queue {queue_url} does not exist")
            if queue.in_flight.pop(receipt_handle, None) is None:
                raise AckError(f"receipt handle {receipt_handle} is not valid")

    def queue_depth(self, queue_url: str) -> int:
        """Number of messages in the queue, visible or in flight."""
        with self._condition:
            queue = self._queues.get(queue_url)
            if queue is None:
                raise QueueLookupError(f"queue {queue_url} does not exist")
            return len(queue.visible) + len(queue.in_flight)

    def _take(self, queue: _MemoryQueue, max_messages: int, now: float) -> list[QueueMessage]:
        received = []
        while queue.visible and len(received) < max_messages:
            stored = queue.visible.popleft()
            handle = str(uuid.uuid4())
            queue.in_flight[handle] = (stored, now + self.visibility_timeout)
            received.append(
                QueueMessage(
                    body=stored.body,
                    receipt_handle=handle,
                    attributes=dict(stored.attributes),
                    message_id=stored.message_id,
                )
            )
        logger.debug("memory - %d message(s) received from %s", len(received), queue.name)
        return received
