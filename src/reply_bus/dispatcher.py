"""Run a listener's handler over a received batch.

Each message goes through the same steps: call the handler, route its reply
(if any), ack the message, then pad to the minimum processing time. Handler
and ack failures are logged and never stop the rest of the batch.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Optional

from reply_bus.exceptions import AckError
from reply_bus.persist_base import QueueTransport
from reply_bus.queue_model_dto import QueueMessage
from reply_bus.reply_router import ReplyRouter

logger = logging.getLogger(__name__)

Handler = Callable[[str], Optional[str]]


class Dispatcher:
    """Processes batches sequentially (in received order) or one thread per message."""

    def __init__(
        self,
        transport: QueueTransport,
        router: ReplyRouter | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.router = router or ReplyRouter(transport)
        self._sleep = sleep
        self._clock = clock

    def dispatch(
        self,
        queue_url: str,
        messages: list[QueueMessage],
        handler: Handler,
        parallel: bool = True,
        min_processing_ms: int = 0,
    ) -> None:
        """Process every message of the batch and return once all are acked."""
        if not messages:
            return
        if parallel and len(messages) > 1:
            with ThreadPoolExecutor(max_workers=len(messages), thread_name_prefix="dispatch") as pool:
                futures = [
                    pool.submit(self.process_message, queue_url, message, handler, min_processing_ms)
                    for message in messages
                ]
                for future in futures:
                    future.result()
            return
        for message in messages:
            self.process_message(queue_url, message, handler, min_processing_ms)

    def process_message(
        self,
        queue_url: str,
        message: QueueMessage,
        handler: Handler,
        min_processing_ms: int = 0,
    ) -> None:
        """Handle, reply, ack and pace a single message."""
        start = self._clock()
        try:
            reply = handler(message.body)
        except Exception:
            logger.exception("Handler failed for message %s", message.message_id)
            reply = None
        if reply:
            self.router.route(message, reply)
        try:
            self.transport.delete_message(queue_url, message.receipt_handle)
        except AckError as e:
            # the message will be redelivered
            logger.error("Could not delete message %s: %s", message.receipt_handle, e)
        elapsed_ms = (self._clock() - start) * 1000
        if elapsed_ms < min_processing_ms:
            remaining_ms = min_processing_ms - elapsed_ms
            logger.debug("Waiting %.0f ms to reach the minimum processing time", remaining_ms)
            self._sleep(remaining_ms / 1000)
