"""Producer side of the bus: send requests and await correlated replies.

The broker owns a private response queue. Every request that expects a reply
is tagged with a fresh Signature and the response queue URL; replies for all
in-flight requests come back through that one queue. A single background
thread long-polls the response queue while anyone is waiting and hands each
reply to the CorrelationStore, where the matching caller is blocked.
"""

import logging
import re
import threading
import uuid

from reply_bus.correlation_store import DEFAULT_ORPHAN_TTL, CorrelationStore
from reply_bus.exceptions import (
    AckError,
    NoResponseQueueError,
    PollError,
    QueueCreationError,
    QueueRemovalError,
    SendError,
    StoreClosedError,
)
from reply_bus.persist_base import LONG_POLL_SECONDS, QueueTransport
from reply_bus.queue_model_dto import MAX_BATCH, RESPONSE_QUEUE_URL_ATTRIBUTE, SIGNATURE_ATTRIBUTE

logger = logging.getLogger(__name__)

DEFAULT_APPLICATION_NAME = "TEST"
RESPONSE_QUEUE_MARKER = "_RQ_TEMP_"
MAX_QUEUE_NAME_LENGTH = 80
# uuid4 in canonical form
_TOKEN_LENGTH = 36
MAX_APPLICATION_NAME_LENGTH = MAX_QUEUE_NAME_LENGTH - len(RESPONSE_QUEUE_MARKER) - _TOKEN_LENGTH

_INVALID_QUEUE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")


def response_queue_name(application_name: str | None = None) -> str:
    """Build a unique response queue name: <application>_RQ_TEMP_<uuid>.

    SQS limits queue names to 80 characters of letters, digits, hyphens and
    underscores, so the application name is sanitised and cut to 35 characters.
    """
    prefix = _INVALID_QUEUE_NAME_CHARS.sub("-", application_name or DEFAULT_APPLICATION_NAME)
    prefix = prefix[:MAX_APPLICATION_NAME_LENGTH]
    return f"{prefix}{RESPONSE_QUEUE_MARKER}{uuid.uuid4()}"


class ResponseBroker:
    """Sends messages and rendezvous with their replies.

    Typical use::

        with ResponseBroker(transport, application_name="geo") as broker:
            reply = broker.send_and_await(queue_url, '{"city": "Santiago"}', timeout=30)
    """

    def __init__(
        self,
        transport: QueueTransport,
        application_name: str | None = None,
        orphan_ttl: float = DEFAULT_ORPHAN_TTL,
        queue_wait_seconds: float = 10.0,
        long_poll_seconds: int = LONG_POLL_SECONDS,
        poll_error_backoff: float = 1.0,
        store: CorrelationStore | None = None,
    ) -> None:
        self.transport = transport
        self.application_name = application_name or DEFAULT_APPLICATION_NAME
        self.queue_wait_seconds = queue_wait_seconds
        self.long_poll_seconds = long_poll_seconds
        self.poll_error_backoff = poll_error_backoff
        self.store = store or CorrelationStore(orphan_ttl=orphan_ttl)

        self._queue_url: str | None = None
        self._degraded = False
        self._queue_ready = threading.Event()
        self._closed = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._startup_thread: threading.Thread | None = None
        # guarded by store.lock
        self._polling = False
        self._poller: threading.Thread | None = None

    @property
    def queue_url(self) -> str | None:
        """URL of the response queue once it has been created."""
        return self._queue_url

    @property
    def degraded(self) -> bool:
        """True when the response queue could not be created."""
        return self._degraded

    @property
    def polling(self) -> bool:
        """True while the response poller thread is running."""
        with self.store.lock:
            return self._polling

    def start(self, background: bool = False) -> None:
        """Create the response queue, optionally on a background thread."""
        if background:
            self._startup_thread = threading.Thread(
                target=self._create_response_queue, name="response-queue-startup", daemon=True
            )
            self._startup_thread.start()
            return
        self._create_response_queue()

    def _create_response_queue(self) -> None:
        queue_name = response_queue_name(self.application_name)
        logger.info("Creating response queue %s", queue_name)
        try:
            self._queue_url = self.transport.create_queue(queue_name)
        except QueueCreationError as e:
            # no automatic retry: requests needing a reply fail until restart
            logger.error("Could not create response queue %s, replies are disabled: %s", queue_name, e)
            self._degraded = True
        finally:
            self._queue_ready.set()

    def send_fire_and_forget(self, target_queue_url: str, body: str) -> None:
        """Send a message that expects no reply. Works without a response queue."""
        logger.info("Sending message to %s, not expecting a reply", target_queue_url)
        self.transport.send(target_queue_url, body, {})

    def send_and_await(self, target_queue_url: str, body: str, timeout: float) -> str | None:
        """Send a request and block until its reply arrives or timeout seconds pass.

        Returns the reply body, or None on timeout or when the broker shuts down
        while the request is in flight.

        Raises:
            NoResponseQueueError: the broker is shut down or degraded, or its queue
                never became ready.
            SendError: the request could not be sent.
        """
        queue_url = self._await_queue_url()
        token = str(uuid.uuid4())
        try:
            self.store.register(token)
        except StoreClosedError as e:
            raise NoResponseQueueError("broker has been shut down") from e
        attributes = {SIGNATURE_ATTRIBUTE: token, RESPONSE_QUEUE_URL_ATTRIBUTE: queue_url}
        logger.info("Sending message %s to %s, expecting a reply", token, target_queue_url)
        try:
            self.transport.send(target_queue_url, body, attributes)
        except SendError:
            self.store.cancel(token)
            raise
        self._ensure_polling()
        reply = self.store.await_reply(token, timeout)
        if reply is None:
            logger.warning("No reply for %s within %ss", token, timeout)
        return reply

    def _await_queue_url(self) -> str:
        if self._closed.is_set():
            raise NoResponseQueueError("broker has been shut down")
        if self._degraded:
            raise NoResponseQueueError("response queue could not be created")
        if self._queue_url is None:
            logger.info("Waiting up to %ss for the response queue", self.queue_wait_seconds)
            self._queue_ready.wait(self.queue_wait_seconds)
        if self._queue_url is None:
            raise NoResponseQueueError("response queue is not available")
        return self._queue_url

    def _ensure_polling(self) -> None:
        with self.store.lock:
            if self._polling:
                return
            self._polling = True
            self._poller = threading.Thread(target=self._poll_loop, name="response-poller", daemon=True)
            self._poller.start()

    def _poll_loop(self) -> None:
        logger.debug("Response polling started")
        while True:
            with self.store.lock:
                if self._closed.is_set() or not self.store.has_pending():
                    self._polling = False
                    logger.debug("Response polling stopped")
                    return
            try:
                messages = self.transport.receive(self._queue_url, MAX_BATCH, self.long_poll_seconds)
            except PollError as e:
                logger.error("Polling the response queue failed: %s", e)
                self._closed.wait(self.poll_error_backoff)
                continue
            for message in messages:
                self._take_reply(message)

    def _take_reply(self, message) -> None:
        try:
            self.transport.delete_message(self._queue_url, message.receipt_handle)
        except AckError as e:
            logger.error("Could not delete reply %s: %s", message.receipt_handle, e)
        token = message.signature
        if token is None:
            logger.warning("Dropping reply without a %s attribute", SIGNATURE_ATTRIBUTE)
            return
        self.store.publish(token, message.body)

    def shutdown(self, join_timeout: float | None = None) -> None:
        """Release waiters, delete the response queue and stop polling. Idempotent."""
        with self._shutdown_lock:
            if self._closed.is_set():
                return
            self._closed.set()
        cancelled = self.store.cancel_all()
        if cancelled:
            logger.info("Cancelled %d pending request(s)", cancelled)
        if self._startup_thread is not None:
            self._startup_thread.join(join_timeout)
        if self._queue_url is not None:
            logger.info("Deleting response queue %s", self._queue_url)
            try:
                self.transport.delete_queue(self._queue_url)
            except QueueRemovalError as e:
                logger.error("Error while deleting the response queue: %s", e)
        poller = self._poller
        if poller is not None and poller is not threading.current_thread():
            poller.join(join_timeout)

    def __enter__(self) -> "ResponseBroker":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()
