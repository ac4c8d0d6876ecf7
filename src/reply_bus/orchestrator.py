"""Consumer side of the bus: poll every registered listener and dispatch batches.

A single scheduler thread walks the listeners in a loop. Each listener has at
most one poll task in flight; a new poll starts only after the previous poll's
batch has been fully dispatched. A poll that fails suspends its listener for
a while without affecting the others.

Bounded mode (``requested_polls``) stops after a fixed number of polls per
listener and waits for them, which makes the scheduler deterministic in tests.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from reply_bus.dispatcher import Dispatcher
from reply_bus.listeners import ListenerRegistry
from reply_bus.persist_base import LONG_POLL_SECONDS, QueueTransport
from reply_bus.queue_model_dto import ListenerDescriptor

logger = logging.getLogger(__name__)

FAILURE_SUSPENSION = 5 * 60.0
IDLE_SLEEP = 0.01


class ListenerOrchestrator:
    """Schedules polls for the listeners of a registry.

    ``in_flight``, ``poll_count`` and ``suspended_until`` are only touched by
    the scheduler thread.
    """

    def __init__(
        self,
        transport: QueueTransport,
        registry: ListenerRegistry,
        dispatcher: Dispatcher | None = None,
        failure_suspension: float = FAILURE_SUSPENSION,
        long_poll_seconds: int = LONG_POLL_SECONDS,
        idle_sleep: float = IDLE_SLEEP,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.transport = transport
        self.registry = registry
        self.dispatcher = dispatcher or Dispatcher(transport)
        self.failure_suspension = failure_suspension
        self.long_poll_seconds = long_poll_seconds
        self.idle_sleep = idle_sleep
        self._clock = clock

        self.in_flight: dict[str, Future] = {}
        self.poll_count: dict[str, int] = {}
        self.suspended_until: dict[str, float] = {}

        self._stopping = threading.Event()
        self._stop_lock = threading.Lock()
        self._scheduler: threading.Thread | None = None
        self._pool: ThreadPoolExecutor | None = None

    def start(self, requested_polls: int | None = None) -> None:
        """Run the scheduler on a dedicated thread."""
        if self._scheduler is not None:
            raise RuntimeError("orchestrator already started")
        self._scheduler = threading.Thread(
            target=self.run, args=(requested_polls,), name="listener-scheduler", daemon=True
        )
        self._scheduler.start()

    def run(self, requested_polls: int | None = None) -> None:
        """Run the scheduler in the calling thread until stop() or the poll limit."""
        self.registry.freeze()
        descriptors = self.registry.descriptors()
        if not descriptors:
            logger.warning("No listeners registered, nothing to poll")
            return
        self.poll_count = {d.source_queue_url: 0 for d in descriptors}
        logger.info("Launching %d listener(s)", len(descriptors))
        self._pool = ThreadPoolExecutor(max_workers=len(descriptors), thread_name_prefix="listener")
        try:
            while not self._stopping.is_set() and not self._polls_exhausted(requested_polls):
                started = False
                for descriptor in descriptors:
                    started |= self._schedule(descriptor, requested_polls)
                if not started:
                    self._stopping.wait(self.idle_sleep)
            self._drain()
        finally:
            self._pool.shutdown(wait=True)
        logger.info("Listener scheduler stopped")

    def stop(self, timeout: float | None = None) -> None:
        """Ask the scheduler to exit and wait for in-flight polls. Idempotent."""
        with self._stop_lock:
            self._stopping.set()
        scheduler = self._scheduler
        if scheduler is not None and scheduler is not threading.current_thread():
            scheduler.join(timeout)

    def join(self, timeout: float | None = None) -> None:
        """Wait for a started scheduler to finish."""
        if self._scheduler is not None:
            self._scheduler.join(timeout)

    @property
    def running(self) -> bool:
        """True while a started scheduler thread is alive."""
        return self._scheduler is not None and self._scheduler.is_alive()

    def is_suspended(self, queue_url: str) -> bool:
        """True while the listener on queue_url sits out a failure suspension."""
        deadline = self.suspended_until.get(queue_url)
        return deadline is not None and deadline > self._clock()

    def _polls_exhausted(self, requested_polls: int | None) -> bool:
        if requested_polls is None:
            return False
        return all(count >= requested_polls for count in self.poll_count.values())

    def _schedule(self, descriptor: ListenerDescriptor, requested_polls: int | None) -> bool:
        url = descriptor.source_queue_url
        self._harvest(url)
        if self.is_suspended(url):
            return False
        if requested_polls is not None and self.poll_count[url] >= requested_polls:
            return False
        if url in self.in_flight:
            return False
        self.in_flight[url] = self._pool.submit(self._poll, descriptor)
        if requested_polls is not None:
            self.poll_count[url] += 1
        return True

    def _harvest(self, url: str) -> None:
        future = self.in_flight.get(url)
        if future is None or not future.done():
            return
        del self.in_flight[url]
        error = future.exception()
        if error is not None:
            self.suspended_until[url] = self._clock() + self.failure_suspension
            logger.error(
                "Polling for %s failed, retrying in %ss: %s",
                url,
                self.failure_suspension,
                error,
                exc_info=error,
            )

    def _drain(self) -> None:
        for url, future in list(self.in_flight.items()):
            # exceptions are inspected by _harvest
            future.exception()
            self._harvest(url)

    def _poll(self, descriptor: ListenerDescriptor) -> None:
        url = descriptor.source_queue_url
        logger.debug("Polling messages for queue %s", url)
        messages = self.transport.receive(url, descriptor.max_batch, self.long_poll_seconds)
        if not messages:
            logger.debug("No messages received for queue %s", url)
            return
        logger.info("Received %d message(s) from %s", len(messages), url)
        self.dispatcher.dispatch(
            url,
            messages,
            descriptor.handler,
            parallel=descriptor.parallel,
            min_processing_ms=descriptor.min_processing_ms,
        )
