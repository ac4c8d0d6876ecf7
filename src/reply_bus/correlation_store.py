"""Rendezvous between callers awaiting replies and the thread that receives them.

Each correlation token gets a slot. The polling thread publishes reply bodies
into slots; the caller blocks on its own slot until the body arrives or the
timeout passes. Replies that arrive with no slot (late, or early) are kept
for a while so a later registration can still pick them up.
"""

import logging
import threading
import time
from typing import Callable

from reply_bus.exceptions import DuplicateTokenError, StoreClosedError, UnknownTokenError

logger = logging.getLogger(__name__)

DEFAULT_ORPHAN_TTL = 60.0


class _Slot:
    __slots__ = ("body", "delivered", "event")

    def __init__(self) -> None:
        self.body: str | None = None
        self.delivered = False
        self.event = threading.Event()


class CorrelationStore:
    """Thread-safe mapping from correlation token to a pending reply.

    All map access happens under ``lock``. The lock is re-entrant and public
    so the broker can keep its polling flag consistent with the set of
    pending slots.
    """

    def __init__(self, orphan_ttl: float = DEFAULT_ORPHAN_TTL, clock: Callable[[], float] = time.monotonic) -> None:
        self.orphan_ttl = orphan_ttl
        self.lock = threading.RLock()
        self._clock = clock
        self._closed = False
        self._slots: dict[str, _Slot] = {}
        # token -> (body, expires at)
        self._orphans: dict[str, tuple[str, float]] = {}

    def register(self, token: str) -> None:
        """Create an empty slot for the token, filled at once if a buffered reply is waiting."""
        with self.lock:
            if self._closed:
                raise StoreClosedError(f"token {token} registered after the store was closed")
            if token in self._slots:
                raise DuplicateTokenError(f"token {token} is already registered")
            self._drop_expired_orphans()
            slot = _Slot()
            orphan = self._orphans.pop(token, None)
            if orphan is not None:
                self._deliver(slot, orphan[0])
            self._slots[token] = slot

    def publish(self, token: str, body: str) -> bool:
        """Hand a reply to its waiter. Returns False when it was buffered or ignored."""
        with self.lock:
            self._drop_expired_orphans()
            slot = self._slots.get(token)
            if slot is None:
                if self.orphan_ttl > 0 and not self._closed:
                    self._orphans[token] = (body, self._clock() + self.orphan_ttl)
                    logger.info("No waiter for reply %s, buffering it for %ss", token, self.orphan_ttl)
                else:
                    logger.info("No waiter for reply %s, dropping it", token)
                return False
            if slot.delivered:
                logger.info("Duplicate reply for %s ignored", token)
                return False
            self._deliver(slot, body)
            return True

    def await_reply(self, token: str, timeout: float) -> str | None:
        """Block until the reply for token arrives or timeout seconds pass.

        Returns the reply body, or None on timeout or cancellation. The slot is
        removed either way. Once the store is closed a token without a slot was
        cancelled, so it also yields None.
        """
        with self.lock:
            slot = self._slots.get(token)
            if slot is None:
                if self._closed:
                    return None
                raise UnknownTokenError(f"token {token} has no pending slot")
        slot.event.wait(timeout)
        with self.lock:
            if self._slots.get(token) is slot:
                del self._slots[token]
            return slot.body

    def cancel(self, token: str) -> None:
        """Remove the slot without waking its waiter."""
        with self.lock:
            self._slots.pop(token, None)

    def cancel_all(self) -> int:
        """Wake every waiter with no reply, clear all slots and close the store.

        Returns the number cancelled. Later registrations raise StoreClosedError.
        """
        with self.lock:
            self._closed = True
            slots = list(self._slots.values())
            self._slots.clear()
            self._orphans.clear()
        for slot in slots:
            slot.event.set()
        return len(slots)

    @property
    def closed(self) -> bool:
        """True once cancel_all has run."""
        with self.lock:
            return self._closed

    def has_pending(self) -> bool:
        """True while at least one slot is still waiting for its reply."""
        return self.pending_count() > 0

    def pending_count(self) -> int:
        """Number of slots still waiting for their reply."""
        with self.lock:
            return sum(1 for slot in self._slots.values() if not slot.delivered)

    def orphan_count(self) -> int:
        """Number of unexpired replies buffered with no waiter."""
        with self.lock:
            self._drop_expired_orphans()
            return len(self._orphans)

    @staticmethod
    def _deliver(slot: _Slot, body: str) -> None:
        slot.body = body
        slot.delivered = True
        slot.event.set()

    def _drop_expired_orphans(self) -> None:
        now = self._clock()
        for token in [t for t, (_, expires_at) in self._orphans.items() if expires_at <= now]:
            del self._orphans[token]
