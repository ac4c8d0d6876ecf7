"""City coordinates example built on the bus.

The consumer side keeps coordinates in a CoordinatesRepository and answers
queries from it; the producer side uses CoordinatesClient to query a city
(two-way) or to submit new coordinates (one-way).
"""

import json
import logging
import threading

from reply_bus.exceptions import NoResponseQueueError, SendError
from reply_bus.response_broker import ResponseBroker

logger = logging.getLogger(__name__)

DEFAULT_COORDINATES = {
    "Santiago": (-33.447487, -70.673676),
    "Coquimbo": (-30.657041, -71.8844573),
}


class CoordinatesRepository:
    """In-memory city -> (lat, lon) store."""

    def __init__(self, coordinates: dict[str, tuple[float, float]] | None = None) -> None:
        self._coordinates = dict(DEFAULT_COORDINATES if coordinates is None else coordinates)
        self._lock = threading.Lock()

    def get_coordinates(self, city: str) -> tuple[float, float] | None:
        with self._lock:
            return self._coordinates.get(city)

    def add_coordinates(self, city: str, lat: float, lon: float) -> None:
        with self._lock:
            self._coordinates[city] = (lat, lon)


_default_repository = CoordinatesRepository()


def get_repository() -> CoordinatesRepository:
    """Return the repository shared by the coordinate handlers of this process."""
    return _default_repository


class CoordinatesClient:
    """Producer-side access to the coordinates listeners."""

    def __init__(
        self,
        broker: ResponseBroker,
        twoways_queue_url: str,
        oneway_queue_url: str | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.broker = broker
        self.twoways_queue_url = twoways_queue_url
        self.oneway_queue_url = oneway_queue_url
        self.timeout = timeout

    def query_coordinates(self, city: str) -> dict | None:
        """Ask for a city's coordinates. Returns the decoded reply, or None if none arrived."""
        request = json.dumps({"city": city})
        try:
            response = self.broker.send_and_await(self.twoways_queue_url, request, self.timeout)
        except (SendError, NoResponseQueueError) as e:
            logger.error("Coordinates query for %s failed: %s", city, e)
            return None
        if response is None:
            return None
        return json.loads(response)

    def submit_coordinates(self, name: str, lat: float, lon: float) -> None:
        """Send new coordinates without waiting for a reply."""
        if not self.oneway_queue_url:
            raise ValueError("No one-way queue url configured")
        request = json.dumps({"name": name, "lat": lat, "lon": lon})
        try:
            self.broker.send_fire_and_forget(self.oneway_queue_url, request)
        except SendError as e:
            logger.error("Coordinates submission for %s failed: %s", name, e)
