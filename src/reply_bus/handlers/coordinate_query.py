"""Handler for coordinate queries on the two-way queue.

Replies with the city's coordinates, NO_RESULTS when the city is unknown or
INTERNAL_SERVER_ERROR when the request cannot be read.
"""

import json
import logging

from reply_bus.coordinates import CoordinatesRepository, get_repository
from reply_bus.handlers.base import BaseHandler

logger = logging.getLogger(__name__)


class Handler(BaseHandler):
    """Looks up {"city": ...} requests and replies with lat/lon."""

    queue_url_setting = "twoways_queue_url"
    parallel = False
    min_processing_ms = 20

    def __init__(self, repository: CoordinatesRepository | None = None) -> None:
        self.repository = repository or get_repository()

    def handle(self, body: str) -> str | None:
        try:
            city = json.loads(body)["city"]
            coordinates = self.repository.get_coordinates(city)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Invalid coordinate query %r: %s", body, e)
            return json.dumps({"status": "INTERNAL_SERVER_ERROR"})
        if coordinates is None:
            return json.dumps({"status": "NO_RESULTS"})
        lat, lon = coordinates
        return json.dumps({"name": city, "lat": lat, "lon": lon, "status": "OK"})
