"""Handler for coordinate submissions on the one-way queue."""

import json

from reply_bus.coordinates import CoordinatesRepository, get_repository
from reply_bus.handlers.base import BaseHandler


class Handler(BaseHandler):
    """Stores {"name", "lat", "lon"} submissions; sends no reply."""

    queue_url_setting = "oneway_queue_url"

    def __init__(self, repository: CoordinatesRepository | None = None) -> None:
        self.repository = repository or get_repository()

    def validate(self, body: str) -> None:
        """Reject submissions missing a name or coordinates."""
        data = json.loads(body)
        missing = [key for key in ("name", "lat", "lon") if key not in data]
        if missing:
            raise ValueError(f"Submission missing {', '.join(missing)}")

    def handle(self, body: str) -> str | None:
        data = json.loads(body)
        self.repository.add_coordinates(data["name"], float(data["lat"]), float(data["lon"]))
        return None
