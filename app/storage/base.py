"""Shared protocols for route and forecast-request persistence backends."""

from typing import Optional, Protocol

from app.domain import ForecastRequest, Route


class RouteRepository(Protocol):
    """Protocol for route storage backends. `content_hash` is unique."""

    def get(self, route_id: str) -> Optional[Route]:
        """Fetch a route by id, returning None if missing."""

    def find_by_hash(self, content_hash: str) -> Optional[Route]:
        """Fetch the route uploaded with this content hash, if any."""

    def create(self, route: Route) -> Route:
        """Insert a new route; raise DuplicateKeyError if the content hash exists."""

    def save(self, route: Route) -> None:
        """Persist changes to an existing route."""


class ForecastRequestRepository(Protocol):
    """Protocol for forecast request storage backends. `request_hash` is unique."""

    def get(self, request_id: str) -> Optional[ForecastRequest]:
        """Fetch a request by id, returning None if missing."""

    def find_by_hash(self, request_hash: str) -> Optional[ForecastRequest]:
        """Fetch the request row for this hash, if any."""

    def create(self, request: ForecastRequest) -> ForecastRequest:
        """Insert a new request; raise DuplicateKeyError if the request hash exists."""

    def save(self, request: ForecastRequest) -> None:
        """Persist changes to an existing request."""
