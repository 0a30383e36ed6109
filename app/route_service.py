"""Route upload, preview and lookup."""

from __future__ import annotations

import datetime as dt
import hashlib
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Union

from app.config import Settings
from app.domain import UNNAMED_ROUTE, ParsedRoute, Route, utcnow
from app.errors import DuplicateKeyError, NotFoundError
from app.geo import elevation_gain
from app.gpx_parser import parse_gpx
from app.route_simplifier import create_render_polyline, optimize_points
from app.storage.base import RouteRepository
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="route_service")


def content_hash(content: Union[str, bytes]) -> str:
    """SHA-256 hex digest of the raw upload; text is hashed as UTF-8."""
    raw = content.encode("utf-8") if isinstance(content, str) else content
    return hashlib.sha256(raw).hexdigest()


@dataclass
class UploadResult:
    route: Route
    is_new: bool


class RouteService:
    """Stores routes idempotently: identical content always resolves to one Route."""

    def __init__(
        self,
        routes: RouteRepository,
        settings: Settings,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.routes = routes
        self.settings = settings
        self.clock = clock

    def parse(self, content: Union[str, bytes]) -> ParsedRoute:
        """Parse without storing anything."""
        return parse_gpx(content)

    def get(self, route_id: str) -> Route:
        route = self.routes.get(route_id)
        if route is None:
            raise NotFoundError(f"Route {route_id} not found")
        return route

    def upload(self, content: Union[str, bytes], owner_id: int, file_name: Optional[str] = None) -> UploadResult:
        """
        Parse and store a track, or return the route already stored for the
        same content. The file name is used when the track itself is unnamed.
        """
        digest = content_hash(content)
        existing = self.routes.find_by_hash(digest)
        if existing is not None:
            logger.info("Route already uploaded", extra={"route_id": existing.id})
            return UploadResult(route=existing, is_new=False)

        parsed = parse_gpx(content)
        name = parsed.name if parsed.name != UNNAMED_ROUTE else (file_name or UNNAMED_ROUTE)

        route = Route(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
            content_hash=digest,
            distance_meters=parsed.distance_meters,
            points=optimize_points(
                parsed.points,
                self.settings.storage_sampling_distance_m,
                self.settings.storage_precision,
            ),
            render_polyline=create_render_polyline(
                parsed.points,
                self.settings.render_tolerance_m,
                self.settings.render_max_points,
            ),
            created_at=self.clock(),
            elevation_gain=elevation_gain(parsed.points),
        )

        try:
            self.routes.create(route)
        except DuplicateKeyError:
            winner = self.routes.find_by_hash(digest)
            if winner is None:
                raise
            logger.info("Concurrent upload won the race; reusing it", extra={"route_id": winner.id})
            return UploadResult(route=winner, is_new=False)

        logger.info(
            "Stored new route",
            extra={"route_id": route.id, "route_name": route.name, "distance_meters": route.distance_meters,
                   "stored_points": len(route.points)},
        )
        return UploadResult(route=route, is_new=True)
