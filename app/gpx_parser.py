"""Parse GPX track documents into an ordered route point sequence."""

from __future__ import annotations

from typing import List, Optional, Union

import gpxpy
import gpxpy.gpx

from app.domain import UNNAMED_ROUTE, ParsedRoute, RoutePoint
from app.errors import ParseError
from app.geo import path_length
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="gpx_parser")


def _decode(content: Union[str, bytes]) -> str:
    """Return the document as text, rejecting empty or undecodable input."""
    if content is None:
        raise ParseError("GPX content is empty")
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise ParseError(f"GPX content is not valid UTF-8 text: {exc}") from exc
    if not content.strip():
        raise ParseError("GPX content is empty")
    return content


def parse_gpx(content: Union[str, bytes]) -> ParsedRoute:
    """
    Parse a GPX document into a ParsedRoute.

    All track segments are concatenated in document order. The first named
    track provides the route name. Distance is the haversine sum over
    consecutive points, rounded to the nearest meter.

    Raises ParseError for empty input, malformed XML, non-GPX documents, or
    documents without any track points.
    """
    text = _decode(content)

    try:
        gpx = gpxpy.parse(text)
    except (gpxpy.gpx.GPXException, ValueError) as exc:
        raise ParseError(f"Malformed GPX document: {exc}") from exc

    name: Optional[str] = None
    points: List[RoutePoint] = []
    for track in gpx.tracks:
        if name is None and track.name and track.name.strip():
            name = track.name.strip()
        for segment in track.segments:
            for p in segment.points:
                points.append(
                    RoutePoint(
                        lat=float(p.latitude),
                        lon=float(p.longitude),
                        elevation=float(p.elevation) if p.elevation is not None else None,
                        timestamp=p.time,
                    )
                )

    if not points:
        raise ParseError("GPX document contains no track points")

    distance_meters = int(round(path_length(points)))
    logger.debug(
        "Parsed GPX track",
        extra={"route_name": name or UNNAMED_ROUTE, "points": len(points), "distance_m": distance_meters},
    )
    return ParsedRoute(name=name or UNNAMED_ROUTE, points=tuple(points), distance_meters=distance_meters)
