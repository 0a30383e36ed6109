"""Spherical geometry primitives shared by every stage of the route pipeline."""

from __future__ import annotations

import math
from typing import List, Protocol, Sequence

from app.domain import RoutePoint

EARTH_RADIUS_M = 6_371_000.0


class LatLon(Protocol):
    """Anything with `lat` and `lon` attributes in decimal degrees."""
    lat: float
    lon: float


def distance(p1: LatLon, p2: LatLon) -> float:
    """Great-circle (haversine) distance between two points, in meters."""
    d_lat = math.radians(p2.lat - p1.lat)
    d_lon = math.radians(p2.lon - p1.lon)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(p1.lat)) * math.cos(math.radians(p2.lat)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def bearing(origin: LatLon, target: LatLon) -> float:
    """Initial bearing (forward azimuth) from origin to target.

    Returns degrees in [0, 360) where 0 is North and 90 is East.
    """
    lat1 = math.radians(origin.lat)
    lat2 = math.radians(target.lat)
    d_lon = math.radians(target.lon - origin.lon)

    x = math.sin(d_lon) * math.cos(lat2)
    y = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lon)

    return (math.degrees(math.atan2(x, y)) + 360) % 360


def elevation_gain(points: Sequence[RoutePoint]) -> float:
    """Sum of positive elevation deltas between consecutive points.

    A pair where either side lacks an elevation contributes nothing; the chain
    resumes at the next pair that has both values.
    """
    gain = 0.0
    for prev, cur in zip(points, points[1:]):
        if prev.elevation is None or cur.elevation is None:
            continue
        delta = cur.elevation - prev.elevation
        if delta > 0:
            gain += delta
    return gain


def path_length(points: Sequence[LatLon]) -> float:
    """Total haversine length of a polyline, in meters."""
    return sum(distance(a, b) for a, b in zip(points, points[1:]))


def add_bearings(points: Sequence[RoutePoint]) -> List[RoutePoint]:
    """Return copies of `points` with the bearing to the next point set.

    The last point never carries a bearing.
    """
    out: List[RoutePoint] = []
    last = len(points) - 1
    for i, point in enumerate(points):
        if i == last:
            out.append(point.with_bearing(None))
        else:
            out.append(point.with_bearing(bearing(point, points[i + 1])))
    return out
