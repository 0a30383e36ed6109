"""Reduce raw track points for storage and for map rendering.

Two independent outputs are produced from the same raw sequence:

- a storage representation: distance-downsampled, rounded points with bearings;
- a render geometry: Douglas-Peucker simplified coordinates encoded as a
  Google polyline string, bounded in size.

Both always keep the true first and last coordinates of the route.
"""

from __future__ import annotations

import math
from typing import List, Sequence, Tuple

import polyline

from app.domain import RoutePoint
from app.geo import add_bearings, distance
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="route_simplifier")

DEFAULT_SAMPLING_DISTANCE_M = 2000
DEFAULT_PRECISION = 5
DEFAULT_RENDER_TOLERANCE_M = 7.0
DEFAULT_RENDER_MAX_POINTS = 300
RENDER_FALLBACK_STEP_M = 500
POLYLINE_PRECISION = 5

METERS_PER_DEGREE_LAT = 111_320.0


def downsample(points: Sequence[RoutePoint], min_distance_m: float) -> List[RoutePoint]:
    """
    Keep a point each time the distance walked since the last kept point
    reaches `min_distance_m`. The first and last points are always kept.
    """
    if not points:
        return []

    result: List[RoutePoint] = [points[0]]
    last = points[0]
    accumulated = 0.0
    for point in points[1:]:
        accumulated += distance(last, point)
        last = point
        if accumulated >= min_distance_m:
            result.append(point)
            accumulated = 0.0

    if len(points) > 1 and result[-1] is not points[-1]:
        result.append(points[-1])
    return result


def _round_point(point: RoutePoint, precision: int) -> RoutePoint:
    """Round coordinates to `precision` decimals and elevation to whole meters."""
    return RoutePoint(
        lat=round(point.lat, precision),
        lon=round(point.lon, precision),
        elevation=float(round(point.elevation)) if point.elevation is not None else None,
        timestamp=point.timestamp,
    )


def optimize_points(
    points: Sequence[RoutePoint],
    sampling_distance_m: float = DEFAULT_SAMPLING_DISTANCE_M,
    precision: int = DEFAULT_PRECISION,
) -> List[RoutePoint]:
    """Compact a raw track for storage: downsample, round, recompute bearings."""
    sampled = downsample(points, sampling_distance_m)
    optimized = add_bearings([_round_point(p, precision) for p in sampled])
    logger.debug(
        "Optimized route points for storage",
        extra={"raw_points": len(points), "stored_points": len(optimized)},
    )
    return optimized


def _project(points: Sequence[RoutePoint]) -> List[Tuple[float, float]]:
    """Project to a local flat plane in meters (equirectangular around the mid latitude)."""
    lats = [p.lat for p in points]
    mid_lat = (min(lats) + max(lats)) / 2
    meters_per_deg_lon = METERS_PER_DEGREE_LAT * math.cos(math.radians(mid_lat))
    return [(p.lon * meters_per_deg_lon, p.lat * METERS_PER_DEGREE_LAT) for p in points]


def perpendicular_distance(pt: Tuple[float, float], start: Tuple[float, float], end: Tuple[float, float]) -> float:
    """Distance from `pt` to the segment start-end in projected meters."""
    sx, sy = start
    ex, ey = end
    px, py = pt
    dx = ex - sx
    dy = ey - sy
    seg_len_sq = dx * dx + dy * dy
    if seg_len_sq == 0:
        return math.hypot(px - sx, py - sy)
    t = ((px - sx) * dx + (py - sy) * dy) / seg_len_sq
    t = max(0.0, min(1.0, t))
    return math.hypot(px - (sx + t * dx), py - (sy + t * dy))


def _douglas_peucker(projected: Sequence[Tuple[float, float]], first: int, last: int,
                     tolerance: float, keep: List[bool]) -> None:
    """Mark the indices between first and last that must be kept.

    Uses an explicit stack so long tracks cannot hit the recursion limit.
    """
    stack = [(first, last)]
    while stack:
        lo, hi = stack.pop()
        if hi <= lo + 1:
            continue
        max_dist = -1.0
        index = lo
        for i in range(lo + 1, hi):
            d = perpendicular_distance(projected[i], projected[lo], projected[hi])
            if d > max_dist:
                max_dist = d
                index = i
        if max_dist > tolerance:
            keep[index] = True
            stack.append((lo, index))
            stack.append((index, hi))


def douglas_peucker(points: Sequence[RoutePoint], tolerance_m: float) -> List[RoutePoint]:
    """Douglas-Peucker line simplification with a tolerance in meters."""
    if len(points) <= 2:
        return list(points)
    projected = _project(points)
    keep = [False] * len(points)
    keep[0] = keep[-1] = True
    _douglas_peucker(projected, 0, len(points) - 1, tolerance_m, keep)
    return [p for p, k in zip(points, keep) if k]


def simplify_for_render(
    points: Sequence[RoutePoint],
    tolerance_m: float = DEFAULT_RENDER_TOLERANCE_M,
    max_points: int = DEFAULT_RENDER_MAX_POINTS,
) -> List[RoutePoint]:
    """Simplify a track for drawing, falling back to a coarse downsample if still too dense."""
    simplified = douglas_peucker(points, tolerance_m)
    if len(simplified) > max_points:
        logger.debug(
            "Douglas-Peucker output too large; using distance downsample",
            extra={"simplified_points": len(simplified), "max_points": max_points},
        )
        simplified = downsample(points, RENDER_FALLBACK_STEP_M)
    return simplified


def create_render_polyline(
    points: Sequence[RoutePoint],
    tolerance_m: float = DEFAULT_RENDER_TOLERANCE_M,
    max_points: int = DEFAULT_RENDER_MAX_POINTS,
) -> str:
    """Return the encoded polyline for the simplified render geometry."""
    if not points:
        return ""
    simplified = simplify_for_render(points, tolerance_m, max_points)
    return polyline.encode([(p.lat, p.lon) for p in simplified], POLYLINE_PRECISION)


def decode_render_polyline(encoded: str) -> List[Tuple[float, float]]:
    """Decode a stored render polyline into (lat, lon) pairs."""
    if not encoded:
        return []
    return polyline.decode(encoded, POLYLINE_PRECISION)
