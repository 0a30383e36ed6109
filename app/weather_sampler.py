"""Pick the smallest set of coordinates that covers a route for weather queries.

Two-step process:
1. Downsample by distance (default 10 km), always keeping the final point.
2. Deduplicate by grid key (0.01 degree cell, about 1.1 km), keeping the first
   occurrence. Loops and out-and-back routes collapse to far fewer cells.

Example: a 100 km straight route yields about 11 coordinates; a 100 km loop
yields fewer because the return leg revisits cells.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence

from app.domain import Coordinates, RoutePoint, TimedCoordinate, coords_key
from app.geo import distance

WEATHER_SAMPLING_DISTANCE_M = 10_000


@dataclass(frozen=True)
class _Sample:
    lat: float
    lon: float
    distance_from_start_m: float


def _walk(points: Sequence[RoutePoint], sampling_distance_m: float, total_distance_m: float | None = None) -> List[_Sample]:
    """Distance walk that records the cumulative distance of each retained point."""
    first = points[0]
    samples = [_Sample(first.lat, first.lon, 0.0)]
    last_kept = first
    accumulated = 0.0
    cumulative = 0.0
    for prev, point in zip(points, points[1:]):
        step = distance(prev, point)
        accumulated += step
        cumulative += step
        if accumulated >= sampling_distance_m:
            samples.append(_Sample(point.lat, point.lon, cumulative))
            last_kept = point
            accumulated = 0.0

    end = points[-1]
    if last_kept is not end:
        end_distance = total_distance_m if total_distance_m is not None else cumulative
        samples.append(_Sample(end.lat, end.lon, end_distance))
    return samples


def sample_for_weather(
    points: Sequence[RoutePoint],
    sampling_distance_m: float = WEATHER_SAMPLING_DISTANCE_M,
) -> List[Coordinates]:
    """Return deduplicated coordinates along the route, start and end included."""
    if not points:
        return []

    seen: set[str] = set()
    unique: List[Coordinates] = []
    for sample in _walk(points, sampling_distance_m):
        key = coords_key(sample.lat, sample.lon)
        if key in seen:
            continue
        seen.add(key)
        unique.append(Coordinates(lat=sample.lat, lon=sample.lon))
    return unique


def sample_for_weather_with_time(
    points: Sequence[RoutePoint],
    total_distance_meters: float,
    estimated_time_hours: float,
    sampling_distance_m: float = WEATHER_SAMPLING_DISTANCE_M,
) -> List[TimedCoordinate]:
    """
    Like `sample_for_weather`, but each coordinate carries the hour offset at
    which the rider is expected to reach it, assuming constant average speed.
    When several samples share a cell the earliest offset wins.
    """
    if not points:
        return []

    speed_m_per_h = total_distance_meters / estimated_time_hours if estimated_time_hours > 0 else 0.0

    seen: Dict[str, TimedCoordinate] = {}
    for sample in _walk(points, sampling_distance_m, total_distance_meters):
        hour_offset = sample.distance_from_start_m / speed_m_per_h if speed_m_per_h > 0 else 0.0
        key = coords_key(sample.lat, sample.lon)
        existing = seen.get(key)
        if existing is None or hour_offset < existing.hour_offset:
            seen[key] = TimedCoordinate(lat=sample.lat, lon=sample.lon, hour_offset=hour_offset)
    return list(seen.values())
