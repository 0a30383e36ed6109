"""Estimate how long a cyclist needs for a route from distance and climbing."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from app.domain import RoutePoint
from app.geo import elevation_gain as compute_elevation_gain


@dataclass(frozen=True)
class RouteTimeEstimate:
    """Estimated ride duration and the speed it assumes."""
    estimated_time_hours: float
    adjusted_speed_kmh: float
    elevation_gain: int


def _base_speed_kmh(distance_km: float) -> float:
    """Longer rides are ridden by fitter riders at a steadier pace."""
    if distance_km > 50:
        return 20.0
    if distance_km >= 20:
        return 16.0
    return 12.0


def _climb_multiplier(gain_m: float) -> float:
    if gain_m > 2000:
        return 0.65
    if gain_m > 1000:
        return 0.8
    return 1.0


def _round_half_up(value: float, digits: int = 1) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def estimate_route_time(
    distance_meters: float,
    points: Sequence[RoutePoint],
    elevation_gain: Optional[float] = None,
) -> RouteTimeEstimate:
    """
    Estimate ride time for a route. A known `elevation_gain` is used as is;
    otherwise it is summed from `points`.

    Example: 80 km with 2500 m of climbing rides at 20 * 0.65 = 13 km/h, so
    80 / 13 = 6.15 h, reported as 6.2 h.
    """
    distance_km = distance_meters / 1000
    gain = elevation_gain if elevation_gain is not None else compute_elevation_gain(points)

    adjusted_speed = _base_speed_kmh(distance_km) * _climb_multiplier(gain)
    hours = distance_km / adjusted_speed

    return RouteTimeEstimate(
        estimated_time_hours=_round_half_up(hours),
        adjusted_speed_kmh=adjusted_speed,
        elevation_gain=int(round(gain)),
    )
