"""Classify wind relative to the direction of travel and aggregate it over a route.

Wind direction is the direction the wind blows *from* (90 = from the East).
Bearing is the direction of travel (90 = moving East). Wind from 90 while
moving at 90 hits the rider in the face: a pure headwind.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

from app.domain import WindDistribution, WindImpact


@dataclass(frozen=True)
class SegmentWind:
    """Wind components for one route segment."""
    head_component: float  # positive = headwind, negative = tailwind
    cross_component: float  # always >= 0

    @property
    def is_headwind(self) -> bool:
        return self.head_component > 0

    @property
    def is_crosswind_dominant(self) -> bool:
        return self.cross_component > abs(self.head_component)


@dataclass(frozen=True)
class WindSegment:
    """Input for aggregation: travel bearing plus the wind at that segment."""
    bearing: float
    wind_direction: float
    wind_speed: float


def classify_wind(bearing: float, wind_direction: float, wind_speed: float) -> SegmentWind:
    """
    Split the wind into components along and across the direction of travel.

    relative angle 0 = pure headwind, 180 = pure tailwind, 90/270 = crosswind.
    """
    relative = math.radians(wind_direction - bearing)
    return SegmentWind(
        head_component=wind_speed * math.cos(relative),
        cross_component=abs(wind_speed * math.sin(relative)),
    )


def calculate_wind_impact(segments: Sequence[WindSegment]) -> WindImpact:
    """
    Aggregate wind over all segments.

    headwind: mean head component over headwind segments.
    tailwind: mean |head component| over the remaining segments.
    crosswind: mean cross component over all segments.
    The headwind/tailwind shares partition the segments and sum to 100; the
    crosswind share counts segments where the cross component dominates and
    overlaps both.
    """
    if not segments:
        return WindImpact()

    total_head = total_tail = total_cross = 0.0
    head_count = tail_count = cross_dominant = 0

    for segment in segments:
        impact = classify_wind(segment.bearing, segment.wind_direction, segment.wind_speed)
        total_cross += impact.cross_component
        if impact.is_headwind:
            total_head += impact.head_component
            head_count += 1
        else:
            total_tail += abs(impact.head_component)
            tail_count += 1
        if impact.is_crosswind_dominant:
            cross_dominant += 1

    count = len(segments)
    headwind_percent = int(round(head_count / count * 100))

    return WindImpact(
        headwind=round(total_head / head_count, 1) if head_count else 0.0,
        tailwind=round(total_tail / tail_count, 1) if tail_count else 0.0,
        crosswind=round(total_cross / count, 1),
        distribution=WindDistribution(
            headwind_percent=headwind_percent,
            tailwind_percent=100 - headwind_percent,
            crosswind_percent=int(round(cross_dominant / count * 100)),
        ),
    )
