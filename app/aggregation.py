"""Turn per-cell provider forecasts into route-level summaries and wind segments."""

from __future__ import annotations

from typing import Iterable, List, Mapping, Sequence, Union

from app.domain import ForecastSummary, HourlyForecast, RoutePoint, WindMarker, coords_key
from app.errors import UpstreamError
from app.geo import LatLon
from app.wind import WindSegment

CellForecast = Union[HourlyForecast, Sequence[HourlyForecast]]


def _values(hours: Iterable[HourlyForecast], attr: str) -> List[float]:
    return [v for v in (getattr(h, attr) for h in hours) if v is not None]


def build_forecast_summary(forecasts: Mapping[str, Sequence[HourlyForecast]]) -> ForecastSummary:
    """
    Aggregate min/max values across every cell and every hour of the window.

    precipitation_total is the precipitation summed over the window for each
    cell, averaged across cells, so long routes are not penalised for having
    more sampled cells.
    """
    all_hours = [h for hours in forecasts.values() for h in hours]
    if not all_hours:
        raise UpstreamError("Weather provider returned no hourly data for the requested window")

    temps = _values(all_hours, "temperature")
    speeds = _values(all_hours, "wind_speed")
    gusts = _values(all_hours, "wind_gusts")
    probs = _values(all_hours, "precipitation_probability")

    cells_with_hours = [hours for hours in forecasts.values() if hours]
    per_cell_precip = [sum(_values(hours, "precipitation")) for hours in cells_with_hours]
    precip_avg = sum(per_cell_precip) / len(per_cell_precip)

    return ForecastSummary(
        temperature_min=round(min(temps), 1) if temps else 0.0,
        temperature_max=round(max(temps), 1) if temps else 0.0,
        wind_speed_min=round(min(speeds), 1) if speeds else 0.0,
        wind_speed_max=round(max(speeds), 1) if speeds else 0.0,
        wind_gusts_max=round(max(gusts), 1) if gusts else 0.0,
        precipitation_probability_max=max(probs) if probs else 0.0,
        precipitation_total=round(precip_avg, 1),
    )


def _nearest_key(point: LatLon, samples: Sequence[LatLon], forecasts: Mapping[str, CellForecast]) -> str | None:
    """Grid key of the closest sample (squared planar lat/lon distance) that has data."""
    best_key = None
    best_dist = float("inf")
    for sample in samples:
        key = coords_key(sample.lat, sample.lon)
        if key not in forecasts:
            continue
        d = (sample.lat - point.lat) ** 2 + (sample.lon - point.lon) ** 2
        if d < best_dist:
            best_dist = d
            best_key = key
    return best_key


def build_wind_segments(
    points: Sequence[RoutePoint],
    samples: Sequence[LatLon],
    forecasts: Mapping[str, CellForecast],
) -> List[WindSegment]:
    """
    Pair each route segment that has a bearing with the wind at its nearest
    sampled cell. A single forecast per cell yields one segment; a list of
    hourly forecasts yields one segment per hour.
    """
    segments: List[WindSegment] = []
    for point in points:
        if point.bearing is None:
            continue
        key = _nearest_key(point, samples, forecasts)
        if key is None:
            continue
        cell = forecasts[key]
        hours = [cell] if isinstance(cell, HourlyForecast) else list(cell)
        for hour in hours:
            if hour.wind_speed is None or hour.wind_direction is None:
                continue
            segments.append(
                WindSegment(bearing=point.bearing, wind_direction=hour.wind_direction, wind_speed=hour.wind_speed)
            )
    return segments


def build_wind_markers(samples: Sequence[LatLon], forecasts: Mapping[str, HourlyForecast]) -> List[WindMarker]:
    """One marker per sampled cell, using the wind at the rider's arrival."""
    markers: List[WindMarker] = []
    for sample in samples:
        hour = forecasts.get(coords_key(sample.lat, sample.lon))
        if hour is None or hour.wind_speed is None or hour.wind_direction is None:
            continue
        markers.append(
            WindMarker(lat=sample.lat, lon=sample.lon, wind_direction=hour.wind_direction, wind_speed=hour.wind_speed)
        )
    return markers
