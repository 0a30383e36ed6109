"""Fetch hourly route weather from the Open-Meteo forecast API."""
from __future__ import annotations

import datetime as dt
import math
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import requests
import requests_cache

from app.config import settings
from app.domain import Coordinates, HourlyForecast, TimedCoordinate, coords_key, utcnow
from app.errors import UpstreamError, ValidationError
from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag='open_meteo_client')

# Responses are cached; retries are left to the job queue.
session = requests_cache.CachedSession(settings.http_cache_name, expire_after=settings.http_cache_seconds)

OPEN_METEO_WEATHER_URL = "https://api.open-meteo.com/v1/forecast"

HOURLY_VARS = [
    "temperature_2m",
    "apparent_temperature",
    "precipitation",
    "precipitation_probability",
    "wind_speed_10m",
    "wind_direction_10m",
    "wind_gusts_10m",
    "weather_code",
]


def _grid_cells(coordinates: Sequence[Coordinates | TimedCoordinate]) -> Dict[str, Tuple[float, float]]:
    """Unique cells in first-seen order, each with its rounded query coordinate."""
    cells: Dict[str, Tuple[float, float]] = {}
    for coord in coordinates:
        key = coords_key(coord.lat, coord.lon)
        if key not in cells:
            cells[key] = (round(coord.lat, 2), round(coord.lon, 2))
    return cells


def _hour_at(hourly: Dict[str, List[Any]], i: int) -> HourlyForecast:
    """Build one HourlyForecast from column-oriented Open-Meteo data."""
    def col(name: str):
        values = hourly.get(name)
        if values is None or i >= len(values):
            return None
        return values[i]

    return HourlyForecast(
        time=dt.datetime.fromisoformat(hourly["time"][i]),
        temperature=col("temperature_2m"),
        apparent_temperature=col("apparent_temperature"),
        precipitation=col("precipitation"),
        precipitation_probability=col("precipitation_probability"),
        wind_speed=col("wind_speed_10m"),
        wind_direction=col("wind_direction_10m"),
        wind_gusts=col("wind_gusts_10m"),
        weather_code=col("weather_code"),
    )


def _round_offset(hour_offset: float) -> int:
    return int(math.floor(hour_offset + 0.5))


class OpenMeteoProvider:
    """WeatherProvider backed by a single batched Open-Meteo request per call."""

    def __init__(
        self,
        base_url: str = OPEN_METEO_WEATHER_URL,
        timeout: float = 10.0,
        max_forecast_days: int = 16,
        http_session: Optional[requests.Session] = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_forecast_days = max_forecast_days
        self._session = http_session
        self._clock = clock

    @property
    def http(self) -> requests.Session:
        return self._session if self._session is not None else session

    def _validate_date(self, date: dt.date) -> dt.date:
        """Reject past dates and dates beyond the forecast horizon; return the horizon."""
        today = self._clock().date()
        max_date = today + dt.timedelta(days=self.max_forecast_days)
        if date < today:
            raise ValidationError("Historical forecasts are not supported")
        if date > max_date:
            raise ValidationError(f"Forecast is only available up to {self.max_forecast_days} days ahead")
        return max_date

    def _request(self, cells: Dict[str, Tuple[float, float]], start_date: dt.date, end_date: dt.date) -> List[dict]:
        """Issue the batched request and return one payload per cell, in cell order."""
        params = {
            "latitude": ",".join(str(lat) for lat, _ in cells.values()),
            "longitude": ",".join(str(lon) for _, lon in cells.values()),
            "hourly": ",".join(HOURLY_VARS),
            "timezone": "auto",
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
        }
        logger.debug(
            "Requesting Open-Meteo forecast",
            extra={"cells": len(cells), "start_date": params["start_date"], "end_date": params["end_date"]},
        )
        try:
            resp = self.http.get(self.base_url, params=params, timeout=self.timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.Timeout as exc:
            raise UpstreamError(f"Open-Meteo request timed out after {self.timeout}s") from exc
        except requests.HTTPError as exc:
            status = getattr(exc.response, "status_code", None)
            raise UpstreamError(f"Open-Meteo API error: {status}") from exc
        except (requests.RequestException, ValueError) as exc:
            raise UpstreamError(f"Open-Meteo request failed: {exc}") from exc

        # A single location comes back as an object, several as a list.
        payloads = data if isinstance(data, list) else [data]
        if len(payloads) != len(cells):
            raise UpstreamError(
                f"Open-Meteo returned {len(payloads)} locations for {len(cells)} requested"
            )
        return payloads

    def fetch_forecast(
        self,
        coordinates: Sequence[Coordinates],
        date: dt.date,
        start_hour: int,
        duration_hours: int,
    ) -> Dict[str, List[HourlyForecast]]:
        """Hours [start_hour, start_hour + duration_hours) of `date` for every cell."""
        self._validate_date(date)
        cells = _grid_cells(coordinates)
        if not cells:
            return {}

        payloads = self._request(cells, date, date)
        forecasts: Dict[str, List[HourlyForecast]] = {}
        for key, payload in zip(cells, payloads):
            hourly = payload.get("hourly") or {}
            times = hourly.get("time") or []
            end_hour = min(start_hour + duration_hours, len(times))
            forecasts[key] = [_hour_at(hourly, i) for i in range(start_hour, end_hour)]
        return forecasts

    def fetch_timed_forecast(
        self,
        coordinates: Sequence[TimedCoordinate],
        date: dt.date,
        start_hour: int,
    ) -> Dict[str, HourlyForecast]:
        """
        The forecast hour at which the rider reaches each cell.

        The hour index is `start_hour + round(hour_offset)` counted from
        midnight of `date`; the request spans as many days as needed to cover
        the latest arrival, bounded by the forecast horizon, and the index is
        clamped to what the API returned.
        """
        max_date = self._validate_date(date)
        if not coordinates:
            return {}

        offsets: Dict[str, float] = {}
        for coord in coordinates:
            key = coords_key(coord.lat, coord.lon)
            if key not in offsets or coord.hour_offset < offsets[key]:
                offsets[key] = coord.hour_offset
        cells = _grid_cells(coordinates)

        last_index = start_hour + max(_round_offset(o) for o in offsets.values())
        end_date = min(date + dt.timedelta(days=last_index // 24), max_date)

        payloads = self._request(cells, date, end_date)
        forecasts: Dict[str, HourlyForecast] = {}
        for key, payload in zip(cells, payloads):
            hourly = payload.get("hourly") or {}
            times = hourly.get("time") or []
            if not times:
                continue
            index = min(max(start_hour + _round_offset(offsets[key]), 0), len(times) - 1)
            forecasts[key] = _hour_at(hourly, index)
        return forecasts
