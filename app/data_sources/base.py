"""Interface for weather providers."""

from __future__ import annotations

import datetime as dt
from typing import Dict, List, Protocol, Sequence

from app.domain import Coordinates, HourlyForecast, TimedCoordinate


class WeatherProvider(Protocol):
    """Anything that can return hourly forecasts keyed by grid key."""

    def fetch_forecast(
        self,
        coordinates: Sequence[Coordinates],
        date: dt.date,
        start_hour: int,
        duration_hours: int,
    ) -> Dict[str, List[HourlyForecast]]:
        """Return the hours [start_hour, start_hour + duration_hours) of `date` for every cell."""
        ...

    def fetch_timed_forecast(
        self,
        coordinates: Sequence[TimedCoordinate],
        date: dt.date,
        start_hour: int,
    ) -> Dict[str, HourlyForecast]:
        """Return, for every cell, the forecast hour at which the rider arrives there."""
        ...
