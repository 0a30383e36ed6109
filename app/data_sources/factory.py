"""Factory helpers for choosing a weather provider at startup."""

from __future__ import annotations

import datetime as dt
from typing import Callable

from app import config
from app.data_sources.base import WeatherProvider
from app.data_sources.open_meteo_client import OpenMeteoProvider
from app.domain import utcnow
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/factory")


DEFAULT_PROVIDER_NAME = "open_meteo"


def build_weather_provider(
    settings: config.Settings | None = None,
    clock: Callable[[], dt.datetime] = utcnow,
) -> WeatherProvider:
    """Instantiate the configured weather provider; `clock` decides what "today" is."""
    settings = settings or config.settings
    provider = (settings.weather_provider or DEFAULT_PROVIDER_NAME).lower()

    if provider in ("open_meteo", "openmeteo"):
        logger.info("Using Open-Meteo weather provider", extra={"base_url": settings.open_meteo_url})
        return OpenMeteoProvider(
            base_url=settings.open_meteo_url,
            timeout=settings.http_timeout_seconds,
            max_forecast_days=settings.max_forecast_days,
            clock=clock,
        )

    raise ValueError(f"Unknown weather provider '{provider}'")
