"""Weather provider interface, implementations and factory."""

from .base import WeatherProvider
from .factory import build_weather_provider
from .open_meteo_client import OpenMeteoProvider

__all__ = [
    "build_weather_provider",
    "OpenMeteoProvider",
    "WeatherProvider",
]
