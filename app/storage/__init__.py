"""Persistence backends for routes and forecast requests."""

from .base import ForecastRequestRepository, RouteRepository
from .factory import build_repositories
from .memory import InMemoryForecastRequestRepository, InMemoryRouteRepository

__all__ = [
    "build_repositories",
    "ForecastRequestRepository",
    "RouteRepository",
    "InMemoryForecastRequestRepository",
    "InMemoryRouteRepository",
]
