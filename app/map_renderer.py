"""Contract for the map image renderer and loading of a configured implementation.

The renderer itself lives outside this package; deployments point
`WINDLINE_MAP_RENDERER` at a "package.module:factory" string whose factory
returns an object implementing `MapRenderer`.
"""

from __future__ import annotations

import datetime as dt
import importlib
from typing import List, Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field

from app.domain import ForecastSummary, WindImpact, WindMarker
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="map_renderer")


class RenderMapInput(BaseModel):
    """Everything needed to draw a forecast card for a route."""
    model_config = ConfigDict(extra="forbid")

    route_geometry: List[Tuple[float, float]]
    forecast_summary: ForecastSummary
    wind_impact: WindImpact
    wind_markers: List[WindMarker] = Field(default_factory=list)
    route_name: str
    distance_meters: int
    date: dt.date
    start_hour: int


class MapRenderer(Protocol):
    """Draws a route map image."""

    def render_map(self, data: RenderMapInput) -> Tuple[bytes, str]:
        """Return (image bytes, mime type)."""
        ...


def load_map_renderer(dotted_path: Optional[str]) -> Optional[MapRenderer]:
    """
    Import and instantiate a renderer from "package.module:attribute".

    The attribute may be a class or a zero-argument factory. Returns None when
    no path is configured.
    """
    if not dotted_path:
        logger.info("No map renderer configured; forecasts complete without images")
        return None

    module_name, sep, attr = dotted_path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Map renderer must be given as 'module:attribute', got '{dotted_path}'")

    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    renderer = factory()
    if not callable(getattr(renderer, "render_map", None)):
        raise TypeError(f"'{dotted_path}' did not produce an object with a render_map method")
    logger.info("Loaded map renderer", extra={"renderer": dotted_path})
    return renderer
