"""Domain vocabulary for routes, forecasts and wind impact.

Hot-path geometry types (points, coordinates, hourly forecasts) are plain
dataclasses since routes carry thousands of them. Payloads that are persisted
as JSON or returned over HTTP are strict Pydantic models. Persisted rows are
mutable dataclasses handed to the repositories.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

UNNAMED_ROUTE = "Unnamed Route"
GRID_PRECISION = 2


class _StrictBaseModel(BaseModel):
    """Base model with strict extra handling."""

    model_config = ConfigDict(extra="forbid")


class ForecastStatus(str, Enum):
    """Lifecycle state of a persisted forecast request."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


CACHED_STATUS = "cached"


@dataclass(frozen=True)
class RoutePoint:
    """A single track point; `bearing` points at the next point and is unset on the last one."""
    lat: float
    lon: float
    elevation: Optional[float] = None
    timestamp: Optional[dt.datetime] = None
    bearing: Optional[float] = None

    def with_bearing(self, bearing: Optional[float]) -> "RoutePoint":
        """Return a copy carrying the given bearing."""
        return replace(self, bearing=bearing)

    def to_dict(self) -> dict:
        """Serialize to a compact JSON-safe dict, omitting unset fields."""
        out: dict = {"lat": self.lat, "lon": self.lon}
        if self.elevation is not None:
            out["ele"] = self.elevation
        if self.timestamp is not None:
            out["time"] = self.timestamp.isoformat()
        if self.bearing is not None:
            out["bearing"] = self.bearing
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "RoutePoint":
        """Inverse of `to_dict`."""
        ts = data.get("time")
        return cls(
            lat=data["lat"],
            lon=data["lon"],
            elevation=data.get("ele"),
            timestamp=dt.datetime.fromisoformat(ts) if ts else None,
            bearing=data.get("bearing"),
        )


@dataclass(frozen=True)
class ParsedRoute:
    """Result of parsing a track document."""
    name: str
    points: Tuple[RoutePoint, ...]
    distance_meters: int


@dataclass(frozen=True)
class Coordinates:
    """A latitude/longitude pair used for weather queries."""
    lat: float
    lon: float


@dataclass(frozen=True)
class TimedCoordinate:
    """A sampled coordinate with the estimated hours from ride start to reach it."""
    lat: float
    lon: float
    hour_offset: float


def coords_key(lat: float, lon: float) -> str:
    """Return the grid key (0.01 degree cell) used to index all weather results."""
    # Adding 0.0 turns -0.0 into 0.0 so cells straddling the equator or meridian share a key.
    lat = round(lat, GRID_PRECISION) + 0.0
    lon = round(lon, GRID_PRECISION) + 0.0
    return f"{lat:.{GRID_PRECISION}f},{lon:.{GRID_PRECISION}f}"


def utcnow() -> dt.datetime:
    """Timezone-aware current UTC time; the default clock of every service."""
    return dt.datetime.now(tz=dt.timezone.utc)


@dataclass
class HourlyForecast:
    """Normalized hourly forecast for one grid cell.

    `wind_direction` is the compass direction the wind blows *from*.
    """
    time: dt.datetime
    temperature: Optional[float]
    apparent_temperature: Optional[float]
    precipitation: Optional[float]
    precipitation_probability: Optional[float]
    wind_speed: Optional[float]
    wind_direction: Optional[float]
    wind_gusts: Optional[float]
    weather_code: Optional[int]


class ForecastSummary(_StrictBaseModel):
    """Weather aggregated over every sampled cell and every hour of the window."""
    temperature_min: float
    temperature_max: float
    wind_speed_min: float
    wind_speed_max: float
    wind_gusts_max: float
    precipitation_probability_max: float
    precipitation_total: float


class WindDistribution(_StrictBaseModel):
    """Share of segments per wind class.

    headwind_percent + tailwind_percent is always 100 for a non-empty route;
    crosswind_percent overlaps both.
    """
    headwind_percent: int = 0
    tailwind_percent: int = 0
    crosswind_percent: int = 0


class WindImpact(_StrictBaseModel):
    """Average wind components felt by the rider plus their distribution."""
    headwind: float = 0.0
    tailwind: float = 0.0
    crosswind: float = 0.0
    distribution: WindDistribution = Field(default_factory=WindDistribution)


class WindMarker(_StrictBaseModel):
    """Wind at one sampled cell at the rider's estimated arrival."""
    lat: float
    lon: float
    wind_direction: float
    wind_speed: float


@dataclass
class Route:
    """
    Persisted route. `content_hash` fingerprints the raw upload.

    `elevation_gain` is measured on the full uploaded track, before `points`
    is thinned out for storage.
    """
    id: str
    owner_id: int
    name: str
    content_hash: str
    distance_meters: int
    points: List[RoutePoint]
    render_polyline: str
    created_at: dt.datetime
    elevation_gain: Optional[float] = None


@dataclass
class ForecastRequest:
    """Persisted forecast request; one row per distinct request hash."""
    id: str
    route_id: str
    request_hash: str
    date: dt.date
    start_hour: int
    duration_hours: int
    status: ForecastStatus = ForecastStatus.PENDING
    estimated_time_hours: Optional[float] = None
    elevation_gain: Optional[int] = None
    summary: Optional[ForecastSummary] = None
    wind_impact: Optional[WindImpact] = None
    wind_markers: List[WindMarker] = field(default_factory=list)
    fetched_at: Optional[dt.datetime] = None
    error: Optional[str] = None
    image_bytes: Optional[bytes] = None
    image_mime_type: Optional[str] = None
    image_rendered_at: Optional[dt.datetime] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class EnqueueResult(_StrictBaseModel):
    """Response to a forecast request submission."""
    request_id: str
    status: str
    cached: bool


class ForecastSnapshot(_StrictBaseModel):
    """Current state of a forecast request as seen by pollers."""
    request_id: str
    route_id: str
    status: ForecastStatus
    date: dt.date
    start_hour: int
    duration_hours: int
    estimated_time_hours: float | None = None
    elevation_gain: int | None = None
    summary: ForecastSummary | None = None
    wind_impact: WindImpact | None = None
    fetched_at: dt.datetime | None = None
    image_available: bool = False
    error: str | None = None

    @classmethod
    def from_request(cls, req: ForecastRequest) -> "ForecastSnapshot":
        """Build a snapshot from a persisted row."""
        return cls(
            request_id=req.id,
            route_id=req.route_id,
            status=req.status,
            date=req.date,
            start_hour=req.start_hour,
            duration_hours=req.duration_hours,
            estimated_time_hours=req.estimated_time_hours,
            elevation_gain=req.elevation_gain,
            summary=req.summary,
            wind_impact=req.wind_impact,
            fetched_at=req.fetched_at,
            image_available=req.image_bytes is not None,
            error=req.error,
        )
