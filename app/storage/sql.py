"""SQLAlchemy-backed repositories.

Uniqueness of `routes.content_hash` and `forecast_requests.request_hash` is
enforced by unique indexes, so concurrent creators race inside the database
and the loser sees DuplicateKeyError.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, Mapping, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from app.domain import (
    ForecastRequest,
    ForecastStatus,
    ForecastSummary,
    Route,
    RoutePoint,
    WindImpact,
    WindMarker,
)
from app.errors import DuplicateKeyError, NotFoundError
from app.storage.base import ForecastRequestRepository, RouteRepository
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="storage/sql")

metadata = MetaData()

routes_table = Table(
    "routes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("owner_id", BigInteger, nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("content_hash", String(64), nullable=False, unique=True),
    Column("distance_meters", Integer, nullable=False),
    Column("points", JSON, nullable=False),
    Column("render_polyline", Text, nullable=False, default=""),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("elevation_gain", Float),
)

forecast_requests_table = Table(
    "forecast_requests",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("route_id", String(36), nullable=False, index=True),
    Column("request_hash", String(64), nullable=False, unique=True),
    Column("date", Date, nullable=False),
    Column("start_hour", Integer, nullable=False),
    Column("duration_hours", Integer, nullable=False),
    Column("status", String(16), nullable=False),
    Column("estimated_time_hours", Float),
    Column("elevation_gain", Integer),
    Column("summary", JSON),
    Column("wind_impact", JSON),
    Column("wind_markers", JSON),
    Column("fetched_at", DateTime(timezone=True)),
    Column("error", Text),
    Column("image_bytes", LargeBinary),
    Column("image_mime_type", String(64)),
    Column("image_rendered_at", DateTime(timezone=True)),
    Column("created_at", DateTime(timezone=True)),
    Column("updated_at", DateTime(timezone=True)),
)


def _aware(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    """SQLite drops tzinfo; stored timestamps are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=dt.timezone.utc)


def _route_to_row(route: Route) -> dict:
    return {
        "id": route.id,
        "owner_id": route.owner_id,
        "name": route.name,
        "content_hash": route.content_hash,
        "distance_meters": route.distance_meters,
        "points": [p.to_dict() for p in route.points],
        "render_polyline": route.render_polyline,
        "created_at": route.created_at,
        "elevation_gain": route.elevation_gain,
    }


def _route_from_row(row: Mapping[str, Any]) -> Route:
    return Route(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        content_hash=row["content_hash"],
        distance_meters=row["distance_meters"],
        points=[RoutePoint.from_dict(p) for p in row["points"] or []],
        render_polyline=row["render_polyline"] or "",
        created_at=_aware(row["created_at"]),
        elevation_gain=row["elevation_gain"],
    )


def _request_to_row(req: ForecastRequest) -> dict:
    return {
        "id": req.id,
        "route_id": req.route_id,
        "request_hash": req.request_hash,
        "date": req.date,
        "start_hour": req.start_hour,
        "duration_hours": req.duration_hours,
        "status": ForecastStatus(req.status).value,
        "estimated_time_hours": req.estimated_time_hours,
        "elevation_gain": req.elevation_gain,
        "summary": req.summary.model_dump() if req.summary else None,
        "wind_impact": req.wind_impact.model_dump() if req.wind_impact else None,
        "wind_markers": [m.model_dump() for m in req.wind_markers],
        "fetched_at": req.fetched_at,
        "error": req.error,
        "image_bytes": req.image_bytes,
        "image_mime_type": req.image_mime_type,
        "image_rendered_at": req.image_rendered_at,
        "created_at": req.created_at,
        "updated_at": req.updated_at,
    }


def _request_from_row(row: Mapping[str, Any]) -> ForecastRequest:
    summary = row["summary"]
    wind_impact = row["wind_impact"]
    return ForecastRequest(
        id=row["id"],
        route_id=row["route_id"],
        request_hash=row["request_hash"],
        date=row["date"],
        start_hour=row["start_hour"],
        duration_hours=row["duration_hours"],
        status=ForecastStatus(row["status"]),
        estimated_time_hours=row["estimated_time_hours"],
        elevation_gain=row["elevation_gain"],
        summary=ForecastSummary.model_validate(summary) if summary else None,
        wind_impact=WindImpact.model_validate(wind_impact) if wind_impact else None,
        wind_markers=[WindMarker.model_validate(m) for m in row["wind_markers"] or []],
        fetched_at=_aware(row["fetched_at"]),
        error=row["error"],
        image_bytes=row["image_bytes"],
        image_mime_type=row["image_mime_type"],
        image_rendered_at=_aware(row["image_rendered_at"]),
        created_at=_aware(row["created_at"]),
        updated_at=_aware(row["updated_at"]),
    )


class _SqlTable:
    """Common CRUD over one table with a unique hash column."""

    table: Table
    hash_column: str

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _fetch_one(self, column: str, value: str) -> Optional[Mapping[str, Any]]:
        stmt = select(self.table).where(self.table.c[column] == value)
        with self.engine.connect() as conn:
            return conn.execute(stmt).mappings().first()

    def _insert(self, values: dict) -> None:
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(self.table).values(**values))
        except IntegrityError as exc:
            key = values[self.hash_column]
            logger.debug("Unique hash conflict on insert", extra={"table": self.table.name, "key": key})
            raise DuplicateKeyError(key) from exc

    def _update(self, values: dict) -> None:
        row_id = values["id"]
        with self.engine.begin() as conn:
            result = conn.execute(update(self.table).where(self.table.c.id == row_id).values(**values))
            updated = result.rowcount
        if updated == 0:
            raise NotFoundError(f"Cannot save unknown row {row_id}")


class SqlRouteRepository(_SqlTable, RouteRepository):
    """Routes stored in the `routes` table."""

    table = routes_table
    hash_column = "content_hash"

    def get(self, route_id: str) -> Optional[Route]:
        row = self._fetch_one("id", route_id)
        return _route_from_row(row) if row else None

    def find_by_hash(self, content_hash: str) -> Optional[Route]:
        row = self._fetch_one("content_hash", content_hash)
        return _route_from_row(row) if row else None

    def create(self, route: Route) -> Route:
        self._insert(_route_to_row(route))
        return route

    def save(self, route: Route) -> None:
        self._update(_route_to_row(route))


class SqlForecastRequestRepository(_SqlTable, ForecastRequestRepository):
    """Forecast requests stored in the `forecast_requests` table."""

    table = forecast_requests_table
    hash_column = "request_hash"

    def get(self, request_id: str) -> Optional[ForecastRequest]:
        row = self._fetch_one("id", request_id)
        return _request_from_row(row) if row else None

    def find_by_hash(self, request_hash: str) -> Optional[ForecastRequest]:
        row = self._fetch_one("request_hash", request_hash)
        return _request_from_row(row) if row else None

    def create(self, request: ForecastRequest) -> ForecastRequest:
        self._insert(_request_to_row(request))
        return request

    def save(self, request: ForecastRequest) -> None:
        self._update(_request_to_row(request))


def create_sql_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine and make sure both tables exist."""
    engine = create_engine(database_url, future=True, **kwargs)
    metadata.create_all(engine)
    return engine
