"""Forecast request lifecycle: hashing, caching, queued fetch/render stages.

State machine of a ForecastRequest row:

    pending -> processing -> completed
                   |    \\
                   |     -> processing (render stage) -> completed
                   v
                 failed  (any stage; summary/wind impact survive a render failure)

A completed row younger than the cache TTL is served as-is. Any other row for
the same request hash is reused and reset to pending when asked for again.
"""
from __future__ import annotations

import datetime as dt
import hashlib
import uuid
from typing import Callable, Optional, Tuple

from app.aggregation import build_forecast_summary, build_wind_markers, build_wind_segments
from app.config import Settings
from app.data_sources.base import WeatherProvider
from app.domain import (
    CACHED_STATUS,
    Coordinates,
    EnqueueResult,
    ForecastRequest,
    ForecastSnapshot,
    ForecastStatus,
    Route,
    utcnow,
)
from app.errors import (
    NON_RETRYABLE_ERRORS,
    DataNotReadyError,
    DuplicateKeyError,
    NotFoundError,
    RenderError,
    ValidationError,
)
from app.jobs.base import IMAGE_RENDER_JOB, WEATHER_FETCH_JOB, Backoff, JobOptions, JobQueue
from app.map_renderer import MapRenderer, RenderMapInput
from app.route_simplifier import decode_render_polyline
from app.route_time import estimate_route_time
from app.storage.base import ForecastRequestRepository, RouteRepository
from app.weather_sampler import sample_for_weather_with_time
from app.wind import calculate_wind_impact
from utils.logging_utils import get_tagged_logger
logger = get_tagged_logger(__name__, tag="forecast_service")

MAX_START_HOUR = 23
MIN_DURATION_HOURS = 1
MAX_DURATION_HOURS = 24


def request_hash(route_id: str, date: dt.date, start_hour: int, duration_hours: int) -> str:
    """Deterministic key for semantically identical forecast requests."""
    raw = f"{route_id}|{date.isoformat()}|{start_hour}|{duration_hours}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class ForecastOrchestrator:
    """Drives forecast requests through the weather-fetch and image-render stages."""

    def __init__(
        self,
        requests: ForecastRequestRepository,
        routes: RouteRepository,
        weather: WeatherProvider,
        queue: JobQueue,
        settings: Settings,
        renderer: Optional[MapRenderer] = None,
        clock: Callable[[], dt.datetime] = utcnow,
    ) -> None:
        self.requests = requests
        self.routes = routes
        self.weather = weather
        self.queue = queue
        self.settings = settings
        self.renderer = renderer
        self.clock = clock

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _fetch_options(self) -> JobOptions:
        return JobOptions(
            attempts=self.settings.weather_fetch_attempts,
            backoff=Backoff("exponential", self.settings.weather_fetch_backoff_ms),
        )

    def _render_options(self) -> JobOptions:
        return JobOptions(
            attempts=self.settings.image_render_attempts,
            backoff=Backoff("exponential", self.settings.image_render_backoff_ms),
        )

    def _validate(self, date: dt.date, start_hour: int, duration_hours: int) -> None:
        if not 0 <= start_hour <= MAX_START_HOUR:
            raise ValidationError(f"start_hour must be between 0 and {MAX_START_HOUR}, got {start_hour}")
        if not MIN_DURATION_HOURS <= duration_hours <= MAX_DURATION_HOURS:
            raise ValidationError(
                f"duration_hours must be between {MIN_DURATION_HOURS} and {MAX_DURATION_HOURS}, got {duration_hours}"
            )
        today = self.clock().date()
        if date < today:
            raise ValidationError("Historical forecasts are not supported")
        if date > today + dt.timedelta(days=self.settings.max_forecast_days):
            raise ValidationError(
                f"Forecast is only available up to {self.settings.max_forecast_days} days ahead"
            )

    def _route(self, route_id: str) -> Route:
        route = self.routes.get(route_id)
        if route is None:
            raise NotFoundError(f"Route {route_id} not found")
        return route

    def _request(self, request_id: str) -> ForecastRequest:
        req = self.requests.get(request_id)
        if req is None:
            raise NotFoundError(f"Forecast request {request_id} not found")
        return req

    def _is_fresh(self, req: ForecastRequest) -> bool:
        """Completed and fetched within the cache TTL."""
        if req.status != ForecastStatus.COMPLETED or req.fetched_at is None:
            return False
        age = self.clock() - req.fetched_at
        return age.total_seconds() < self.settings.forecast_cache_ttl_seconds

    def _save(self, req: ForecastRequest, status: Optional[ForecastStatus] = None) -> None:
        if status is not None:
            req.status = status
        req.updated_at = self.clock()
        self.requests.save(req)

    def _mark_failed(self, req: ForecastRequest, exc: Exception) -> None:
        req.error = str(exc) or exc.__class__.__name__
        self._save(req, ForecastStatus.FAILED)

    def _find_or_create(self, route_id: str, date: dt.date, start_hour: int, duration_hours: int,
                        key: str) -> Tuple[ForecastRequest, bool]:
        """
        Return (row, cached). New rows rely on the repository's unique index on
        request_hash; the loser of a concurrent create reuses the winner's row.
        Reused rows that are not a cache hit are reset to pending.
        """
        now = self.clock()
        req = self.requests.find_by_hash(key)
        if req is None:
            candidate = ForecastRequest(
                id=str(uuid.uuid4()),
                route_id=route_id,
                request_hash=key,
                date=date,
                start_hour=start_hour,
                duration_hours=duration_hours,
                status=ForecastStatus.PENDING,
                created_at=now,
                updated_at=now,
            )
            try:
                return self.requests.create(candidate), False
            except DuplicateKeyError:
                req = self.requests.find_by_hash(key)
                if req is None:
                    raise
                logger.info("Concurrent request created the row first; reusing it", extra={"request_id": req.id})

        if self._is_fresh(req):
            return req, True

        if req.status in (ForecastStatus.COMPLETED, ForecastStatus.FAILED):
            req.error = None
            self._save(req, ForecastStatus.PENDING)
        return req, False

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    def _run_fetch(self, req: ForecastRequest, route: Route) -> None:
        """Compute and persist summary, wind impact and markers for `req`."""
        self._save(req, ForecastStatus.PROCESSING)

        estimate = estimate_route_time(route.distance_meters, route.points, route.elevation_gain)
        timed = sample_for_weather_with_time(
            route.points,
            route.distance_meters,
            estimate.estimated_time_hours,
            self.settings.weather_sampling_distance_m,
        )
        eta_forecasts = self.weather.fetch_timed_forecast(timed, req.date, req.start_hour)
        window_forecasts = self.weather.fetch_forecast(
            [Coordinates(lat=c.lat, lon=c.lon) for c in timed],
            req.date,
            req.start_hour,
            req.duration_hours,
        )

        req.estimated_time_hours = estimate.estimated_time_hours
        req.elevation_gain = estimate.elevation_gain
        req.summary = build_forecast_summary(window_forecasts)
        req.wind_impact = calculate_wind_impact(build_wind_segments(route.points, timed, eta_forecasts))
        req.wind_markers = build_wind_markers(timed, eta_forecasts)
        req.fetched_at = self.clock()
        req.error = None
        # New weather invalidates any image drawn from the previous fetch.
        req.image_bytes = None
        req.image_mime_type = None
        req.image_rendered_at = None
        self._save(req)
        logger.info(
            "Weather fetched for forecast request",
            extra={"request_id": req.id, "cells": len(timed), "estimated_time_hours": estimate.estimated_time_hours},
        )

    def _run_render(self, req: ForecastRequest, route: Route) -> None:
        """Render and persist the map image for `req`; results must already be present."""
        self._save(req, ForecastStatus.PROCESSING)
        geometry = decode_render_polyline(route.render_polyline) or [(p.lat, p.lon) for p in route.points]
        data = RenderMapInput(
            route_geometry=geometry,
            forecast_summary=req.summary,
            wind_impact=req.wind_impact,
            wind_markers=req.wind_markers,
            route_name=route.name,
            distance_meters=route.distance_meters,
            date=req.date,
            start_hour=req.start_hour,
        )
        try:
            image_bytes, mime_type = self.renderer.render_map(data)
        except RenderError:
            raise
        except Exception as exc:
            raise RenderError(f"Map rendering failed: {exc}") from exc

        req.image_bytes = image_bytes
        req.image_mime_type = mime_type
        req.image_rendered_at = self.clock()
        req.error = None
        self._save(req, ForecastStatus.COMPLETED)
        logger.info("Rendered forecast image", extra={"request_id": req.id, "mime_type": mime_type,
                                                       "size_bytes": len(image_bytes)})

    def _require_results(self, req: ForecastRequest) -> None:
        if req.summary is None or req.wind_impact is None:
            raise DataNotReadyError(f"Forecast request {req.id} has no weather results yet")

    # ------------------------------------------------------------------
    # public operations
    # ------------------------------------------------------------------

    def enqueue(self, route_id: str, date: dt.date, start_hour: int, duration_hours: int) -> EnqueueResult:
        """Serve a cache hit or queue the weather fetch for this request."""
        self._validate(date, start_hour, duration_hours)
        self._route(route_id)

        key = request_hash(route_id, date, start_hour, duration_hours)
        req, cached = self._find_or_create(route_id, date, start_hour, duration_hours, key)
        if cached:
            logger.info("Forecast cache hit", extra={"request_id": req.id})
            return EnqueueResult(request_id=req.id, status=CACHED_STATUS, cached=True)

        self.queue.enqueue(WEATHER_FETCH_JOB, {"request_id": req.id}, self._fetch_options())
        logger.info("Queued weather fetch", extra={"request_id": req.id, "route_id": route_id})
        return EnqueueResult(request_id=req.id, status=ForecastStatus.PENDING.value, cached=False)

    def execute_weather_fetch(self, request_id: str) -> None:
        """
        Fetch stage. Recoverable failures are recorded on the row and re-raised
        so the queue retries; unrecoverable ones end the request as failed.
        """
        req = self._request(request_id)
        try:
            route = self._route(req.route_id)
            self._run_fetch(req, route)
            if self.renderer is None:
                self._save(req, ForecastStatus.COMPLETED)
                return
            self.queue.enqueue(IMAGE_RENDER_JOB, {"request_id": req.id}, self._render_options())
        except NON_RETRYABLE_ERRORS as exc:
            logger.warning("Weather fetch failed permanently", extra={"request_id": request_id, "error": str(exc)})
            self._mark_failed(req, exc)
        except Exception as exc:
            logger.exception("Weather fetch failed", extra={"request_id": request_id})
            self._mark_failed(req, exc)
            raise

    def execute_image_render(self, request_id: str) -> None:
        """
        Render stage. Raises DataNotReadyError without touching the row when the
        fetch stage has not persisted its results. A render failure marks the
        row failed but keeps its summary and wind impact.
        """
        req = self._request(request_id)
        self._require_results(req)
        if self.renderer is None:
            raise RenderError("No map renderer configured")
        try:
            route = self._route(req.route_id)
            self._run_render(req, route)
        except NON_RETRYABLE_ERRORS as exc:
            logger.warning("Image render failed permanently", extra={"request_id": request_id, "error": str(exc)})
            self._mark_failed(req, exc)
        except Exception as exc:
            logger.exception("Image render failed", extra={"request_id": request_id})
            self._mark_failed(req, exc)
            raise

    def get_status(self, request_id: str) -> ForecastSnapshot:
        return ForecastSnapshot.from_request(self._request(request_id))

    def get_image(self, request_id: str) -> Tuple[bytes, str]:
        """Return (bytes, mime type) of the rendered image."""
        req = self._request(request_id)
        if req.image_bytes is None:
            raise DataNotReadyError(f"Forecast request {request_id} has no image yet")
        return req.image_bytes, req.image_mime_type or "application/octet-stream"

    def forecast_with_image(
        self, route_id: str, date: dt.date, start_hour: int, duration_hours: int
    ) -> Tuple[ForecastSnapshot, bytes, str]:
        """
        Inline variant: same hashing and caching as `enqueue`, but both stages
        run in the calling process and the image is returned directly.
        """
        if self.renderer is None:
            raise RenderError("No map renderer configured")
        self._validate(date, start_hour, duration_hours)
        route = self._route(route_id)

        key = request_hash(route_id, date, start_hour, duration_hours)
        req, cached = self._find_or_create(route_id, date, start_hour, duration_hours, key)
        if cached and req.image_bytes is not None:
            logger.info("Forecast cache hit with image", extra={"request_id": req.id})
            return ForecastSnapshot.from_request(req), req.image_bytes, req.image_mime_type

        try:
            if not cached:
                self._run_fetch(req, route)
            self._run_render(req, route)
        except Exception as exc:
            logger.exception("Inline forecast failed", extra={"request_id": req.id})
            self._mark_failed(req, exc)
            raise
        return ForecastSnapshot.from_request(req), req.image_bytes, req.image_mime_type
