"""Composition root: wires repositories, provider, queue and renderer into services."""
from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Callable, Optional

import redis

from app import config
from app.data_sources import WeatherProvider, build_weather_provider
from app.domain import utcnow
from app.forecast_service import ForecastOrchestrator
from app.jobs import IMAGE_RENDER_JOB, WEATHER_FETCH_JOB, InMemoryJobQueue, JobQueue
from app.map_renderer import MapRenderer, load_map_renderer
from app.route_service import RouteService
from app.storage import ForecastRequestRepository, RouteRepository, build_repositories
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="container")


@dataclass
class Services:
    """Everything the API and the worker need, built once per process."""
    routes: RouteService
    forecasts: ForecastOrchestrator
    route_repository: RouteRepository
    request_repository: ForecastRequestRepository
    weather: WeatherProvider
    queue: JobQueue
    renderer: Optional[MapRenderer]


def _init_queue(settings: config.Settings) -> JobQueue:
    """Initialize the job queue based on configuration."""
    backend = settings.queue_backend
    logger.debug(f"Initializing job queue: backend='{backend}', redis_url='{settings.redis_url or 'None'}'")
    if backend == "rq":
        if settings.redis_url:
            from app.jobs.rq_queue import RQJobQueue

            try:
                queue = RQJobQueue.from_url(
                    settings.redis_url,
                    queue_name=settings.queue_name,
                    job_timeout=settings.job_timeout_seconds,
                )
                logger.info("Using RQ job queue", extra={"queue": settings.queue_name})
                return queue
            except redis.RedisError as exc:
                logger.warning("Falling back to InMemoryJobQueue (Redis unavailable)", extra={"error": str(exc)})
        else:
            logger.warning("queue_backend is 'rq' but no redis_url is set; using InMemoryJobQueue")
    elif backend != "memory":
        raise ValueError(f"Unknown queue backend '{backend}'")
    return InMemoryJobQueue(eager=settings.queue_eager)


def build_services(
    settings: config.Settings | None = None,
    *,
    weather: Optional[WeatherProvider] = None,
    queue: Optional[JobQueue] = None,
    renderer: Optional[MapRenderer] = None,
    clock: Callable[[], dt.datetime] = utcnow,
) -> Services:
    """Build services from settings; explicit collaborators override the configured ones."""
    settings = settings or config.settings
    route_repo, request_repo = build_repositories(settings)
    weather = weather or build_weather_provider(settings, clock=clock)
    queue = queue or _init_queue(settings)
    renderer = renderer or load_map_renderer(settings.map_renderer)

    orchestrator = ForecastOrchestrator(
        requests=request_repo,
        routes=route_repo,
        weather=weather,
        queue=queue,
        settings=settings,
        renderer=renderer,
        clock=clock,
    )
    if isinstance(queue, InMemoryJobQueue):
        queue.register(WEATHER_FETCH_JOB, orchestrator.execute_weather_fetch)
        queue.register(IMAGE_RENDER_JOB, orchestrator.execute_image_render)

    return Services(
        routes=RouteService(route_repo, settings, clock=clock),
        forecasts=orchestrator,
        route_repository=route_repo,
        request_repository=request_repo,
        weather=weather,
        queue=queue,
        renderer=renderer,
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Process-wide services, built on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Optional[Services]) -> None:
    """Replace the process-wide services (tests, or None to rebuild lazily)."""
    global _services
    _services = services
