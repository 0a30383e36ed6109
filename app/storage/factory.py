"""Factory helpers for choosing a persistence backend at startup."""

from __future__ import annotations

from typing import Tuple

from app import config
from app.storage.base import ForecastRequestRepository, RouteRepository
from app.storage.memory import InMemoryForecastRequestRepository, InMemoryRouteRepository
from utils.logging_utils import get_tagged_logger, mask_db_url

logger = get_tagged_logger(__name__, tag="storage/factory")


DEFAULT_BACKEND_NAME = "memory"


def build_repositories(
    settings: config.Settings | None = None,
) -> Tuple[RouteRepository, ForecastRequestRepository]:
    """Instantiate the configured route and forecast-request repositories."""
    settings = settings or config.settings
    backend = (settings.storage_backend or DEFAULT_BACKEND_NAME).lower()

    if backend == "memory":
        logger.info("Using in-memory storage")
        return InMemoryRouteRepository(), InMemoryForecastRequestRepository()

    if backend == "sql":
        from .sql import SqlForecastRequestRepository, SqlRouteRepository, create_sql_engine

        db_url = settings.database_url
        if not db_url:
            raise ValueError("database_url must be set for SQL storage")
        logger.info("Using SQL storage", extra={"db_url": mask_db_url(db_url)})
        engine = create_sql_engine(db_url)
        return SqlRouteRepository(engine), SqlForecastRequestRepository(engine)

    raise ValueError(f"Unknown storage backend '{backend}'")
