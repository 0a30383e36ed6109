"""Task functions executed by the RQ worker.

Each task resolves the process-wide services lazily so the worker builds its
collaborators once, after logging and settings are in place.
"""

from app.container import get_services
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="jobs/tasks")


def weather_fetch(request_id: str) -> None:
    logger.info("Running weather fetch", extra={"request_id": request_id})
    get_services().forecasts.execute_weather_fetch(request_id)


def image_render(request_id: str) -> None:
    logger.info("Running image render", extra={"request_id": request_id})
    get_services().forecasts.execute_image_render(request_id)
