"""RQ worker process executing weather-fetch and image-render jobs."""
import sys

import redis
from rq import Queue, Worker

from app.config import settings
from utils.logging_utils import get_tagged_logger, setup_logging

logger = get_tagged_logger(__name__, tag="worker")


def run_worker() -> None:
    """Run the RQ worker; the scheduler is needed for retry backoff intervals."""
    if not settings.redis_url:
        logger.error("WINDLINE_REDIS_URL must be set to run the worker")
        sys.exit(1)

    redis_conn = redis.from_url(settings.redis_url)
    queues = [Queue(settings.queue_name, connection=redis_conn)]
    worker = Worker(queues, connection=redis_conn)
    logger.info(f"Starting worker for queues: {[q.name for q in queues]}")
    worker.work(with_scheduler=True)


if __name__ == "__main__":
    setup_logging(level=settings.log_level, job_name="windline-worker")
    if settings.storage_backend == "memory":
        logger.warning("Worker is using in-memory storage; the API process will not see its results")
    run_worker()
