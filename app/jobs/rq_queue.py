"""Redis Queue (RQ) backed job queue for production deployments."""

from __future__ import annotations

from typing import Any, Dict, Optional

import redis
from rq import Queue, Retry

from app.jobs.base import IMAGE_RENDER_JOB, WEATHER_FETCH_JOB, JobOptions, JobQueue
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="jobs/rq")

# Job name -> importable task function run by the worker.
TASKS = {
    WEATHER_FETCH_JOB: "app.jobs.tasks.weather_fetch",
    IMAGE_RENDER_JOB: "app.jobs.tasks.image_render",
}


def rq_retry(options: JobOptions) -> Optional[Retry]:
    """Translate JobOptions to an RQ Retry; None when the job runs once."""
    delays = options.retry_delays()
    if not delays:
        return None
    return Retry(max=len(delays), interval=[int(round(d)) for d in delays])


class RQJobQueue(JobQueue):
    """Submit jobs to an RQ queue; a worker with a scheduler applies retry intervals."""

    def __init__(self, connection: redis.Redis, queue_name: str = "windline", job_timeout: int = 120) -> None:
        self.queue = Queue(queue_name, connection=connection)
        self.job_timeout = job_timeout

    @classmethod
    def from_url(cls, redis_url: str, **kwargs) -> "RQJobQueue":
        """Connect to Redis and verify it answers before accepting jobs."""
        connection = redis.from_url(redis_url)
        connection.ping()
        return cls(connection, **kwargs)

    def enqueue(self, job_name: str, payload: Dict[str, Any], options: JobOptions) -> str:
        func = TASKS.get(job_name)
        if func is None:
            raise ValueError(f"Unknown job '{job_name}'")
        job = self.queue.enqueue(
            func,
            kwargs=dict(payload),
            retry=rq_retry(options),
            job_timeout=self.job_timeout,
        )
        logger.info(f"Enqueued job {job.id} to {self.queue.name} queue", extra={"job": job_name})
        return job.id
