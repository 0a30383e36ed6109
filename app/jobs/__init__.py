"""Background job queue backends and job definitions."""

from .base import IMAGE_RENDER_JOB, WEATHER_FETCH_JOB, Backoff, JobOptions, JobQueue
from .memory import InMemoryJobQueue

__all__ = [
    "Backoff",
    "IMAGE_RENDER_JOB",
    "InMemoryJobQueue",
    "JobOptions",
    "JobQueue",
    "WEATHER_FETCH_JOB",
]
