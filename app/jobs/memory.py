"""In-process job queue for development and tests.

With `eager=True` jobs run as soon as they are enqueued, retries included.
Jobs enqueued by a running handler are appended and run after it, so a
two-stage pipeline completes within the first enqueue call. Only the newest
`max_history` finished jobs stay in `jobs`.
"""

from __future__ import annotations

import threading
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional

from app.jobs.base import JobOptions, JobQueue
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="jobs/memory")

JobHandler = Callable[..., Any]

# Finished jobs kept in `jobs` for inspection; older ones are dropped first.
DEFAULT_HISTORY_LIMIT = 1000


@dataclass
class QueuedJob:
    """A job as tracked by the in-memory queue."""
    id: str
    name: str
    payload: Dict[str, Any]
    options: JobOptions
    attempts_made: int = 0
    status: str = "queued"  # queued, completed, failed
    error: Optional[str] = None
    retry_delays: List[float] = field(default_factory=list)


class InMemoryJobQueue(JobQueue):
    """Thread-safe FIFO queue that runs registered handlers with `handler(**payload)`."""

    def __init__(
        self,
        eager: bool = True,
        sleep: Optional[Callable[[float], None]] = None,
        max_history: int = DEFAULT_HISTORY_LIMIT,
    ) -> None:
        logger.debug("Initializing InMemoryJobQueue", extra={"eager": eager})
        self.eager = eager
        self._sleep = sleep
        self.max_history = max_history
        self._handlers: Dict[str, JobHandler] = {}
        self._pending: Deque[QueuedJob] = deque()
        self.jobs: List[QueuedJob] = []
        self._lock = threading.RLock()
        self._draining = False

    def register(self, job_name: str, handler: JobHandler) -> None:
        """Bind a handler to a job name."""
        self._handlers[job_name] = handler

    def enqueue(self, job_name: str, payload: Dict[str, Any], options: JobOptions) -> str:
        job = QueuedJob(id=str(uuid.uuid4()), name=job_name, payload=dict(payload), options=options)
        with self._lock:
            self._pending.append(job)
            self.jobs.append(job)
        logger.info("Enqueued job", extra={"job_id": job.id, "job": job_name})
        if self.eager:
            self.run_pending()
        return job.id

    def jobs_named(self, job_name: str) -> List[QueuedJob]:
        return [job for job in self.jobs if job.name == job_name]

    def run_pending(self) -> int:
        """Run queued jobs until the queue is empty; return how many ran."""
        with self._lock:
            if self._draining:
                return 0
            self._draining = True
        ran = 0
        try:
            while True:
                with self._lock:
                    if not self._pending:
                        break
                    job = self._pending.popleft()
                self._run(job)
                self._trim_history()
                ran += 1
        finally:
            with self._lock:
                self._draining = False
        return ran

    def _trim_history(self) -> None:
        """Drop the oldest finished jobs once `jobs` holds more than `max_history`; queued jobs stay."""
        with self._lock:
            excess = len(self.jobs) - self.max_history
            if excess <= 0:
                return
            kept = []
            for job in self.jobs:
                if excess > 0 and job.status != "queued":
                    excess -= 1
                    continue
                kept.append(job)
            self.jobs = kept

    def _run(self, job: QueuedJob) -> None:
        handler = self._handlers.get(job.name)
        if handler is None:
            job.status = "failed"
            job.error = f"No handler registered for '{job.name}'"
            logger.error("No handler registered for job", extra={"job_id": job.id, "job": job.name})
            return

        delays = job.options.retry_delays()
        attempts = max(job.options.attempts, 1)
        while job.attempts_made < attempts:
            job.attempts_made += 1
            try:
                handler(**job.payload)
            except Exception as exc:
                job.error = str(exc)
                if job.attempts_made >= attempts:
                    job.status = "failed"
                    logger.exception(
                        "Job failed after exhausting retries",
                        extra={"job_id": job.id, "job": job.name, "attempts": job.attempts_made},
                    )
                    return
                delay = delays[job.attempts_made - 1]
                job.retry_delays.append(delay)
                logger.warning(
                    "Job attempt failed; retrying",
                    extra={"job_id": job.id, "job": job.name, "attempt": job.attempts_made,
                           "delay_seconds": delay, "error": str(exc)},
                )
                if self._sleep is not None:
                    self._sleep(delay)
                continue
            job.status = "completed"
            job.error = None
            return
