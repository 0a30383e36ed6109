"""Job names, retry options and the queue protocol shared by all backends."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol

WEATHER_FETCH_JOB = "weather_fetch"
IMAGE_RENDER_JOB = "image_render"


@dataclass(frozen=True)
class Backoff:
    """Delay before retry n (1-based) is delay_ms * 2 ** (n - 1) for exponential backoff."""
    type: str = "exponential"
    delay_ms: int = 1000


@dataclass(frozen=True)
class JobOptions:
    """Delivery policy for one job: total attempts including the first run."""
    attempts: int = 1
    backoff: Backoff = field(default_factory=Backoff)

    def retry_delays(self) -> List[float]:
        """Seconds to wait before each retry; empty when the job runs only once."""
        retries = max(self.attempts - 1, 0)
        base = self.backoff.delay_ms / 1000
        if self.backoff.type == "fixed":
            return [base] * retries
        return [base * 2 ** i for i in range(retries)]


class JobQueue(Protocol):
    """At-least-once job delivery. Handlers must be idempotent."""

    def enqueue(self, job_name: str, payload: Dict[str, Any], options: JobOptions) -> str:
        """Submit a job and return its id."""
