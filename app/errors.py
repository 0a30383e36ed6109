"""Exception taxonomy shared by the pipeline, the orchestrator and the API."""


class WindlineError(Exception):
    """Base class for all domain errors raised by this service."""


class ParseError(WindlineError):
    """Raised when uploaded track content is empty, malformed, or has no points."""


class ValidationError(WindlineError):
    """Raised for out-of-range forecast parameters (date, start hour, duration)."""


class NotFoundError(WindlineError):
    """Raised when a route or forecast request id is unknown."""


class UpstreamError(WindlineError):
    """Raised when the weather provider fails, times out, or returns garbage."""


class RenderError(WindlineError):
    """Raised when the map rendering stage fails or no renderer is configured."""


class QuotaError(WindlineError):
    """Raised by collaborators that enforce rate limits. Never retried here."""


class DataNotReadyError(WindlineError):
    """Raised when a stage runs before the data it depends on has been persisted."""


class DuplicateKeyError(WindlineError):
    """Raised by repositories when a unique hash column already holds the value."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Duplicate key: {key}")
        self.key = key


# Errors that will never succeed on a retry of the same job.
NON_RETRYABLE_ERRORS = (ParseError, ValidationError, NotFoundError, QuotaError)
