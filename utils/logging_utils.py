"""
Process-wide logging for the Windline API and worker.

Entrypoints call `setup_logging(job_name=...)` once; modules grab an adapter:

    from utils.logging_utils import get_tagged_logger

    logger = get_tagged_logger(__name__, tag="storage/sql")
    logger.info("Stored new route", extra={"route_id": route.id})

Every record carries `job_name` (which process), `tag` (which component) and
`fields` (the call-site `extra`). Fields are rendered after the message as
` | key=value ...` and never become LogRecord attributes, so keys like "name"
or "message" are safe to use.
"""

from __future__ import annotations

import logging
import logging.config
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(job_name)s:%(tag)s] %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# Anything logged at import time, before setup_logging(), still gets a timestamp.
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)-7s %(message)s", datefmt=DATE_FORMAT)

# Query parameters whose names contain one of these are hidden by mask_db_url.
SECRET_PARAM_MARKERS = ("pass", "pwd", "secret", "token", "key")

_configured_job: Optional[str] = None


class LevelCeilingFilter(logging.Filter):
    """Pass records at or below `ceiling`, so stdout never repeats what stderr prints."""

    def __init__(self, ceiling: int = logging.INFO) -> None:
        super().__init__()
        self.ceiling = ceiling

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        return record.levelno <= self.ceiling


class RecordContextFilter(logging.Filter):
    """
    Fill in `job_name`, `tag` and `fields` on records that lack them.

    Third-party records (uvicorn, rq, sqlalchemy) are tagged with the last
    segment of their logger name, e.g. "rq.worker" -> "worker".
    """

    def __init__(self, job_name: Optional[str] = None) -> None:
        super().__init__()
        self.job_name = job_name or "-"

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "job_name"):
            record.job_name = self.job_name
        if not hasattr(record, "tag"):
            record.tag = record.name.rsplit(".", 1)[-1] or "-"
        if not hasattr(record, "fields"):
            record.fields = {}
        return True


class StructuredFormatter(logging.Formatter):
    """Append `record.fields` to the first line as sorted key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        fields = getattr(record, "fields", None)
        if not fields:
            return text
        pairs = " ".join(f"{key}={fields[key]}" for key in sorted(fields))
        first, newline, rest = text.partition("\n")
        return f"{first} | {pairs}{newline}{rest}"


def _stream_handler(stream: str, level: str, filters: List[str]) -> Dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "stream": f"ext://sys.{stream}",
        "level": level,
        "formatter": "structured",
        "filters": filters,
    }


def build_logging_config(
    *,
    level: str | int = "INFO",
    job_name: Optional[str] = None,
    log_format: str = LOG_FORMAT,
    date_format: str = DATE_FORMAT,
) -> Mapping[str, Any]:
    """dictConfig mapping: INFO and below to stdout, WARNING and up to stderr."""
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "context": {"()": RecordContextFilter, "job_name": job_name},
            "info_and_below": {"()": LevelCeilingFilter, "ceiling": logging.INFO},
        },
        "formatters": {
            "structured": {"()": StructuredFormatter, "fmt": log_format, "datefmt": date_format},
        },
        "handlers": {
            "out": _stream_handler("stdout", "DEBUG", ["context", "info_and_below"]),
            "err": _stream_handler("stderr", "WARNING", ["context"]),
        },
        "root": {"level": level, "handlers": ["out", "err"]},
    }


def setup_logging(
    *,
    level: str | int = "INFO",
    job_name: Optional[str] = None,
    log_format: str = LOG_FORMAT,
    date_format: str = DATE_FORMAT,
    force: bool = False,
) -> None:
    """Install the logging config for this process; later calls are ignored unless `force`."""
    global _configured_job

    if _configured_job is not None and not force:
        return
    config = build_logging_config(level=level, job_name=job_name, log_format=log_format, date_format=date_format)
    logging.config.dictConfig(config)
    _configured_job = job_name or "-"


def reset_logging_state() -> None:
    """Forget that setup_logging() ran, so the next call reconfigures."""
    global _configured_job
    _configured_job = None


class TaggedLoggerAdapter(logging.LoggerAdapter):
    """Adapter that stamps `tag` and moves the call-site `extra` into `record.fields`."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        fields: Dict[str, Any] = dict(kwargs.pop("extra", None) or {})
        kwargs["extra"] = {**self.extra, "fields": fields}
        return msg, kwargs


def get_tagged_logger(name: str, *, tag: Optional[str] = None) -> TaggedLoggerAdapter:
    """Adapter for `name`; the tag defaults to the last dotted segment ("app.storage.sql" -> "sql")."""
    return TaggedLoggerAdapter(logging.getLogger(name), {"tag": tag or name.rsplit(".", 1)[-1]})


def _mask_query(query: str) -> str:
    pairs = parse_qsl(query, keep_blank_values=True)
    return urlencode([
        (key, "***" if any(marker in key.lower() for marker in SECRET_PARAM_MARKERS) else value)
        for key, value in pairs
    ])


def mask_db_url(url: str) -> str:
    """
    Hide credentials in a database URL before it is logged.

    postgresql://user:secret@db:5432/windline -> postgresql://***:***@db:5432/windline
    sqlite:///./windline.db                   -> unchanged
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return url

    if not parts.scheme:
        return url

    host = parts.hostname or ""
    if port:
        host = f"{host}:{port}"
    if parts.username or parts.password:
        credentials = "***:***" if parts.password is not None else "***"
        host = f"{credentials}@{host}"

    query = _mask_query(parts.query) if parts.query else ""
    authority = "//" + host if url.startswith(f"{parts.scheme}://") else host
    masked = f"{parts.scheme}:{authority}{parts.path}"
    if query:
        masked = f"{masked}?{query}"
    if parts.fragment:
        masked = f"{masked}#{parts.fragment}"
    return masked
