"""In-memory repositories, intended for development and tests."""

import copy
import threading
from typing import Callable, Dict, Generic, Optional, TypeVar

from app.domain import ForecastRequest, Route
from app.errors import DuplicateKeyError, NotFoundError
from app.storage.base import ForecastRequestRepository, RouteRepository
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="storage/memory")

T = TypeVar("T")


class _InMemoryTable(Generic[T]):
    """Thread-safe id -> row map with a unique secondary hash index.

    Rows are copied in and out so callers never share mutable state with the store.
    """

    def __init__(self, hash_of: Callable[[T], str]) -> None:
        self._rows: Dict[str, T] = {}
        self._by_hash: Dict[str, str] = {}
        self._hash_of = hash_of
        self._lock = threading.Lock()

    def get(self, row_id: str) -> Optional[T]:
        with self._lock:
            row = self._rows.get(row_id)
            return copy.deepcopy(row) if row is not None else None

    def find_by_hash(self, key: str) -> Optional[T]:
        with self._lock:
            row_id = self._by_hash.get(key)
            if row_id is None:
                return None
            return copy.deepcopy(self._rows[row_id])

    def create(self, row: T) -> T:
        key = self._hash_of(row)
        with self._lock:
            if key in self._by_hash:
                raise DuplicateKeyError(key)
            self._rows[row.id] = copy.deepcopy(row)
            self._by_hash[key] = row.id
        return row

    def save(self, row: T) -> None:
        with self._lock:
            if row.id not in self._rows:
                raise NotFoundError(f"Cannot save unknown row {row.id}")
            self._rows[row.id] = copy.deepcopy(row)

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()
            self._by_hash.clear()


class InMemoryRouteRepository(_InMemoryTable[Route], RouteRepository):
    """Routes keyed by id with a unique content-hash index."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryRouteRepository")
        super().__init__(lambda route: route.content_hash)


class InMemoryForecastRequestRepository(_InMemoryTable[ForecastRequest], ForecastRequestRepository):
    """Forecast requests keyed by id with a unique request-hash index."""

    def __init__(self) -> None:
        logger.debug("Initializing InMemoryForecastRequestRepository")
        super().__init__(lambda request: request.request_hash)
