"""Per-user recommendation cache."""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

from folio.models.schemas import RecommendationItem

logger = logging.getLogger(__name__)


class RecommendationCache(ABC):
    """Abstraction for the per-user recommendation cache.

    Entries expire a fixed TTL after they were written. Reads never extend it.
    """

    @abstractmethod
    def get(self, user_id: str) -> list[RecommendationItem] | None:
        """Return the cached list, or None when absent or expired."""
        ...

    @abstractmethod
    def put(self, user_id: str, recommendations: list[RecommendationItem]) -> None:
        """Store the list for the user, replacing any previous entry."""
        ...

    @abstractmethod
    def invalidate(self, user_id: str) -> None:
        """Drop the user's entry, if any."""
        ...

    @abstractmethod
    def invalidate_all(self) -> None:
        """Drop every entry."""
        ...


@dataclass(frozen=True)
class _CacheEntry:
    recommendations: tuple[RecommendationItem, ...]
    created_at: float


class InMemoryRecommendationCache(RecommendationCache):
    """Process-local cache. Lost on restart.

    Stale entries are evicted lazily when read; there is no background sweep.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, user_id: str) -> list[RecommendationItem] | None:
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                return None
            if self._clock() - entry.created_at >= self.ttl:
                del self._entries[user_id]
                logger.info(f"Evicted expired recommendations for user {user_id}")
                return None
            return list(entry.recommendations)

    def put(self, user_id: str, recommendations: list[RecommendationItem]) -> None:
        entry = _CacheEntry(tuple(recommendations), self._clock())
        with self._lock:
            self._entries[user_id] = entry

    def invalidate(self, user_id: str) -> None:
        with self._lock:
            self._entries.pop(user_id, None)

    def invalidate_all(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
