"""Caching layer for single-ticket retrieval.

Only provider data is cached. The local overlay is applied after every
cache read, so assignment changes show up immediately.

Concurrency Model:
    InMemoryTicketCache uses threading.Lock for access from several event
    loops or threads. Cached summaries are frozen dataclasses, so entries
    are shared without copying.
"""

from __future__ import annotations

import logging
import threading
import urllib.parse
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from orchestra.integrations.providers.base import ExternalTicketSummary

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class CacheKey:
    """Unique cache key for one external ticket.

    external_id is URL-encoded in __str__ so ids containing colons or
    slashes cannot collide.
    """

    provider_id: str
    external_id: str

    def __str__(self) -> str:
        provider = urllib.parse.quote(self.provider_id, safe="")
        external = urllib.parse.quote(self.external_id, safe="")
        return f"{provider}:{external}"

    @classmethod
    def from_summary(cls, summary: ExternalTicketSummary) -> CacheKey:
        return cls(provider_id=summary.provider_id, external_id=summary.external_id)


@dataclass(frozen=True)
class CachedTicket:
    """Cached ticket with expiration metadata. All timestamps use UTC."""

    summary: ExternalTicketSummary
    cached_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class TicketCache(ABC):
    """Abstract base class for ticket cache storage.

    Implementations must be thread-safe for concurrent access.
    """

    @abstractmethod
    def get(self, key: CacheKey) -> ExternalTicketSummary | None:
        """Retrieve a cached ticket if not expired."""
        pass

    @abstractmethod
    def set(self, summary: ExternalTicketSummary, ttl: timedelta | None = None) -> None:
        """Store a ticket with an optional custom TTL."""
        pass

    @abstractmethod
    def invalidate(self, key: CacheKey) -> None:
        """Remove a specific ticket from cache."""
        pass

    @abstractmethod
    def clear(self) -> None:
        """Clear all cached tickets."""
        pass

    @abstractmethod
    def clear_provider(self, provider_id: str) -> None:
        """Clear all cached tickets of one provider."""
        pass


class InMemoryTicketCache(TicketCache):
    """In-memory ticket cache with TTL expiry and LRU eviction.

    Args:
        default_ttl: Lifetime of entries stored without an explicit TTL.
            A zero TTL disables caching.
        max_size: Maximum number of entries (0 for unbounded)
        clock: Returns the current UTC time (injectable for tests)
    """

    def __init__(
        self,
        default_ttl: timedelta = timedelta(hours=1),
        max_size: int = 0,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.default_ttl = default_ttl
        self.max_size = max_size
        self._clock = clock
        self._cache: OrderedDict[str, CachedTicket] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: CacheKey) -> ExternalTicketSummary | None:
        key_str = str(key)
        with self._lock:
            cached = self._cache.get(key_str)
            if cached is None:
                return None

            if cached.is_expired(self._clock()):
                del self._cache[key_str]
                logger.debug("Cache expired for %s", key)
                return None

            self._cache.move_to_end(key_str)
            logger.debug("Cache hit for %s", key)
            return cached.summary

    def set(self, summary: ExternalTicketSummary, ttl: timedelta | None = None) -> None:
        effective_ttl = ttl if ttl is not None else self.default_ttl
        if effective_ttl <= timedelta(0):
            return

        key_str = str(CacheKey.from_summary(summary))
        now = self._clock()
        cached = CachedTicket(summary=summary, cached_at=now, expires_at=now + effective_ttl)

        with self._lock:
            self._cache.pop(key_str, None)

            while self.max_size > 0 and len(self._cache) >= self.max_size:
                oldest_key, _ = self._cache.popitem(last=False)
                logger.debug("LRU evicted: %s", oldest_key)

            self._cache[key_str] = cached
            logger.debug("Cached %s with TTL %s", key_str, effective_ttl)

    def invalidate(self, key: CacheKey) -> None:
        with self._lock:
            if self._cache.pop(str(key), None) is not None:
                logger.debug("Invalidated cache for %s", key)

    def clear(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            logger.debug("Cleared %d cache entries", count)

    def clear_provider(self, provider_id: str) -> None:
        prefix = f"{urllib.parse.quote(provider_id, safe='')}:"
        with self._lock:
            keys_to_delete = [key for key in self._cache if key.startswith(prefix)]
            for key in keys_to_delete:
                del self._cache[key]
            logger.debug("Cleared %d entries for provider %s", len(keys_to_delete), provider_id)

    def size(self) -> int:
        with self._lock:
            return len(self._cache)


__all__ = [
    "CacheKey",
    "CachedTicket",
    "InMemoryTicketCache",
    "TicketCache",
]
