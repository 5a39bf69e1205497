"""
FusionCache: last valid Snapshot per area with a strict TTL.

get() never returns an expired snapshot. peek() still exposes the last
one, explicitly marked stale, for status reporting.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from pipeline.aggregation.models import Snapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    snapshot: Snapshot
    stored_at: float
    expires_at: float
    is_stale: bool = False

    @property
    def ttl(self) -> float:
        return self.expires_at - self.stored_at


class FusionCache:
    def __init__(self, default_ttl: float = 900.0, time_func: Callable[[], float] = time.monotonic) -> None:
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        self.default_ttl = default_ttl
        self._time_func = time_func
        self._storage: Dict[str, CacheEntry] = {}

    def get(self, area: str) -> Optional[Snapshot]:
        entry = self._storage.get(area)
        if entry is None:
            return None
        if entry.expires_at <= self._time_func():
            return None
        return entry.snapshot

    def set(self, area: str, snapshot: Snapshot, ttl: Optional[float] = None) -> None:
        if not snapshot.is_valid:
            raise ValueError("Refusing to cache a snapshot without any successful source")
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        now = self._time_func()
        self._storage[area] = CacheEntry(snapshot, stored_at=now, expires_at=now + ttl)
        logger.debug("Cached snapshot for %s (ttl=%ss)", area, ttl)

    def invalidate(self, area: str) -> None:
        self._storage.pop(area, None)

    def peek(self, area: str) -> Optional[CacheEntry]:
        """Last stored entry for the area, flagged is_stale once past its TTL."""
        entry = self._storage.get(area)
        if entry is None:
            return None
        if entry.expires_at <= self._time_func():
            return CacheEntry(entry.snapshot, entry.stored_at, entry.expires_at, is_stale=True)
        return entry

    def age(self, area: str) -> Optional[float]:
        entry = self._storage.get(area)
        if entry is None:
            return None
        return self._time_func() - entry.stored_at

    def clear(self) -> None:
        self._storage.clear()
