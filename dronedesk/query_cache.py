"""Client-side query cache with explicit invalidation.

Keys are tuples ordered from general to specific, e.g.
``("schedules", "detail", id)``. Invalidating or removing a prefix affects
every key that starts with it, so ``invalidate(("schedules",))`` marks every
cached schedule query stale in one call. Stale entries are kept and served
only after a successful refetch replaces them.
"""
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

from .logger_service import LoggerService

logger = LoggerService(__name__)

CacheKey = Tuple[Hashable, ...]


def freeze_params(params: Optional[dict]) -> Tuple[Tuple[str, Any], ...]:
    """Hashable, order-independent form of a query-params dict (None values dropped)."""
    if not params:
        return ()
    return tuple(sorted((k, v) for k, v in params.items() if v is not None))


class ScheduleKeys:
    all: CacheKey = ("schedules",)

    @classmethod
    def lists(cls) -> CacheKey:
        return cls.all + ("list",)

    @classmethod
    def list(cls, params: Optional[dict] = None) -> CacheKey:
        return cls.lists() + (freeze_params(params),)

    @classmethod
    def details(cls) -> CacheKey:
        return cls.all + ("detail",)

    @classmethod
    def detail(cls, schedule_id: str) -> CacheKey:
        return cls.details() + (schedule_id,)

    @classmethod
    def by_jobs(cls) -> CacheKey:
        return cls.all + ("byJob",)

    @classmethod
    def by_job(cls, job_id: str) -> CacheKey:
        return cls.by_jobs() + (job_id,)

    @classmethod
    def availabilities(cls) -> CacheKey:
        return cls.all + ("availability",)

    @classmethod
    def availability(cls, start_at: str, end_at: str) -> CacheKey:
        return cls.availabilities() + (start_at, end_at)


class ResourceKeys:
    """Key factory for the plain CRUD resources (jobs, drones, sites)."""

    def __init__(self, name: str):
        self.all: CacheKey = (name,)

    def lists(self) -> CacheKey:
        return self.all + ("list",)

    def list(self, params: Optional[dict] = None) -> CacheKey:
        return self.lists() + (freeze_params(params),)

    def details(self) -> CacheKey:
        return self.all + ("detail",)

    def detail(self, entity_id: str) -> CacheKey:
        return self.details() + (entity_id,)


class SiteKeyFactory(ResourceKeys):
    def full_details(self) -> CacheKey:
        return self.all + ("fullDetail",)

    def full_detail(self, site_id: str) -> CacheKey:
        return self.full_details() + (site_id,)

    def jobs_counts(self) -> CacheKey:
        return self.all + ("jobsCount",)

    def jobs_count(self, site_id: str) -> CacheKey:
        return self.jobs_counts() + (site_id,)


class StatisticsKeys:
    all: CacheKey = ("statistics",)

    @classmethod
    def overview(cls, params: Optional[dict] = None) -> CacheKey:
        return cls.all + ("overview", freeze_params(params))

    @classmethod
    def jobs(cls) -> CacheKey:
        return cls.all + ("jobs",)

    @classmethod
    def drones(cls) -> CacheKey:
        return cls.all + ("drones",)


JobKeys = ResourceKeys("jobs")
DroneKeys = ResourceKeys("drones")
SiteKeys = SiteKeyFactory("sites")


@dataclass
class CacheEntry:
    value: Any
    updated_at: float
    stale: bool = False


class _PendingLoad:
    """A loader call in flight; invalidations that hit its key while it runs mark it."""

    def __init__(self, key: CacheKey):
        self.key = key
        self.invalidated = False


def _matches(key: CacheKey, prefix: CacheKey) -> bool:
    return key[:len(prefix)] == prefix


class QueryCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.RLock()
        self._pending: List[_PendingLoad] = []

    def get(self, key: CacheKey) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            return entry.value if entry else None

    def set(self, key: CacheKey, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, updated_at=self._clock())

    def has(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def is_stale(self, key: CacheKey, stale_time: Optional[float] = None) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.stale:
                return True
            if stale_time is None:
                return False
            return self._clock() - entry.updated_at >= stale_time

    def fetch(self, key: CacheKey, loader: Callable[[], Any], stale_time: Optional[float] = None) -> Any:
        """Return the cached value for ``key``, calling ``loader`` when it is missing or stale."""
        if not self.is_stale(key, stale_time):
            logger.debug(f"Cache hit: {key}")
            return self.get(key)

        logger.debug(f"Cache miss: {key}")
        pending = _PendingLoad(key)
        with self._lock:
            self._pending.append(pending)
        try:
            value = loader()
        except Exception:
            with self._lock:
                self._pending.remove(pending)
            raise

        with self._lock:
            self._pending.remove(pending)
            # data loaded before a concurrent write is kept but never served as fresh
            self._entries[key] = CacheEntry(value=value, updated_at=self._clock(), stale=pending.invalidated)
        if pending.invalidated:
            logger.debug(f"Invalidated while loading, stored stale: {key}")
        return value

    def _mark_pending(self, prefix: CacheKey) -> None:
        for pending in self._pending:
            if _matches(pending.key, prefix):
                pending.invalidated = True

    def invalidate(self, prefix: CacheKey) -> int:
        with self._lock:
            matched = [entry for key, entry in self._entries.items() if _matches(key, prefix)]
            for entry in matched:
                entry.stale = True
            self._mark_pending(prefix)
        if matched:
            logger.debug(f"Invalidated {len(matched)} cached queries under {prefix}")
        return len(matched)

    def remove(self, prefix: CacheKey) -> int:
        with self._lock:
            doomed = [key for key in self._entries if _matches(key, prefix)]
            for key in doomed:
                del self._entries[key]
            self._mark_pending(prefix)
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._mark_pending(())

    def keys(self, prefix: CacheKey = ()) -> List[CacheKey]:
        with self._lock:
            return [key for key in self._entries if _matches(key, prefix)]
