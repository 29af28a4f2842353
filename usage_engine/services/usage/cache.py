"""
In-memory TTL cache for aggregated usage results.

Single-process and non-persistent. Entries past their expiry are treated as
absent by every reader and removed lazily on read or by ``sweep()``.
One instance is created at startup and passed to every engine that memoizes.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import structlog

from usage_engine.routers.metrics import record_cache_lookup, set_cache_entries

logger = structlog.get_logger(__name__)

DEFAULT_TTL_MINUTES = 15


# =============================================================================
# Keys
# =============================================================================


# Bump a family's version whenever the shape of its cached value changes.
SCHEMA_VERSIONS: dict[str, int] = {
    "summary": 1,
    "event_quarterly": 1,
    "feature_usage": 2,
    "quarterly_metrics": 1,
    "quarterly_product": 1,
    "user_properties": 1,
}


@dataclass(frozen=True)
class CacheKey:
    """Structured cache key for one memoized metric result."""

    project_id: str
    family: str
    organization: Optional[str] = None
    event_type: Optional[str] = None
    variant: tuple[str, ...] = ()
    schema_version: Optional[int] = None

    @classmethod
    def for_family(
        cls,
        project_id: str,
        family: str,
        organization: Optional[str] = None,
        event_type: Optional[str] = None,
        variant: tuple[str, ...] = (),
    ) -> "CacheKey":
        """Build a key stamped with the family's registered schema version."""
        if family not in SCHEMA_VERSIONS:
            raise ValueError(f"Unknown cache family: {family}")
        return cls(
            project_id=project_id,
            family=family,
            organization=organization,
            event_type=event_type,
            variant=tuple(str(v) for v in variant),
            schema_version=SCHEMA_VERSIONS[family],
        )

    def serialize(self) -> str:
        """Deterministic string form used as the storage key."""
        version = self.schema_version if self.schema_version is not None else 0
        parts = [
            f"v{version}",
            self.family,
            self.project_id,
            f"org={self.organization or ''}",
            f"event={self.event_type or ''}",
        ]
        parts.extend(self.variant)
        return ":".join(parts)

    def __str__(self) -> str:
        return self.serialize()


# =============================================================================
# Store
# =============================================================================


@dataclass(frozen=True)
class CacheEntry:
    """Stored value with its absolute expiry (clock seconds)."""

    key: str
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class UsageCache:
    """
    TTL key/value store for expensive aggregated results.

    Reads and writes are synchronous, so under asyncio they never interleave
    mid-operation. Concurrent misses on the same key are not coalesced.
    """

    def __init__(
        self,
        default_ttl_minutes: float = DEFAULT_TTL_MINUTES,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            default_ttl_minutes: TTL used when ``set`` is called without one
            clock: Returns the current time in seconds (injectable for tests)
        """
        if default_ttl_minutes <= 0:
            raise ValueError("default_ttl_minutes must be > 0")
        self.default_ttl_minutes = default_ttl_minutes
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: CacheKey) -> Optional[Any]:
        """Return the cached value, or None when absent or expired."""
        storage_key = key.serialize()
        entry = self._entries.get(storage_key)

        if entry is not None and entry.is_expired(self._clock()):
            del self._entries[storage_key]
            set_cache_entries(len(self._entries))
            entry = None

        if entry is None:
            self._misses += 1
            record_cache_lookup(key.family, hit=False)
            logger.debug("usage_cache_miss", key=storage_key)
            return None

        self._hits += 1
        record_cache_lookup(key.family, hit=True)
        logger.debug("usage_cache_hit", key=storage_key)
        return entry.value

    def set(self, key: CacheKey, value: Any, ttl_minutes: Optional[float] = None) -> None:
        """Store ``value`` until now + ttl, replacing any existing entry."""
        ttl = self.default_ttl_minutes if ttl_minutes is None else ttl_minutes
        if ttl <= 0:
            raise ValueError("ttl_minutes must be > 0")

        storage_key = key.serialize()
        self._entries[storage_key] = CacheEntry(
            key=storage_key,
            value=value,
            expires_at=self._clock() + ttl * 60,
        )
        set_cache_entries(len(self._entries))

    def clear(self) -> None:
        """Remove every entry and reset hit/miss counters."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        set_cache_entries(0)

    def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for storage_key in expired:
            del self._entries[storage_key]

        if expired:
            logger.info("usage_cache_swept", removed=len(expired), remaining=len(self._entries))
        set_cache_entries(len(self._entries))
        return len(expired)

    def stats(self) -> dict[str, int]:
        """Entry count and lookup counters for health reporting."""
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }
