"""Bounded route cache keyed by spatial fingerprint, with TTL and frequency-first eviction.

One instance is built at startup from settings and handed to the resolver.
All state lives behind a single lock that is held only for in-memory work;
provider calls and persistence I/O happen outside it.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol

from routegeo.core.fingerprint import DEFAULT_PRECISION, route_fingerprint
from routegeo.core.geo import GeoPoint
from routegeo.core.payload import RoutePayload

logger = logging.getLogger(__name__)

STATE_VERSION = 1


@dataclass
class CacheEntry:
    key: str
    payload: RoutePayload
    created_at: float
    expires_at: float
    access_count: int = 0
    last_access_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class EvictionPolicy(Protocol):
    name: str

    def select_victim(self, entries: Iterable[CacheEntry], now: float) -> CacheEntry | None:
        ...


class FrequencyPolicy:
    """Evict the least-accessed entry; ties go to the oldest created_at.

    With ``decay_half_life`` set, an entry's count halves for every half-life
    it sits idle since its last access, so an early burst of hits cannot pin
    an entry forever.
    """

    name = "frequency"

    def __init__(self, decay_half_life: float | None = None) -> None:
        if decay_half_life is not None and decay_half_life <= 0:
            raise ValueError("decay_half_life must be positive")
        self.decay_half_life = decay_half_life

    def score(self, entry: CacheEntry, now: float) -> float:
        if self.decay_half_life is None or entry.access_count == 0:
            return float(entry.access_count)
        since = entry.last_access_at or entry.created_at
        idle = max(0.0, now - since)
        return entry.access_count * 0.5 ** (idle / self.decay_half_life)

    def select_victim(self, entries: Iterable[CacheEntry], now: float) -> CacheEntry | None:
        return min(entries, key=lambda e: (self.score(e, now), e.created_at), default=None)


class InsertionOrderPolicy:
    """Evict the oldest-created entry regardless of use.

    Lower fidelity than FrequencyPolicy: a commuter's daily route is dropped
    as readily as a one-off query.
    """

    name = "insertion"

    def select_victim(self, entries: Iterable[CacheEntry], now: float) -> CacheEntry | None:
        return min(entries, key=lambda e: e.created_at, default=None)


def make_policy(name: str, decay_half_life: float | None = None) -> EvictionPolicy:
    if name == "frequency":
        return FrequencyPolicy(decay_half_life)
    if name == "insertion":
        return InsertionOrderPolicy()
    raise ValueError(f"Unknown eviction policy: {name!r}")


@dataclass
class CacheMetrics:
    hits: int
    misses: int
    hit_rate: float  # 0-100
    cached_count: int
    max_size: int
    top_entries: list[dict] = field(default_factory=list)  # [{key, access_count}]
    evictions: int = 0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "cached_count": self.cached_count,
            "max_size": self.max_size,
            "top_entries": list(self.top_entries),
            "evictions": self.evictions,
        }


class RouteCache:
    """In-memory route cache shared by the request path and background jobs."""

    def __init__(
        self,
        ttl_seconds: float = 1800,
        max_size: int = 1000,
        precision: int = DEFAULT_PRECISION,
        top_n: int = 5,
        policy: EvictionPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.ttl_seconds = ttl_seconds
        self.max_size = max_size
        self.precision = precision
        self.top_n = top_n
        self.policy = policy or FrequencyPolicy()
        # Wall-clock by default so persisted expiry times survive a restart
        self._clock = clock

        self._lock = threading.Lock()
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def key_for(self, origin: GeoPoint, dest: GeoPoint, variant: str = "") -> str:
        return route_fingerprint(origin, dest, self.precision, variant)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------

    def get(self, origin: GeoPoint, dest: GeoPoint, variant: str = "") -> RoutePayload | None:
        """Return the cached payload, or None when absent or stale."""
        return self.get_by_key(self.key_for(origin, dest, variant))

    def get_by_key(self, key: str) -> RoutePayload | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.is_expired(now):
                # Stale entries are indistinguishable from absent ones
                del self._entries[key]
                self._misses += 1
                return None
            entry.access_count += 1
            entry.last_access_at = now
            self._hits += 1
            age = now - entry.created_at
            payload = entry.payload

        logger.debug("Cache hit %s (age %.1fs)", key[:8], age)
        return payload

    def set(
        self,
        origin: GeoPoint,
        dest: GeoPoint,
        payload: RoutePayload,
        ttl: float | None = None,
        variant: str = "",
    ) -> str:
        """Store a payload under the pair's fingerprint and return the key."""
        key = self.key_for(origin, dest, variant)
        self.set_by_key(key, payload, ttl)
        return key

    def set_by_key(self, key: str, payload: RoutePayload, ttl: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        now = self._clock()
        with self._lock:
            previous = self._entries.get(key)
            carried = 0
            if previous is not None and not previous.is_expired(now):
                carried = previous.access_count
            elif len(self._entries) >= self.max_size:
                self._evict_locked(now)

            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                created_at=now,
                expires_at=now + ttl,
                access_count=carried,
                last_access_at=previous.last_access_at if carried else 0.0,
            )
            size = len(self._entries)

        logger.debug("Cache store %s (ttl %ss, %d entries)", key[:8], ttl, size)

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
            self._hits = 0
            self._misses = 0
            self._evictions = 0
        logger.info("Route cache cleared")

    def get_metrics(self) -> CacheMetrics:
        """Snapshot counters and the most-used entries without touching state."""
        now = self._clock()
        with self._lock:
            live = [e for e in self._entries.values() if not e.is_expired(now)]
            hits, misses, evictions = self._hits, self._misses, self._evictions

        total = hits + misses
        hit_rate = round(hits / total * 100, 2) if total else 0.0
        top = sorted(live, key=lambda e: (-e.access_count, e.created_at))[: self.top_n]
        return CacheMetrics(
            hits=hits,
            misses=misses,
            hit_rate=hit_rate,
            cached_count=len(live),
            max_size=self.max_size,
            top_entries=[{"key": e.key, "access_count": e.access_count} for e in top],
            evictions=evictions,
        )

    # ------------------------------------------------------------------

    def _evict_locked(self, now: float) -> None:
        """Make room for one entry. Caller holds the lock."""
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in expired:
            del self._entries[k]
        if len(self._entries) < self.max_size:
            return

        victim = self.policy.select_victim(self._entries.values(), now)
        if victim is None:
            return
        del self._entries[victim.key]
        self._evictions += 1
        logger.info(
            "Cache evict %s (%s policy, %d accesses)",
            victim.key[:8], self.policy.name, victim.access_count,
        )

    def sweep_expired(self, batch_size: int = 500) -> int:
        """Remove expired entries, taking the lock once per batch of keys."""
        with self._lock:
            keys = list(self._entries)

        removed = 0
        for start in range(0, len(keys), batch_size):
            now = self._clock()
            with self._lock:
                for key in keys[start:start + batch_size]:
                    entry = self._entries.get(key)
                    if entry is not None and entry.is_expired(now):
                        del self._entries[key]
                        removed += 1

        if removed:
            logger.info("Cache sweep removed %d expired routes", removed)
        return removed

    # ------------------------------------------------------------------

    def dump_state(self) -> dict:
        """Plain-dict snapshot of entries and counters for persistence."""
        with self._lock:
            entries = list(self._entries.values())
            hits, misses = self._hits, self._misses

        return {
            "version": STATE_VERSION,
            "hits": hits,
            "misses": misses,
            "entries": [
                {
                    "key": e.key,
                    "payload": e.payload.to_dict(),
                    "created_at": e.created_at,
                    "expires_at": e.expires_at,
                    "access_count": e.access_count,
                    "last_access_at": e.last_access_at,
                }
                for e in entries
            ],
        }

    def load_state(self, state: dict) -> int:
        """Replace contents with a snapshot, skipping expired entries.

        Returns the number of entries restored. When the snapshot holds more
        live entries than max_size, the most-accessed ones are kept.
        """
        if not isinstance(state, dict):
            raise ValueError(f"Cache state must be an object, got {type(state).__name__}")
        if state.get("version") != STATE_VERSION:
            raise ValueError(f"Unsupported cache state version: {state.get('version')!r}")
        entries = state.get("entries", [])
        if not isinstance(entries, list):
            raise ValueError("Cache state entries must be a list")

        now = self._clock()
        restored: list[CacheEntry] = []
        for raw in entries:
            entry = CacheEntry(
                key=raw["key"],
                payload=RoutePayload.from_dict(raw["payload"]),
                created_at=float(raw["created_at"]),
                expires_at=float(raw["expires_at"]),
                access_count=int(raw.get("access_count", 0)),
                last_access_at=float(raw.get("last_access_at", 0.0)),
            )
            if not entry.is_expired(now):
                restored.append(entry)

        restored.sort(key=lambda e: (-e.access_count, -e.created_at))
        restored = restored[: self.max_size]

        with self._lock:
            self._entries = {e.key: e for e in sorted(restored, key=lambda e: e.created_at)}
            self._hits = int(state.get("hits", 0))
            self._misses = int(state.get("misses", 0))
        return len(restored)
