"""Tests for RouteCache: TTL, eviction, metrics and snapshots."""

import threading
import time

import pytest

from routegeo.core.geo import GeoPoint
from routegeo.core.payload import RoutePayload
from routegeo.core.route_cache import (
    CacheEntry,
    FrequencyPolicy,
    InsertionOrderPolicy,
    RouteCache,
    make_policy,
)


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_payload(distance: float = 1500.0) -> RoutePayload:
    return RoutePayload(
        geometry=(GeoPoint(-33.4372, -70.6506), GeoPoint(-33.4489, -70.6693)),
        distance_m=distance,
        duration_s=300,
        source="engine",
    )


def od(i: int) -> tuple[GeoPoint, GeoPoint]:
    """Distinct origin/destination pairs, one grid cell apart."""
    return GeoPoint(56.84 + i * 0.001, 60.60), GeoPoint(56.85, 60.61)


def test_set_then_get():
    cache = RouteCache(clock=FakeClock())
    origin, dest = od(0)
    payload = make_payload()
    cache.set(origin, dest, payload)
    assert cache.get(origin, dest) == payload
    assert cache.get_metrics().hits == 1


def test_miss_counts():
    cache = RouteCache(clock=FakeClock())
    assert cache.get(*od(0)) is None
    m = cache.get_metrics()
    assert (m.hits, m.misses, m.hit_rate) == (0, 1, 0.0)


def test_entry_expires_at_ttl():
    clock = FakeClock()
    cache = RouteCache(ttl_seconds=60, clock=clock)
    cache.set(*od(0), make_payload())
    clock.advance(59.9)
    assert cache.get(*od(0)) is not None
    clock.advance(0.1)
    assert cache.get(*od(0)) is None
    assert len(cache) == 0


def test_per_entry_ttl_override():
    clock = FakeClock()
    cache = RouteCache(ttl_seconds=3600, clock=clock)
    cache.set(*od(0), make_payload(), ttl=1)
    clock.advance(1)
    assert cache.get(*od(0)) is None


def test_short_ttl_with_real_clock():
    cache = RouteCache(ttl_seconds=0.05)
    cache.set(*od(0), make_payload())
    assert cache.get(*od(0)) is not None
    time.sleep(0.1)
    assert cache.get(*od(0)) is None


def test_expired_entries_not_reported():
    clock = FakeClock()
    cache = RouteCache(ttl_seconds=10, clock=clock)
    cache.set(*od(0), make_payload())
    cache.set(*od(1), make_payload(), ttl=100)
    clock.advance(20)
    assert cache.get_metrics().cached_count == 1


def test_evicts_least_accessed():
    clock = FakeClock()
    cache = RouteCache(max_size=3, clock=clock)
    for i in range(3):
        cache.set(*od(i), make_payload())
        clock.advance(1)
    cache.get(*od(0))
    cache.get(*od(0))
    cache.get(*od(2))

    cache.set(*od(3), make_payload())

    assert len(cache) == 3
    assert cache.get(*od(1)) is None
    assert cache.get(*od(0)) is not None
    assert cache.get(*od(2)) is not None
    assert cache.get_metrics().evictions == 1


def test_eviction_tie_goes_to_oldest():
    clock = FakeClock()
    cache = RouteCache(max_size=2, clock=clock)
    cache.set(*od(0), make_payload())
    clock.advance(1)
    cache.set(*od(1), make_payload())
    clock.advance(1)
    cache.set(*od(2), make_payload())
    assert cache.get(*od(0)) is None
    assert cache.get(*od(1)) is not None


def test_expired_purged_before_eviction():
    clock = FakeClock()
    cache = RouteCache(max_size=2, clock=clock)
    cache.set(*od(0), make_payload(), ttl=1)
    cache.set(*od(1), make_payload(), ttl=100)
    clock.advance(2)
    cache.set(*od(2), make_payload())
    assert cache.get(*od(1)) is not None
    assert cache.get(*od(2)) is not None
    assert cache.get_metrics().evictions == 0


def test_overwrite_keeps_access_count():
    clock = FakeClock()
    cache = RouteCache(max_size=2, clock=clock)
    origin, dest = od(0)
    cache.set(origin, dest, make_payload(1000.0))
    cache.get(origin, dest)
    cache.get(origin, dest)
    cache.set(origin, dest, make_payload(2000.0))

    assert len(cache) == 1
    assert cache.get(origin, dest).distance_m == 2000.0
    top = cache.get_metrics().top_entries
    assert top[0]["access_count"] == 3


def test_metrics_hit_rate_and_top_entries():
    clock = FakeClock()
    cache = RouteCache(top_n=2, clock=clock)
    keys = [cache.set(*od(i), make_payload()) for i in range(3)]
    for _ in range(3):
        cache.get(*od(1))
    cache.get(*od(2))
    cache.get(*od(9))

    m = cache.get_metrics()
    assert m.hits == 4
    assert m.misses == 1
    assert m.hit_rate == 80.0
    assert m.cached_count == 3
    assert [e["key"] for e in m.top_entries] == [keys[1], keys[2]]
    assert m.to_dict()["max_size"] == 1000


def test_hit_rate_rounded():
    cache = RouteCache(clock=FakeClock())
    cache.set(*od(0), make_payload())
    cache.get(*od(0))
    cache.get(*od(1))
    cache.get(*od(2))
    assert cache.get_metrics().hit_rate == 33.33


def test_clear_resets_everything():
    cache = RouteCache(clock=FakeClock())
    cache.set(*od(0), make_payload())
    cache.get(*od(0))
    cache.get(*od(1))
    cache.clear()
    m = cache.get_metrics()
    assert (m.hits, m.misses, m.cached_count, m.evictions) == (0, 0, 0, 0)


def test_sweep_removes_only_expired():
    clock = FakeClock()
    cache = RouteCache(ttl_seconds=10, clock=clock)
    for i in range(5):
        cache.set(*od(i), make_payload())
    cache.set(*od(5), make_payload(), ttl=100)
    clock.advance(20)

    assert cache.sweep_expired(batch_size=2) == 5
    assert len(cache) == 1
    assert cache.sweep_expired() == 0


def test_variant_entries_are_separate():
    cache = RouteCache(clock=FakeClock())
    origin, dest = od(0)
    cache.set(origin, dest, make_payload(1.0))
    cache.set(origin, dest, make_payload(2.0), variant="bus:10")
    assert cache.get(origin, dest).distance_m == 1.0
    assert cache.get(origin, dest, variant="bus:10").distance_m == 2.0


def test_dump_and_load_state():
    clock = FakeClock()
    cache = RouteCache(clock=clock)
    cache.set(*od(0), make_payload())
    cache.set(*od(1), make_payload(), ttl=5)
    cache.get(*od(0))
    state = cache.dump_state()

    clock.advance(10)
    restored = RouteCache(clock=clock)
    assert restored.load_state(state) == 1
    assert restored.get(*od(0)) == make_payload()
    assert restored.get_metrics().hits == 2


def test_load_keeps_most_accessed_when_over_capacity():
    clock = FakeClock()
    big = RouteCache(max_size=10, clock=clock)
    for i in range(4):
        big.set(*od(i), make_payload())
        for _ in range(i):
            big.get(*od(i))

    small = RouteCache(max_size=2, clock=clock)
    assert small.load_state(big.dump_state()) == 2
    assert small.get(*od(3)) is not None
    assert small.get(*od(2)) is not None
    assert small.get(*od(0)) is None


def test_load_rejects_unknown_version():
    cache = RouteCache(clock=FakeClock())
    with pytest.raises(ValueError):
        cache.load_state({"version": 99, "entries": []})


def test_invalid_construction():
    with pytest.raises(ValueError):
        RouteCache(ttl_seconds=0)
    with pytest.raises(ValueError):
        RouteCache(max_size=0)
    with pytest.raises(ValueError):
        RouteCache().set(*od(0), make_payload(), ttl=0)


def test_insertion_policy_ignores_use():
    clock = FakeClock()
    cache = RouteCache(max_size=2, policy=InsertionOrderPolicy(), clock=clock)
    cache.set(*od(0), make_payload())
    clock.advance(1)
    cache.set(*od(1), make_payload())
    for _ in range(5):
        cache.get(*od(0))
    clock.advance(1)
    cache.set(*od(2), make_payload())
    assert cache.get(*od(0)) is None


def make_entry(key: str, created_at: float, access_count: int, last_access_at: float) -> CacheEntry:
    return CacheEntry(
        key=key,
        payload=make_payload(),
        created_at=created_at,
        expires_at=created_at + 10_000,
        access_count=access_count,
        last_access_at=last_access_at,
    )


def test_decay_lets_stale_popular_entry_go():
    burst = make_entry("burst", created_at=0.0, access_count=4, last_access_at=0.0)
    recent = make_entry("recent", created_at=50.0, access_count=1, last_access_at=95.0)

    assert FrequencyPolicy().select_victim([burst, recent], now=100.0) is recent
    assert FrequencyPolicy(decay_half_life=10).select_victim([burst, recent], now=100.0) is burst


def test_make_policy():
    assert make_policy("frequency").name == "frequency"
    assert make_policy("frequency", 60).decay_half_life == 60
    assert make_policy("insertion").name == "insertion"
    with pytest.raises(ValueError):
        make_policy("lru")


def test_concurrent_access_stays_bounded():
    cache = RouteCache(max_size=20)

    def worker(offset: int) -> None:
        for i in range(200):
            pair = od(offset * 1000 + i % 50)
            if cache.get(*pair) is None:
                cache.set(*pair, make_payload())

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    m = cache.get_metrics()
    assert len(cache) <= 20
    assert m.hits + m.misses == 8 * 200
