"""Tests for cache persistence: file and Redis stores, and failure degradation."""

import asyncio

import orjson
import pytest

from routegeo.core.cache_store import CachePersister, FileCacheStore, RedisCacheStore
from routegeo.core.exceptions import PersistenceFailure
from routegeo.core.geo import GeoPoint
from routegeo.core.payload import LegPayload, RoutePayload
from routegeo.core.route_cache import RouteCache

ORIGIN = GeoPoint(-33.4372, -70.6506)
DEST = GeoPoint(-33.4489, -70.6693)


def make_payload() -> RoutePayload:
    geometry = (ORIGIN, GeoPoint(-33.4400, -70.6600), DEST)
    return RoutePayload(
        geometry=geometry,
        distance_m=2300.0,
        duration_s=420,
        source="itinerary",
        original_points=57,
        legs=(LegPayload(mode="bus", geometry=geometry, distance_m=2300.0, duration_s=420,
                         source="exact", route_number="506"),),
    )


class FailingStore:
    async def load(self):
        raise PersistenceFailure("store offline")

    async def save(self, data):
        raise PersistenceFailure("store offline")


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.closed = False

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.data[key] = value

    async def aclose(self):
        self.closed = True


def test_file_store_round_trip(tmp_path):
    path = tmp_path / "cache" / "routes.bin"
    cache = RouteCache()
    cache.set(ORIGIN, DEST, make_payload())

    assert asyncio.run(CachePersister(cache, FileCacheStore(path)).flush()) is True
    assert path.exists()

    restored = RouteCache()
    assert asyncio.run(CachePersister(restored, FileCacheStore(path)).restore()) == 1
    assert restored.get(ORIGIN, DEST) == make_payload()


def test_persisted_geometry_is_lon_lat(tmp_path):
    path = tmp_path / "routes.bin"
    cache = RouteCache()
    cache.set(ORIGIN, DEST, make_payload())
    asyncio.run(CachePersister(cache, FileCacheStore(path)).flush())

    state = orjson.loads(path.read_bytes())
    assert state["entries"][0]["payload"]["geometry"][0] == [-70.6506, -33.4372]


def test_missing_file_starts_empty(tmp_path):
    cache = RouteCache()
    assert asyncio.run(CachePersister(cache, FileCacheStore(tmp_path / "none.bin")).restore()) == 0
    assert len(cache) == 0


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "routes.bin"
    path.write_bytes(b"\x00not json")
    cache = RouteCache()
    assert asyncio.run(CachePersister(cache, FileCacheStore(path)).restore()) == 0
    assert len(cache) == 0


def test_wrong_version_starts_empty(tmp_path):
    path = tmp_path / "routes.bin"
    path.write_bytes(orjson.dumps({"version": 42, "entries": []}))
    assert asyncio.run(CachePersister(RouteCache(), FileCacheStore(path)).restore()) == 0


def test_failing_store_degrades():
    cache = RouteCache()
    persister = CachePersister(cache, FailingStore())
    assert asyncio.run(persister.restore()) == 0

    cache.set(ORIGIN, DEST, make_payload())
    assert asyncio.run(persister.flush()) is False
    # Cache keeps serving after a failed flush
    assert cache.get(ORIGIN, DEST) is not None


def test_redis_store_round_trip():
    client = FakeRedis()
    store = RedisCacheStore("redis://unused", "test:routes", client=client)
    cache = RouteCache()
    cache.set(ORIGIN, DEST, make_payload())

    async def run():
        await CachePersister(cache, store).flush()
        restored = RouteCache()
        count = await CachePersister(restored, store).restore()
        await store.close()
        return restored, count

    restored, count = asyncio.run(run())
    assert count == 1
    assert "test:routes" in client.data
    assert restored.get(ORIGIN, DEST) == make_payload()
    assert client.closed


def test_redis_store_requires_connect():
    store = RedisCacheStore("redis://unused", "test:routes")
    with pytest.raises(PersistenceFailure):
        asyncio.run(store.load())


class BlobStore:
    def __init__(self, data: bytes):
        self.data = data

    async def load(self):
        return self.data

    async def save(self, data):
        self.data = data


@pytest.mark.parametrize("blob", [
    b"[]",
    b"1",
    b'"x"',
    b'{"version": 1, "entries": 5}',
    b'{"version": 1, "entries": ["x"]}',
    b'{"version": 1, "entries": [{"key": "k", "payload": {"geometry": [[1.0]], "distance_m": 1,'
    b' "duration_s": 1, "source": "engine"}, "created_at": 0, "expires_at": 1e12}]}',
])
def test_malformed_snapshot_starts_empty(blob):
    cache = RouteCache()
    assert asyncio.run(CachePersister(cache, BlobStore(blob)).restore()) == 0
    assert len(cache) == 0


def test_load_state_rejects_non_object():
    with pytest.raises(ValueError):
        RouteCache().load_state([])


def test_failed_write_leaves_no_temp_file(tmp_path):
    # A directory in place of the target makes the final rename fail
    target = tmp_path / "routes.bin"
    target.mkdir()
    cache = RouteCache()
    cache.set(ORIGIN, DEST, make_payload())

    assert asyncio.run(CachePersister(cache, FileCacheStore(target)).flush()) is False
    assert list(tmp_path.glob("*.tmp")) == []
