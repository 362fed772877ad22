"""Durable backends for route cache state and the persister that drives them."""

import asyncio
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

import orjson
import redis.asyncio as aioredis

from routegeo.core.exceptions import PersistenceFailure
from routegeo.core.route_cache import RouteCache

logger = logging.getLogger(__name__)


class PersistenceStore(Protocol):
    async def load(self) -> bytes | None:
        ...

    async def save(self, data: bytes) -> None:
        ...


class RedisCacheStore:
    """Keeps the serialized cache under a single Redis key."""

    def __init__(self, redis_url: str, key: str, client: aioredis.Redis | None = None) -> None:
        self.redis_url = redis_url
        self.key = key
        self._redis = client

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(self.redis_url, decode_responses=False)

    async def close(self) -> None:
        if self._redis:
            await self._redis.aclose()

    async def load(self) -> bytes | None:
        if self._redis is None:
            raise PersistenceFailure("Redis store is not connected")
        try:
            return await self._redis.get(self.key)
        except Exception as e:
            raise PersistenceFailure(f"Redis GET {self.key} failed: {e}") from e

    async def save(self, data: bytes) -> None:
        if self._redis is None:
            raise PersistenceFailure("Redis store is not connected")
        try:
            await self._redis.set(self.key, data)
        except Exception as e:
            raise PersistenceFailure(f"Redis SET {self.key} failed: {e}") from e


class FileCacheStore:
    """Client-tier blob store: one file, replaced atomically on save."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> bytes | None:
        return await asyncio.to_thread(self._read)

    async def save(self, data: bytes) -> None:
        await asyncio.to_thread(self._write, data)

    def _read(self) -> bytes | None:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceFailure(f"Cannot read {self.path}: {e}") from e

    def _write(self, data: bytes) -> None:
        tmp = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, self.path)
        except OSError as e:
            if tmp is not None:
                # Drop the partial temp file
                Path(tmp).unlink(missing_ok=True)
            raise PersistenceFailure(f"Cannot write {self.path}: {e}") from e


class CachePersister:
    """Restores and flushes a RouteCache. Failures degrade, never raise."""

    def __init__(self, cache: RouteCache, store: PersistenceStore) -> None:
        self.cache = cache
        self.store = store

    async def restore(self) -> int:
        """Load saved state into the cache; start empty on any failure."""
        try:
            data = await self.store.load()
            if not data:
                logger.info("No persisted route cache found, starting empty")
                return 0
            state = orjson.loads(data)
            restored = self.cache.load_state(state)
        except PersistenceFailure as e:
            logger.warning("Route cache load failed, starting empty: %s", e)
            return 0
        except (orjson.JSONDecodeError, ValueError, KeyError, TypeError, IndexError, AttributeError) as e:
            logger.warning("Persisted route cache is unreadable, starting empty: %s", e)
            return 0
        logger.info("Restored %d routes from persisted cache", restored)
        return restored

    async def flush(self) -> bool:
        """Write the current snapshot; a failure skips this flush only."""
        # Snapshot under the cache lock, serialize and write outside it
        state = self.cache.dump_state()
        try:
            await self.store.save(orjson.dumps(state))
        except PersistenceFailure as e:
            logger.warning("Route cache flush skipped: %s", e)
            return False
        logger.debug("Flushed %d routes to persistent store", len(state["entries"]))
        return True
