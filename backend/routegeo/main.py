"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from routegeo.api import bus, cache, routes
from routegeo.config import settings
from routegeo.core.cache_store import CachePersister, FileCacheStore, RedisCacheStore
from routegeo.core.providers import ItineraryProvider, OsrmProvider, StraightLineProvider
from routegeo.core.resolver import RouteResolver
from routegeo.core.route_cache import RouteCache, make_policy
from routegeo.core.scheduler import create_scheduler
from routegeo.core.segment_extractor import ShapeSegmentExtractor
from routegeo.core.shape_store import SqlShapeStore
from routegeo.db.session import async_session, engine
from routegeo.models.base import Base
from routegeo.models import tables  # noqa: F401

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    # Create tables if they don't exist
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    route_cache = RouteCache(
        ttl_seconds=settings.cache_ttl_seconds,
        max_size=settings.cache_max_size,
        precision=settings.cache_precision,
        top_n=settings.cache_top_entries,
        policy=make_policy(settings.cache_eviction_policy, settings.cache_decay_half_life_seconds),
    )

    # Restore the previous snapshot, if persistence is enabled
    redis_store = None
    persister = None
    if settings.cache_persistence == "redis":
        redis_store = RedisCacheStore(settings.redis_url, settings.cache_redis_key)
        await redis_store.connect()
        persister = CachePersister(route_cache, redis_store)
    elif settings.cache_persistence == "file":
        persister = CachePersister(route_cache, FileCacheStore(settings.cache_file_path))
    if persister is not None:
        await persister.restore()

    # Initialize services
    osrm_driving = OsrmProvider(settings.osrm_base_url, "driving", timeout=settings.provider_timeout_seconds)
    osrm_foot = OsrmProvider(settings.osrm_foot_base_url, "foot", timeout=settings.provider_timeout_seconds)
    itinerary = ItineraryProvider(settings.itinerary_base_url)

    providers = [osrm_driving, itinerary]
    if settings.straight_line_fallback:
        providers.append(StraightLineProvider(settings.walking_speed_mps))

    extractor = ShapeSegmentExtractor(
        engines={"bus": osrm_driving, "walk": osrm_foot},
        bus_speed_mps=settings.bus_speed_mps,
        walking_speed_mps=settings.walking_speed_mps,
        engine_timeout=settings.provider_timeout_seconds,
    )
    resolver = RouteResolver(
        route_cache,
        providers,
        extractor=extractor,
        shape_store=SqlShapeStore(async_session),
        itinerary=itinerary,
        epsilon=settings.simplify_epsilon,
        provider_timeout=settings.provider_timeout_seconds,
    )

    # Wire up API modules
    routes.resolver = resolver
    bus.resolver = resolver
    cache.cache = route_cache

    # Start scheduler
    scheduler = create_scheduler(route_cache, persister)
    scheduler.start()
    logger.info(
        "Route geometry engine started - cache ttl=%ds max=%d policy=%s persistence=%s",
        settings.cache_ttl_seconds, settings.cache_max_size,
        settings.cache_eviction_policy, settings.cache_persistence,
    )

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    if persister is not None:
        await persister.flush()
    if redis_store is not None:
        await redis_store.close()
    await osrm_driving.close()
    await osrm_foot.close()
    await itinerary.close()
    await engine.dispose()
    logger.info("Route geometry engine shut down")


app = FastAPI(
    title="Route Geometry Engine",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes.router)
app.include_router(bus.router)
app.include_router(cache.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
