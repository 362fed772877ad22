"""APScheduler setup for periodic cache maintenance."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from routegeo.core.cache_store import CachePersister
from routegeo.core.route_cache import RouteCache

logger = logging.getLogger(__name__)


def create_scheduler(cache: RouteCache, persister: CachePersister | None = None) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from routegeo.config import settings

    scheduler = AsyncIOScheduler()

    # Drop expired entries every N seconds
    scheduler.add_job(
        cache.sweep_expired,
        "interval",
        kwargs={"batch_size": settings.cache_sweep_batch_size},
        seconds=settings.cache_sweep_interval_seconds,
        id="sweep_route_cache",
        name="Sweep expired route cache entries",
        max_instances=1,
    )

    # Snapshot the cache to the persistence store
    if persister is not None:
        scheduler.add_job(
            persister.flush,
            "interval",
            seconds=settings.cache_flush_interval_seconds,
            id="flush_route_cache",
            name="Flush route cache to persistence store",
            max_instances=1,
        )

    return scheduler
