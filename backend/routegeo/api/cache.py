"""Route cache metrics and administration."""

import logging

from fastapi import APIRouter, HTTPException

from routegeo.schemas.route import CacheStatsOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cache", tags=["cache"])

# Will be set by main.py
cache = None


@router.get("/stats", response_model=CacheStatsOut)
async def get_stats():
    """Hit/miss counters, live size and the most-used entries."""
    if cache is None:
        raise HTTPException(status_code=503, detail="Cache not initialized")
    metrics = cache.get_metrics()
    return CacheStatsOut(ttl_seconds=cache.ttl_seconds, **metrics.to_dict())


@router.delete("")
async def clear_cache():
    if cache is None:
        raise HTTPException(status_code=503, detail="Cache not initialized")
    removed = len(cache)
    cache.clear()
    logger.info("Cache cleared via API (%d entries)", removed)
    return {"cleared": removed}
