# ============================================================================
# Platform Cache Tasks
# ============================================================================
from celery import shared_task
from contextlib import asynccontextmanager
from typing import List, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)

def run_async(coro):
    """Helper to run async functions in Celery tasks"""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()

@asynccontextmanager
async def platform_service():
    """
    Build the analytics facade for one task run.

    Every run gets a fresh event loop, so pooled database connections and the
    Redis client are released before the loop closes.
    """
    from app.config import get_settings
    from app.core.cache import create_cache_layer
    from app.core.database import engine, async_session_maker
    from app.services.analytics import PlatformAnalyticsService, create_sql_sources

    settings = get_settings()
    cache = create_cache_layer(settings)
    try:
        yield PlatformAnalyticsService(
            sources=create_sql_sources(async_session_maker),
            cache=cache,
            settings=settings,
        )
    finally:
        await engine.dispose()
        redis_client = getattr(cache, "_redis", None)
        if redis_client is not None:
            await redis_client.aclose()

@shared_task(name="app.tasks.cache_tasks.warm_platform_cache")
def warm_platform_cache(school_ids: Optional[List[str]] = None):
    """Precompute the most requested cross-school reports"""
    async def _warm_up():
        async with platform_service() as service:
            result = await service.warm_up(school_ids)
            return result.model_dump()

    return run_async(_warm_up())

@shared_task(name="app.tasks.cache_tasks.invalidate_platform_cache")
def invalidate_platform_cache(school_id: Optional[str] = None):
    """Drop cross-school caches, optionally with one school's entries"""
    async def _invalidate():
        async with platform_service() as service:
            if school_id:
                deleted = await service.invalidate_tenant(school_id)
            else:
                deleted = await service.invalidate_cross_tenant_caches()
            logger.info(f"Invalidated {deleted} platform cache keys")
            return deleted

    return run_async(_invalidate())
