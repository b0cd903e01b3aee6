# ============================================================================
# Report Cache
# ============================================================================
"""
Cache-aside helper used by every analytics component.

Cache failures never fail a read: a backend error on load is a miss, and a
backend error on store leaves the freshly computed report uncached.
"""
import logging
from typing import Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from app.core.cache import CacheLayer
from app.core.exceptions import CacheFailure

logger = logging.getLogger(__name__)

PLATFORM_NAMESPACE = "platform"

ReportT = TypeVar("ReportT", bound=BaseModel)


class ReportCache:
    """Stores pydantic reports as JSON under one cache namespace"""

    def __init__(self, cache: CacheLayer, namespace: str = PLATFORM_NAMESPACE):
        self.cache = cache
        self.namespace = namespace

    async def load(self, key: str, model: Type[ReportT]) -> Optional[ReportT]:
        try:
            value = await self.cache.get(self.namespace, key)
        except CacheFailure as e:
            logger.warning(f"📊 Cache read failed for {key}, computing uncached: {e.detail}")
            return None

        if value is None:
            logger.info(f"📊 Cache MISS for {key}")
            return None

        try:
            report = model.model_validate(value)
        except ValidationError:
            logger.warning(f"📊 Discarding malformed cache entry {key}")
            return None

        logger.info(f"📊 Cache HIT for {key}")
        return report.model_copy(update={"cached": True})

    async def store(self, key: str, report: BaseModel, ttl: int) -> None:
        try:
            await self.cache.set(self.namespace, key, report.model_dump(mode="json"), ttl)
        except CacheFailure as e:
            logger.warning(f"📊 Cache write failed for {key}: {e.detail}")

    async def delete_pattern(self, pattern: str) -> int:
        try:
            return await self.cache.delete_pattern(self.namespace, pattern)
        except CacheFailure as e:
            logger.warning(f"Cache invalidation failed for {pattern}: {e.detail}")
            return 0
