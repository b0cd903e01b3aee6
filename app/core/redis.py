# ============================================================================
# Redis Connection
# ============================================================================
import redis.asyncio as redis

def create_redis_client(url: str) -> redis.Redis:
    """Create an async Redis client. Connections are opened lazily."""
    return redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True
    )
