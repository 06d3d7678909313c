"""
Redis client for Stripe webhook idempotency.

Stripe retries deliveries, and several app instances may receive the same
event. Processed event ids are stored in Redis with a TTL; when Redis is not
configured or unreachable, a process-local set is used instead.
"""
import logging
from typing import Optional, Set

import redis.asyncio as redis

from partedeuro.core.config import settings

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None

# Fallback when Redis is unavailable (single instance only)
_processed_events: Set[str] = set()

WEBHOOK_KEY_PREFIX = "webhook:event:"
WEBHOOK_TTL_HOURS = 24


async def get_redis() -> Optional[redis.Redis]:
    """Get Redis client, initializing if needed.

    Returns None if REDIS_URL is not configured.
    """
    global _redis_client

    if not settings.REDIS_URL:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True
            )
            await _redis_client.ping()
            logger.info("Redis connection established")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Falling back to in-memory.")
            _redis_client = None

    return _redis_client


async def close_redis():
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.close()
        _redis_client = None


async def is_webhook_processed(event_id: str) -> bool:
    """Check whether a webhook event id was already handled."""
    if event_id in _processed_events:
        return True

    client = await get_redis()
    if not client:
        return False

    try:
        return await client.exists(f"{WEBHOOK_KEY_PREFIX}{event_id}") > 0
    except Exception as e:
        logger.warning(f"Redis check failed for webhook {event_id}: {e}")
        return False


async def mark_webhook_processed(event_id: str, ttl_hours: int = WEBHOOK_TTL_HOURS) -> bool:
    """Mark webhook event as processed.

    Returns True if stored in Redis, False if only the local set was updated.
    """
    _processed_events.add(event_id)

    client = await get_redis()
    if not client:
        return False

    try:
        await client.setex(f"{WEBHOOK_KEY_PREFIX}{event_id}", ttl_hours * 3600, "1")
        return True
    except Exception as e:
        logger.warning(f"Redis mark failed for webhook {event_id}: {e}")
        return False
