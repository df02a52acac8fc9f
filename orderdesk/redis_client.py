import redis.asyncio as redis
from orderdesk.config import settings

_redis: redis.Redis | None = None

IN_PROGRESS = "in_progress"


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


def idempotency_key(client_key: str) -> str:
    return f"idempotency:create_order:{client_key}"


async def claim_idempotency_key(r: redis.Redis, key: str, ttl_seconds: int | None = None) -> str | None:
    """
    Returns None if this key is new -> caller should create the order, then remember_order().
    Returns the stored value if the key was already claimed: an order id, or IN_PROGRESS while
    the first request is still running.
    Uses SET NX: set if not exists. If we set it, we're first; if not, duplicate.
    """
    ttl = ttl_seconds or settings.idempotency_ttl_seconds
    was_set = await r.set(key, IN_PROGRESS, nx=True, ex=ttl)
    if was_set:
        return None
    return await r.get(key) or IN_PROGRESS


async def remember_order(r: redis.Redis, key: str, order_id: str, ttl_seconds: int | None = None) -> None:
    await r.set(key, order_id, ex=ttl_seconds or settings.idempotency_ttl_seconds)


async def release_idempotency_key(r: redis.Redis, key: str) -> None:
    """Forget a claimed key after a failed create so the client can retry."""
    await r.delete(key)
