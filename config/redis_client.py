"""
config/redis_client.py
Async Redis client for reschedule slot claims and the JWT deny-list.
"""

from typing import Optional
import redis.asyncio as aioredis

from config.settings import settings


# ── Global client (initialized on startup) ───────────────────
redis_client: Optional[aioredis.Redis] = None


async def init_redis() -> None:
    """Initialize the Redis connection pool."""
    global redis_client
    redis_client = aioredis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    # Test connection
    await redis_client.ping()


async def close_redis() -> None:
    """Close Redis connection pool."""
    global redis_client
    if redis_client:
        await redis_client.aclose()


def get_redis() -> aioredis.Redis:
    """FastAPI dependency to get Redis client."""
    if not redis_client:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return redis_client


# ── Helpers ───────────────────────────────────────────────────
class RedisCache:
    """Key conventions and atomic operations on top of the raw client."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    # ── Slot Claims ──────────────────────────────────────────
    @staticmethod
    def slot_key(consultant_id: str, slot_at: str) -> str:
        return f"slot_lock:{consultant_id}:{slot_at}"

    async def lock_slot(self, consultant_id: str, slot_at: str, session_id: str) -> bool:
        """
        Atomic slot claim using SET NX (set if not exists).
        Returns True if the claim was acquired, False if another session holds it.
        """
        result = await self.client.set(
            self.slot_key(consultant_id, slot_at),
            session_id,
            ex=settings.REDIS_SLOT_LOCK_TTL,
            nx=True,  # Only set if key doesn't exist
        )
        return result is True

    async def release_slot(self, consultant_id: str, slot_at: str) -> None:
        await self.client.delete(self.slot_key(consultant_id, slot_at))

    async def get_slot_lock(self, consultant_id: str, slot_at: str) -> Optional[str]:
        return await self.client.get(self.slot_key(consultant_id, slot_at))

    # ── JWT Deny List ─────────────────────────────────────────
    async def is_token_revoked(self, jti: str) -> bool:
        return await self.client.exists(f"jwt_revoked:{jti}") == 1
