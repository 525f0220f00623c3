"""Shared FastAPI dependencies."""

from collections.abc import AsyncGenerator

from bubbles.redis_client import get_optional_redis as _get_optional_redis


async def get_redis_dep() -> AsyncGenerator[object | None, None]:
    """Yield the Redis client (or None) as a FastAPI dependency."""
    yield _get_optional_redis()
