"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.config import get_settings
from bubbles.database import get_session
from bubbles.db.models import QueueTracker
from bubbles.redis_client import get_optional_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe: 200 while the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe: ledger tables reachable; Redis reachable if configured.

    Redis only carries notifications and rate limits, so its absence
    degrades the service without making it unready for ledger writes.
    """
    checks: dict[str, object] = {}

    try:
        await db.execute(select(QueueTracker.id).limit(1))
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    redis = get_optional_redis()
    if redis is None:
        checks["redis"] = "disabled"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception as exc:
            checks["redis"] = f"error: {exc}"

    if checks["database"] != "ok":
        status = "unavailable"
    elif checks["redis"] == "ok":
        status = "ready"
    else:
        status = "degraded"
    return {"status": status, "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
