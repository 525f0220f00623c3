"""Ledger arq worker: outbox dispatch, queue refresh, payback reminders.

Runs as a standalone arq process:

    arq bubbles.workers.settings.WorkerSettings
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from bubbles.config import get_settings
from bubbles.database import close_db, get_session_factory, init_db
from bubbles.middleware.logging import setup_logging
from bubbles.notifications.dispatcher import dispatch_pending_notifications
from bubbles.notifications.reminders import enqueue_payback_reminders
from bubbles.queue.service import refresh_queue

logger = logging.getLogger(__name__)


async def ledger_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB and the publishing Redis client on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Ledger worker started")


async def ledger_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Ledger worker shut down")


async def dispatch_notifications(ctx: dict) -> int:  # type: ignore[type-arg]
    """Drain the notification outbox. Returns the number of rows sent."""
    async with get_session_factory()() as db:
        try:
            result = await dispatch_pending_notifications(db, ctx["redis"])
        except Exception:
            logger.exception("Failed to dispatch notifications")
            return 0
    return result.sent


async def refresh_queue_state(ctx: dict) -> int | None:  # type: ignore[type-arg]
    """Rebalance positions and recompute the top of queue."""
    async with get_session_factory()() as db:
        top = await refresh_queue(db)
    logger.info("Queue refreshed, top account=%s", top)
    return top


async def send_payback_reminders(ctx: dict) -> int:  # type: ignore[type-arg]
    """Remind debtors with enough balance, then push immediately."""
    settings = get_settings()
    async with get_session_factory()() as db:
        try:
            count = await enqueue_payback_reminders(db, settings.payback_reminder_min_balance)
            await dispatch_pending_notifications(db, ctx["redis"])
        except Exception:
            logger.exception("Failed to send payback reminders")
            return 0
    return count


def _every(minutes: int) -> set[int]:
    return set(range(0, 60, max(1, min(minutes, 60))))


class LedgerWorkerSettings:
    """arq worker settings for the ledger scheduler."""

    functions = [dispatch_notifications, refresh_queue_state, send_payback_reminders]
    cron_jobs = [
        cron(dispatch_notifications, second={0}, run_at_startup=True),
        cron(refresh_queue_state, minute=_every(get_settings().queue_refresh_interval_minutes), second={30}),
        cron(send_payback_reminders, hour={10, 18}, minute={0}, second={0}),  # 10:00 and 18:00 UTC
    ]
    on_startup = ledger_startup
    on_shutdown = ledger_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = get_settings().worker_timeout_seconds
    allow_abort_jobs = True
