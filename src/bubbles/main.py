"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from bubbles.accounts.router import router as accounts_router
from bubbles.config import get_settings
from bubbles.database import close_db, init_db
from bubbles.giveaways.router import router as giveaways_router
from bubbles.health.router import router as health_router
from bubbles.ledger.router import router as ledger_router
from bubbles.middleware import setup_middleware
from bubbles.notifications.router import router as notifications_router
from bubbles.queue.router import router as queue_router
from bubbles.redis_client import close_redis, init_redis


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Bubble Ledger API",
        description="Queue-slot ledger for the bubble economy: contributions, queue, giveaways",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(accounts_router)
    app.include_router(ledger_router)
    app.include_router(queue_router)
    app.include_router(giveaways_router)
    app.include_router(notifications_router)

    return app


app = create_app()
