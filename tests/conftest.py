"""Shared test fixtures.

Each test gets a fresh SQLite database (aiosqlite) built from the ORM
metadata. Redis is replaced by an AsyncMock; nothing talks to a server.
"""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bubbles.config import get_settings
from bubbles.database import close_db, get_engine, get_session_factory, init_db
from bubbles.db.base import Base
from bubbles.db.models import Account

AccountFactory = Callable[..., Awaitable[Account]]


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[str, None]:
    """Fresh schema in a temporary SQLite file."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}"
    os.environ["BUBBLES_DATABASE_URL"] = url
    os.environ["BUBBLES_CONTENTION_RETRY_BASE_DELAY_MS"] = "0"
    get_settings.cache_clear()

    await init_db(url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield url
    await close_db()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_session(database: str) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for service calls and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def redis_mock() -> AsyncMock:
    """Stand-in Redis client that records publishes."""
    redis = AsyncMock()
    redis.publish = AsyncMock(return_value=1)
    return redis


@pytest.fixture
def make_account(db_session: AsyncSession) -> AccountFactory:
    """Factory inserting an account with the given ledger state."""
    counter = {"n": 0}

    async def _make(
        name: str | None = None,
        balance: int = 0,
        position: int = 0,
        slots: int = 0,
        progress: str = "{}",
        active: bool = True,
    ) -> Account:
        counter["n"] += 1
        account = Account(
            name=name or f"account-{counter['n']}",
            bubble_balance=balance,
            queue_position=position,
            queue_slot_count=slots,
            slot_progress=progress,
            is_active=active,
        )
        db_session.add(account)
        await db_session.commit()
        return account

    return _make


async def fetch_account(db: AsyncSession, account_id: int) -> Account:
    """Reload an account, bypassing the identity map."""
    result = await db.execute(
        select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest.fixture
def reload_account(db_session: AsyncSession) -> Callable[[int], Awaitable[Account]]:
    async def _reload(account_id: int) -> Account:
        return await fetch_account(db_session, account_id)

    return _reload


@pytest_asyncio.fixture
async def client(database: str, redis_mock: AsyncMock) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app, DB initialized, Redis mocked."""
    from bubbles.dependencies import get_redis_dep
    from bubbles.main import create_app

    app = create_app()

    async def _redis_override() -> AsyncMock:
        return redis_mock

    app.dependency_overrides[get_redis_dep] = _redis_override

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
