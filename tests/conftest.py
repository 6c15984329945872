"""Shared test fixtures.

Every test that touches storage gets its own SQLite file (via aiosqlite) and
the in-process claim cache; Redis is left unconfigured unless a test mocks it.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from propquest import dependencies
from propquest.config import get_settings
from propquest.database import close_db, create_schema, get_session, init_db
from propquest.db.models import User
from propquest.gamification.seed import seed_badges


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch) -> AsyncGenerator[str, None]:
    """Fresh schema with the badge catalog seeded. Yields the database URL."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'propquest.db'}"
    monkeypatch.setenv("PQ_DATABASE_URL", url)
    monkeypatch.setenv("PQ_CLAIM_CACHE_BACKEND", "memory")
    monkeypatch.setenv("PQ_LOG_FORMAT", "console")
    get_settings.cache_clear()
    dependencies._memory_claim_cache.cache_clear()

    await init_db(url)
    await create_schema()
    async for session in get_session():
        await seed_badges(session)

    yield url

    await close_db()
    get_settings.cache_clear()
    dependencies._memory_claim_cache.cache_clear()


@pytest_asyncio.fixture
async def db_session(database: str) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for service calls and assertions."""
    async for session in get_session():
        yield session


@pytest_asyncio.fixture
async def client(database: str) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client. The lifespan is not run; ``database`` stands in for it."""
    from propquest.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def other_session(database: str) -> AsyncGenerator[AsyncSession, None]:
    """A second, independent session on the same database (another tab or device)."""
    async for session in get_session():
        yield session


@pytest.fixture
def make_user():
    """Factory inserting a committed user row with every column set client-side."""

    async def _make_user(
        db: AsyncSession,
        display_name: str = "tester",
        account_type: str = "searcher",
        created_at: datetime | None = None,
    ) -> User:
        user = User(
            display_name=display_name,
            account_type=account_type,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user
