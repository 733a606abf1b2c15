"""Shared test fixtures.

Persistence-backed tests run against a throwaway SQLite file per test
(aiosqlite), created from the ORM metadata.
"""

from __future__ import annotations

import os
import random
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

# Configure before anything imports colorcompete.config / colorcompete.main
os.environ.setdefault("CC_EMAIL_PROVIDER", "stub")
os.environ.setdefault("CC_GIFT_CARD_PROVIDER", "stub")
os.environ.setdefault("CC_REDIS_URL", "")
os.environ.setdefault("CC_SCHEDULER_ENABLED", "false")
os.environ.setdefault("CC_LOG_FORMAT", "console")
os.environ.setdefault("CC_FRONTEND_BASE_URL", "https://colorcompete.test")

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from colorcompete.automation.context import AutomationContext
from colorcompete.config import get_settings
from colorcompete.database import close_db, get_engine, get_session_factory, init_db
from colorcompete.db import models  # noqa: F401
from colorcompete.db.base import Base
from colorcompete.email.service import EmailService, StubEmailProvider
from colorcompete.rewards.gift_card_service import StubGiftCardProvider


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory bound to a fresh SQLite database with all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'colorcompete.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for tests and assertions."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def email_provider() -> StubEmailProvider:
    return StubEmailProvider()


@pytest.fixture
def gift_card_provider() -> StubGiftCardProvider:
    return StubGiftCardProvider()


@pytest.fixture
def automation_ctx(email_provider, gift_card_provider) -> AutomationContext:
    """Automation context with in-memory providers, a seeded RNG and no real sleeping."""
    get_settings.cache_clear()
    return AutomationContext(
        email_service=EmailService(provider=email_provider),
        gift_cards=gift_card_provider,
        settings=get_settings(),
        rng=random.Random(42),
        sleep=AsyncMock(),
    )


@pytest_asyncio.fixture
async def app(tmp_path, automation_ctx) -> AsyncGenerator[FastAPI, None]:
    """The application, backed by a fresh SQLite database with the badge catalog seeded."""
    os.environ["CC_DATABASE_URL"] = f"sqlite+aiosqlite:///{tmp_path / 'api.db'}"
    get_settings.cache_clear()

    from colorcompete.main import create_app

    settings = get_settings()
    await init_db(settings.database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    from colorcompete.gamification.seed import seed_badges

    async with get_session_factory()() as db:
        await seed_badges(db)

    # ASGITransport does not run the lifespan; wire app state by hand
    application = create_app()
    application.state.automation_context = automation_ctx
    application.state.scheduler = None
    yield application

    await close_db()
    os.environ.pop("CC_DATABASE_URL", None)
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
