"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from colorcompete.automation.context import build_automation_context
from colorcompete.automation.router import router as automation_router
from colorcompete.automation.scheduler import AutomationScheduler
from colorcompete.automation.seed import seed_automations
from colorcompete.config import get_settings
from colorcompete.database import close_db, get_session_factory, init_db
from colorcompete.gamification.router import router as badges_router
from colorcompete.gamification.seed import seed_badges
from colorcompete.health.router import router as health_router
from colorcompete.middleware import setup_middleware
from colorcompete.redis_client import close_redis, init_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.redis_url:
        await init_redis(settings.redis_url)

    # Seed badge catalog and drawing automations (idempotent)
    try:
        async with get_session_factory()() as db:
            await seed_badges(db)
            await seed_automations(db)
    except Exception:
        logger.warning("Seeding failed (tables may not exist yet)", exc_info=True)

    app.state.automation_context = build_automation_context(settings)
    app.state.scheduler = None
    if settings.scheduler_enabled:
        scheduler = AutomationScheduler(get_session_factory(), app.state.automation_context)
        try:
            await scheduler.start()
            app.state.scheduler = scheduler
        except Exception:
            logger.exception("Automation scheduler failed to start")

    yield

    if app.state.scheduler is not None:
        app.state.scheduler.stop_all_automations()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="ColorCompete Engagement API",
        description="Badges, lifecycle email automations and monthly subscriber drawings",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(badges_router)
    app.include_router(automation_router)

    return app


app = create_app()
