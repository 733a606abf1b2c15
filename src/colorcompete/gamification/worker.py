"""Badge arq worker: evaluates badges after submissions and contest results.

Submission and contest-completion flows enqueue ``check_user_badges``;
``check_all_badges`` backfills the whole user base nightly.
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings

from colorcompete.config import get_settings
from colorcompete.database import close_db, get_session_factory, init_db
from colorcompete.gamification.trigger_engine import check_all_user_badges, check_and_award_badges

logger = logging.getLogger(__name__)


async def badge_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["redis"] = (
        aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True, max_connections=10)
        if settings.redis_url
        else None
    )
    logger.info("Badge worker started")


async def badge_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Badge worker shut down")


async def check_user_badges(
    ctx: dict,  # type: ignore[type-arg]
    user_id: int,
    event_type: str = "submission",
    metadata: dict | None = None,
) -> list[str]:
    """Evaluate one user. Returns the names of newly awarded badges."""
    async with get_session_factory()() as db:
        outcome = await check_and_award_badges(db, user_id, event_type, metadata, redis=ctx.get("redis"))
    if outcome.failed:
        logger.warning("Badge grants failed for user %s: %s", user_id, outcome.failed)
    return outcome.awarded


async def check_all_badges(ctx: dict) -> int:  # type: ignore[type-arg]
    """Nightly backfill across every user."""
    async with get_session_factory()() as db:
        try:
            return await check_all_user_badges(db, redis=ctx.get("redis"))
        except Exception:
            logger.exception("Badge backfill failed")
            return 0


class BadgeWorkerSettings:
    """arq worker settings for badge evaluation."""

    functions = [check_user_badges, check_all_badges]
    cron_jobs = [
        cron(check_all_badges, hour=3, minute=30),  # 03:30 UTC
    ]
    on_startup = badge_startup
    on_shutdown = badge_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 600
