"""Automation arq worker: event-driven emails that are not time-scheduled.

Contest completion enqueues ``send_winner_reward_job``; new comments enqueue
``send_comment_notification_job``.
"""

from __future__ import annotations

import logging

from arq.connections import RedisSettings

from colorcompete.automation.context import build_automation_context
from colorcompete.automation.handlers import send_comment_notification, send_winner_reward
from colorcompete.config import get_settings
from colorcompete.database import close_db, get_session_factory, init_db

logger = logging.getLogger(__name__)


async def automation_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    settings = get_settings()
    await init_db(settings.database_url)
    ctx["automation_context"] = build_automation_context(settings)
    logger.info("Automation worker started")


async def automation_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Automation worker shut down")


async def send_winner_reward_job(
    ctx: dict,  # type: ignore[type-arg]
    winner_user_id: int,
    challenge_title: str,
    submission_image: str | None = None,
) -> bool:
    async with get_session_factory()() as db:
        return await send_winner_reward(
            db, ctx["automation_context"], winner_user_id, challenge_title, submission_image,
        )


async def send_comment_notification_job(
    ctx: dict,  # type: ignore[type-arg]
    submission_id: int,
    commenter_id: int,
    comment_text: str,
) -> bool:
    async with get_session_factory()() as db:
        return await send_comment_notification(
            db, ctx["automation_context"], submission_id, commenter_id, comment_text,
        )


class AutomationWorkerSettings:
    """arq worker settings for event-driven automation emails."""

    functions = [send_winner_reward_job, send_comment_notification_job]
    on_startup = automation_startup
    on_shutdown = automation_shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().arq_redis_url)
    max_jobs = 4
    job_timeout = 120
    max_tries = 1  # a gift card must never be ordered twice
