"""arq worker settings module.

Import path for arq CLI: arq colorcompete.workers.settings.WorkerSettings
"""

from __future__ import annotations

from colorcompete.automation.context import build_automation_context
from colorcompete.automation.worker import AutomationWorkerSettings
from colorcompete.config import get_settings
from colorcompete.gamification.worker import BadgeWorkerSettings, badge_shutdown, badge_startup


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Badge startup opens the database; the automation jobs only need their context on top."""
    await badge_startup(ctx)
    ctx["automation_context"] = build_automation_context(get_settings())


class WorkerSettings:
    """Single worker process running badge and automation jobs."""

    functions = [*BadgeWorkerSettings.functions, *AutomationWorkerSettings.functions]
    cron_jobs = BadgeWorkerSettings.cron_jobs
    on_startup = startup
    on_shutdown = badge_shutdown
    redis_settings = BadgeWorkerSettings.redis_settings
    max_jobs = 4
    job_timeout = BadgeWorkerSettings.job_timeout
    max_tries = AutomationWorkerSettings.max_tries


__all__ = ["WorkerSettings"]
