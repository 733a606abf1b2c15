"""Standalone runner for the automation scheduler.

Loads every active email automation, schedules its cron job and keeps the
event loop alive until SIGINT/SIGTERM. Use this when the API runs with
CC_SCHEDULER_ENABLED=false (several API replicas, one scheduler).

The API cannot reach this process, so POST /automations/{id}/reschedule
answers 503 there. Instead the runner re-reads all automations every
CC_SCHEDULER_SYNC_SECONDS and reschedules whatever changed.

Usage: python -m colorcompete.workers.automation_runner
"""

from __future__ import annotations

import asyncio
import logging
import signal

from colorcompete.automation.context import build_automation_context
from colorcompete.automation.scheduler import AutomationScheduler
from colorcompete.automation.seed import seed_automations
from colorcompete.config import get_settings
from colorcompete.database import close_db, get_session_factory, init_db
from colorcompete.middleware.logging import setup_logging

logger = logging.getLogger(__name__)

_stop_event: asyncio.Event | None = None


async def main() -> None:
    """Run the automation scheduler until signalled."""
    global _stop_event  # noqa: PLW0603

    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)

    async with get_session_factory()() as db:
        await seed_automations(db)

    scheduler = AutomationScheduler(get_session_factory(), build_automation_context(settings))
    _stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _stop_event.set)

    try:
        count = await scheduler.start()
        if settings.scheduler_sync_seconds > 0:
            scheduler.schedule_sync(settings.scheduler_sync_seconds)
        logger.info("Automation runner started with %d scheduled automations", count)
        await _stop_event.wait()
    finally:
        scheduler.stop_all_automations()
        await close_db()
        logger.info("Automation runner stopped")


if __name__ == "__main__":
    asyncio.run(main())
