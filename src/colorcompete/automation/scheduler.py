"""Turns stored automation schedules into recurring APScheduler cron jobs.

One job per automation, keyed "automation:<id>". The job only carries the id;
the automation row is re-read every time it fires, so edits made between
firings take effect without a reschedule.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from colorcompete.automation.context import AutomationContext
from colorcompete.automation.formatting import resolve_timezone
from colorcompete.automation.handlers import run_automation
from colorcompete.db.models import EmailAutomation

logger = structlog.get_logger()

DAILY_TRIGGERS = frozenset({"contest_announcement", "voting_results", "daily_winner"})
WEEKLY_TRIGGERS = frozenset({"weekly_summary"})
DRAWING_TRIGGERS = frozenset({"monthly_drawing_lite", "monthly_drawing_pro", "monthly_drawing_champ"})
MONTHLY_TRIGGERS = DRAWING_TRIGGERS | {"monthly_winner"}

# monthly_winner fires on the 1st unless schedule.dayOfMonth says otherwise
DEFAULT_MONTH_DAY = 1

SYNC_JOB_ID = "automation-sync"

TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")

# Stored dayOfWeek uses 0 = Sunday
WEEKDAY_NAMES = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


class ScheduleError(ValueError):
    """An automation's schedule configuration cannot be turned into a trigger."""


@dataclass(frozen=True)
class CronSchedule:
    minute: int
    hour: int
    day: int | None = None
    day_of_week: int | None = None
    timezone: str = "UTC"

    @property
    def expression(self) -> str:
        """Five-field cron string, e.g. '0 9 * * 0'."""
        day = "*" if self.day is None else str(self.day)
        dow = "*" if self.day_of_week is None else str(self.day_of_week)
        return f"{self.minute} {self.hour} {day} * {dow}"

    def to_trigger(self, fallback_timezone: str = "UTC") -> CronTrigger:
        fields: dict[str, Any] = {"minute": self.minute, "hour": self.hour}
        if self.day is not None:
            fields["day"] = self.day
        if self.day_of_week is not None:
            fields["day_of_week"] = WEEKDAY_NAMES[self.day_of_week]
        return CronTrigger(timezone=resolve_timezone(self.timezone, fallback_timezone), **fields)


def parse_time(value: Any) -> tuple[int, int]:  # noqa: ANN401
    """'HH:MM' -> (hour, minute)."""
    if not value:
        msg = "schedule time is missing"
        raise ScheduleError(msg)
    match = TIME_PATTERN.match(str(value))
    if match is None:
        msg = f"malformed schedule time {value!r}"
        raise ScheduleError(msg)
    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59:
        msg = f"schedule time out of range {value!r}"
        raise ScheduleError(msg)
    return hour, minute


def _int_field(value: Any, name: str, low: int, high: int) -> int:  # noqa: ANN401
    try:
        number = int(value)
    except (TypeError, ValueError):
        msg = f"invalid {name} {value!r}"
        raise ScheduleError(msg) from None
    if not low <= number <= high:
        msg = f"{name} out of range {value!r}"
        raise ScheduleError(msg)
    return number


def build_schedule(automation: EmailAutomation, default_timezone: str = "UTC") -> CronSchedule | None:
    """Cron schedule for an automation, or None when its trigger is not time-based.

    Raises ScheduleError when a time-based automation is misconfigured.
    """
    trigger_type = automation.trigger_type
    if trigger_type not in DAILY_TRIGGERS | WEEKLY_TRIGGERS | MONTHLY_TRIGGERS:
        return None

    schedule = automation.schedule
    if not schedule:
        msg = f"{trigger_type} automation has no schedule"
        raise ScheduleError(msg)

    hour, minute = parse_time(schedule.get("time"))
    tz_name = schedule.get("timezone") or default_timezone

    if trigger_type in DAILY_TRIGGERS:
        return CronSchedule(minute=minute, hour=hour, timezone=tz_name)

    if trigger_type in WEEKLY_TRIGGERS:
        raw = schedule.get("dayOfWeek", schedule.get("day_of_week"))
        day_of_week = 0 if raw is None else _int_field(raw, "dayOfWeek", 0, 6)
        return CronSchedule(minute=minute, hour=hour, day_of_week=day_of_week, timezone=tz_name)

    drawing = automation.monthly_drawing_settings or {}
    raw_day = drawing.get("drawingDate", drawing.get("drawing_date"))
    if raw_day is None:
        raw_day = schedule.get("dayOfMonth", schedule.get("day_of_month"))
    if raw_day is None and trigger_type not in DRAWING_TRIGGERS:
        raw_day = DEFAULT_MONTH_DAY
    if raw_day is None:
        msg = f"{trigger_type} automation has no drawing day"
        raise ScheduleError(msg)
    day = _int_field(raw_day, "drawingDate", 1, 31)
    return CronSchedule(minute=minute, hour=hour, day=day, timezone=tz_name)


def _job_id(automation_id: int) -> str:
    return f"automation:{automation_id}"


class AutomationScheduler:
    """Owns one cron job per active, time-based automation."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        context: AutomationContext,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.context = context
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._scheduled: dict[int, CronSchedule] = {}
        self._running: set[int] = set()

    @property
    def scheduled_ids(self) -> set[int]:
        return set(self._scheduled)

    @property
    def running_ids(self) -> set[int]:
        return set(self._running)

    def get_schedule(self, automation_id: int) -> CronSchedule | None:
        return self._scheduled.get(automation_id)

    async def start(self) -> int:
        """Schedule every active automation and start the scheduler. Returns the job count."""
        async with self.session_factory() as db:
            result = await db.execute(
                select(EmailAutomation)
                .where(EmailAutomation.is_active.is_(True))
                .order_by(EmailAutomation.id)
            )
            automations = list(result.scalars())

        count = sum(1 for automation in automations if self.schedule_automation(automation))
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("automation_scheduler_started", scheduled=count, loaded=len(automations))
        return count

    def schedule_automation(self, automation: EmailAutomation) -> bool:
        """(Re)schedule one automation. Replaces any existing job. Never raises."""
        automation_id = automation.id
        self.stop_automation(automation_id)

        if not automation.is_active:
            return False
        try:
            schedule = build_schedule(automation, self.context.settings.default_timezone)
        except ScheduleError as exc:
            logger.error(
                "automation_schedule_invalid",
                automation_id=automation_id,
                trigger=automation.trigger_type,
                error=str(exc),
            )
            return False
        if schedule is None:
            return False

        try:
            self.scheduler.add_job(
                self.execute_automation,
                schedule.to_trigger(self.context.settings.default_timezone),
                args=[automation_id],
                id=_job_id(automation_id),
                name=automation.name,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=self.context.settings.scheduler_misfire_grace_seconds,
            )
        except Exception:
            logger.exception("automation_schedule_failed", automation_id=automation_id)
            return False

        self._scheduled[automation_id] = schedule
        logger.info(
            "automation_scheduled",
            automation_id=automation_id,
            trigger=automation.trigger_type,
            cron=schedule.expression,
            timezone=schedule.timezone,
        )
        return True

    async def update_automation(self, automation_id: int) -> bool:
        """Re-read an automation after an external edit and reschedule it."""
        async with self.session_factory() as db:
            automation = await db.get(EmailAutomation, automation_id)
        if automation is None:
            self.stop_automation(automation_id)
            return False
        return self.schedule_automation(automation)

    def _wanted_schedule(self, automation: EmailAutomation) -> CronSchedule | None:
        if not automation.is_active:
            return None
        try:
            return build_schedule(automation, self.context.settings.default_timezone)
        except ScheduleError:
            return None

    async def sync(self) -> int:
        """Bring jobs in line with the stored automations. Returns how many jobs changed."""
        async with self.session_factory() as db:
            result = await db.execute(select(EmailAutomation).order_by(EmailAutomation.id))
            automations = {automation.id: automation for automation in result.scalars()}

        changed = 0
        for automation_id in self.scheduled_ids - set(automations):
            self.stop_automation(automation_id)
            changed += 1
        for automation in automations.values():
            if self._wanted_schedule(automation) != self._scheduled.get(automation.id):
                self.schedule_automation(automation)
                changed += 1

        if changed:
            logger.info("automation_scheduler_synced", changed=changed, scheduled=len(self._scheduled))
        return changed

    def schedule_sync(self, interval_seconds: int) -> None:
        """Re-run sync() every interval_seconds so edits made elsewhere get picked up."""
        self.scheduler.add_job(
            self._sync_job,
            IntervalTrigger(seconds=interval_seconds),
            id=SYNC_JOB_ID,
            name="automation sync",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    async def _sync_job(self) -> None:
        try:
            await self.sync()
        except Exception:
            logger.exception("automation_scheduler_sync_failed")

    def stop_automation(self, automation_id: int) -> bool:
        """Remove the job. An execution already in flight runs to completion."""
        was_scheduled = self._scheduled.pop(automation_id, None) is not None
        if self.scheduler.get_job(_job_id(automation_id)) is not None:
            self.scheduler.remove_job(_job_id(automation_id))
            was_scheduled = True
        if was_scheduled:
            logger.info("automation_unscheduled", automation_id=automation_id)
        return was_scheduled

    def stop_all_automations(self) -> None:
        for automation_id in list(self._scheduled):
            self.stop_automation(automation_id)
        if self.scheduler.get_job(SYNC_JOB_ID) is not None:
            self.scheduler.remove_job(SYNC_JOB_ID)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    async def execute_automation(self, automation_id: int, now: datetime | None = None) -> int:
        """Run one automation now. Failures are logged, never raised to the scheduler."""
        if automation_id in self._running:
            logger.warning("automation_already_running", automation_id=automation_id)
            return 0

        self._running.add(automation_id)
        try:
            async with self.session_factory() as db:
                automation = await db.get(EmailAutomation, automation_id)
                if automation is None or not automation.is_active:
                    logger.info("automation_skipped_inactive", automation_id=automation_id)
                    return 0
                return await run_automation(db, automation, self.context, now=now)
        except Exception as exc:
            # The traceback is logged by run_automation as automation_failed
            logger.error("automation_execution_failed", automation_id=automation_id, error=str(exc))
            return 0
        finally:
            self._running.discard(automation_id)
