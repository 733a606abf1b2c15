"""Monthly subscriber prize drawing.

One drawing per (month, year, subscription_tier). The row is created under a
unique constraint and then claimed with a conditional UPDATE, so only one
runner ever picks a winner and orders a gift card for a period.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.automation.context import AutomationContext, find_active_automation
from colorcompete.automation.formatting import (
    DEFAULT_PRIZES,
    TIER_NAMES,
    format_amount,
    month_year_label,
    resolve_timezone,
)
from colorcompete.db.models import EmailAutomation, MonthlyDrawing, Subscription, User
from colorcompete.email.templates import (
    monthly_drawing_participant_template,
    monthly_drawing_winner_template,
)

logger = structlog.get_logger()

TIERS = ("lite", "pro", "champ")

STATUS_PENDING = "pending"
STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Outcomes reported on DrawingResult.status
RESULT_COMPLETED = "completed"
RESULT_ALREADY_COMPLETED = "already_completed"
RESULT_ALREADY_CLAIMED = "already_claimed"
RESULT_NO_PARTICIPANTS = "no_participants"
RESULT_GIFT_CARD_FAILED = "gift_card_failed"

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class DrawingResult:
    status: str
    tier: str
    month: int
    year: int
    drawing_id: int | None = None
    winner_user_id: int | None = None
    participant_count: int = 0
    emails_sent: int = 0
    participant_emails_sent: int = 0
    error: str | None = None

    @property
    def completed(self) -> bool:
        return self.status == RESULT_COMPLETED


@dataclass(frozen=True)
class Participant:
    user_id: int
    email: str
    name: str
    first_name: str

    def as_dict(self) -> dict[str, Any]:
        return {"user_id": self.user_id, "email": self.email, "name": self.name}


def tier_from_trigger(trigger_type: str) -> str:
    """'monthly_drawing_pro' -> 'pro'."""
    return trigger_type.removeprefix("monthly_drawing_")


def allows_reward_notifications(preferences: dict[str, Any] | None) -> bool:
    prefs = preferences or {}
    value = prefs.get("reward_notifications", prefs.get("rewardNotifications"))
    return value is not False


async def eligible_participants(db: AsyncSession, tier: str, month: int, year: int) -> list[Participant]:
    """Active subscribers of a tier for the period with submissions left.

    Users without a usable email or who opted out of reward notifications
    are excluded.
    """
    result = await db.execute(
        select(User)
        .join(Subscription, Subscription.user_id == User.id)
        .where(
            Subscription.tier == tier,
            Subscription.month == month,
            Subscription.year == year,
            Subscription.is_active.is_(True),
            Subscription.remaining_submissions > 0,
        )
        .order_by(Subscription.id)
    )
    pool: list[Participant] = []
    seen: set[int] = set()
    for user in result.unique().scalars():
        if user.id in seen:
            continue
        seen.add(user.id)
        if not user.email or not EMAIL_PATTERN.match(user.email):
            continue
        if not allows_reward_notifications(user.email_preferences):
            continue
        pool.append(Participant(
            user_id=user.id,
            email=user.email,
            name=user.full_name,
            first_name=user.display_name,
        ))
    return pool


def prize_for(tier: str, drawing_settings: dict[str, Any] | None) -> float:
    settings = drawing_settings or {}
    amount = settings.get("prizeAmount", settings.get("prize_amount"))
    if amount:
        return float(amount)
    return float(DEFAULT_PRIZES.get(tier, 0))


async def _find_drawing(db: AsyncSession, tier: str, month: int, year: int) -> MonthlyDrawing | None:
    result = await db.execute(
        select(MonthlyDrawing).where(
            MonthlyDrawing.month == month,
            MonthlyDrawing.year == year,
            MonthlyDrawing.subscription_tier == tier,
        )
    )
    return result.scalar_one_or_none()


async def _get_or_create_drawing(
    db: AsyncSession,
    *,
    tier: str,
    month: int,
    year: int,
    prize_amount: float,
    automation_id: int | None,
    now: datetime,
) -> MonthlyDrawing:
    drawing = await _find_drawing(db, tier, month, year)
    if drawing is not None:
        return drawing

    drawing = MonthlyDrawing(
        month=month,
        year=year,
        subscription_tier=tier,
        prize_amount=prize_amount,
        drawing_date=now,
        participants=[],
        status=STATUS_PENDING,
        is_completed=False,
        automation_id=automation_id,
        created_at=now,
        updated_at=now,
    )
    db.add(drawing)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent run inserted the row first
        await db.rollback()
        drawing = await _find_drawing(db, tier, month, year)
        if drawing is None:
            raise
    return drawing


async def _claim(
    db: AsyncSession,
    drawing_id: int,
    now: datetime,
    claim_timeout: timedelta,
    retry_failed: bool,
) -> bool:
    """Atomically mark the drawing in progress. False if someone else holds it."""
    claimable = [MonthlyDrawing.status == STATUS_PENDING]
    if retry_failed:
        claimable.append(MonthlyDrawing.status == STATUS_FAILED)
    claimable.append(
        and_(
            MonthlyDrawing.status == STATUS_IN_PROGRESS,
            or_(MonthlyDrawing.claimed_at.is_(None), MonthlyDrawing.claimed_at < now - claim_timeout),
        )
    )
    result = await db.execute(
        update(MonthlyDrawing)
        .where(
            MonthlyDrawing.id == drawing_id,
            MonthlyDrawing.is_completed.is_(False),
            or_(*claimable),
        )
        .values(status=STATUS_IN_PROGRESS, claimed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def run_monthly_drawing(
    db: AsyncSession,
    automation: EmailAutomation,
    ctx: AutomationContext,
    tier: str | None = None,
    now: datetime | None = None,
    retry_failed: bool = False,
) -> DrawingResult:
    """Pick a random eligible subscriber, send the gift card and notify everyone.

    Emails go out only after the gift card succeeds. A failed gift card marks
    the drawing failed; it is retried only by an explicit re-run with
    retry_failed=True.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    automation_id = automation.id
    tier = tier or tier_from_trigger(automation.trigger_type)
    schedule = automation.schedule or {}
    drawing_settings = dict(automation.monthly_drawing_settings or {})
    template = dict(automation.email_template or {})

    local_now = now.astimezone(resolve_timezone(schedule.get("timezone"), ctx.settings.default_timezone))
    month, year = local_now.month, local_now.year
    log = logger.bind(automation_id=automation_id, tier=tier, month=month, year=year)

    existing = await _find_drawing(db, tier, month, year)
    if existing is not None and existing.is_completed:
        log.info("drawing_already_completed", drawing_id=existing.id)
        return DrawingResult(RESULT_ALREADY_COMPLETED, tier, month, year, drawing_id=existing.id)

    pool = await eligible_participants(db, tier, month, year)
    if not pool:
        log.info("drawing_no_participants")
        return DrawingResult(RESULT_NO_PARTICIPANTS, tier, month, year)

    prize_amount = prize_for(tier, drawing_settings)
    drawing = await _get_or_create_drawing(
        db,
        tier=tier,
        month=month,
        year=year,
        prize_amount=prize_amount,
        automation_id=automation_id,
        now=now,
    )
    drawing_id = drawing.id

    claim_timeout = timedelta(minutes=ctx.settings.drawing_claim_timeout_minutes)
    if not await _claim(db, drawing_id, now, claim_timeout, retry_failed):
        log.info("drawing_already_claimed", drawing_id=drawing_id)
        return DrawingResult(RESULT_ALREADY_CLAIMED, tier, month, year, drawing_id=drawing_id)

    drawing = await db.get(MonthlyDrawing, drawing_id, populate_existing=True)
    winner = pool[int(ctx.rng.random() * len(pool))]
    drawing.prize_amount = prize_amount
    drawing.drawing_date = now
    drawing.participants = [p.as_dict() for p in pool]
    drawing.winner = winner.as_dict()
    drawing.automation_id = automation_id
    await db.commit()

    tier_name = TIER_NAMES.get(tier, tier.title())
    month_year = month_year_label(month, year)
    message = drawing_settings.get("giftCardMessage") or (
        f"Congratulations! You've won ${format_amount(prize_amount)} in the "
        f"ColorCompete {tier_name} monthly drawing for {month_year}!"
    )

    gift_card = await ctx.send_gift_card(
        db,
        to=winner.email,
        name=winner.name,
        amount=prize_amount,
        message=message,
        user_id=winner.user_id,
        automation_id=automation_id,
    )
    if not gift_card.success:
        drawing.status = STATUS_FAILED
        drawing.is_completed = False
        drawing.updated_at = now
        await db.commit()
        log.error("drawing_gift_card_failed", drawing_id=drawing_id, winner_user_id=winner.user_id, error=gift_card.error)
        return DrawingResult(
            RESULT_GIFT_CARD_FAILED, tier, month, year,
            drawing_id=drawing_id,
            winner_user_id=winner.user_id,
            participant_count=len(pool),
            error=gift_card.error,
        )

    drawing.gift_card_details = {
        "id": gift_card.gift_card_id,
        "code": gift_card.gift_card_code,
        "redeem_url": gift_card.redeem_url,
        "order_id": gift_card.order_id,
        "sent_at": now.isoformat(),
    }
    drawing.status = STATUS_COMPLETED
    drawing.is_completed = True
    drawing.updated_at = now
    await db.commit()
    log.info("drawing_completed", drawing_id=drawing_id, winner_user_id=winner.user_id, participants=len(pool))

    shared = {
        **ctx.common_links(),
        "tier_name": tier_name,
        "month_year": month_year,
        "prize_amount": format_amount(prize_amount),
        "winner_name": winner.first_name,
        "total_participants": len(pool),
    }

    emails_sent = 0
    if await ctx.deliver_template(
        db,
        template or monthly_drawing_winner_template(tier_name, prize_amount),
        {
            **shared,
            **ctx.common_links(winner.user_id),
            "user_name": winner.first_name,
            "gift_card_code": gift_card.gift_card_code or "",
            "redeem_url": gift_card.redeem_url or "",
        },
        to=winner.email,
        user_id=winner.user_id,
        automation_id=automation_id,
    ):
        emails_sent += 1

    participant_automation = await find_active_automation(db, f"monthly_drawing_{tier}_participant")
    participant_template = (
        dict(participant_automation.email_template or {}) if participant_automation else {}
    ) or monthly_drawing_participant_template()
    participant_automation_id = participant_automation.id if participant_automation else automation_id

    participant_sent = 0
    delay = ctx.settings.drawing_participant_delay_seconds
    for participant in pool:
        if participant.user_id == winner.user_id:
            continue
        if await ctx.deliver_template(
            db,
            participant_template,
            {
                **shared,
                **ctx.common_links(participant.user_id),
                "user_name": participant.first_name,
            },
            to=participant.email,
            user_id=participant.user_id,
            automation_id=participant_automation_id,
        ):
            participant_sent += 1
        if delay > 0:
            await ctx.sleep(delay)

    if participant_automation is not None:
        participant_automation.total_sent = (participant_automation.total_sent or 0) + participant_sent
        participant_automation.last_triggered = now
    else:
        emails_sent += participant_sent
    await db.commit()

    log.info("drawing_notifications_sent", winner_email_sent=emails_sent > 0, participant_emails=participant_sent)
    return DrawingResult(
        RESULT_COMPLETED, tier, month, year,
        drawing_id=drawing_id,
        winner_user_id=winner.user_id,
        participant_count=len(pool),
        emails_sent=emails_sent,
        participant_emails_sent=participant_sent,
    )


async def list_drawings(db: AsyncSession, tier: str | None = None, limit: int = 50) -> list[MonthlyDrawing]:
    """Most recent drawings first."""
    query = select(MonthlyDrawing).order_by(
        MonthlyDrawing.year.desc(), MonthlyDrawing.month.desc(), MonthlyDrawing.id.desc()
    )
    if tier:
        query = query.where(MonthlyDrawing.subscription_tier == tier)
    result = await db.execute(query.limit(limit))
    return list(result.scalars())


async def drawing_stats(db: AsyncSession) -> dict[str, dict[str, Any]]:
    """Per-tier totals: drawings held, completed, prize money paid out."""
    stats: dict[str, dict[str, Any]] = {
        tier: {"total": 0, "completed": 0, "total_prizes": 0.0, "last_winner": None} for tier in TIERS
    }
    for drawing in await list_drawings(db, limit=1000):
        entry = stats.setdefault(
            drawing.subscription_tier,
            {"total": 0, "completed": 0, "total_prizes": 0.0, "last_winner": None},
        )
        entry["total"] += 1
        if drawing.is_completed:
            entry["completed"] += 1
            entry["total_prizes"] += drawing.prize_amount
            if entry["last_winner"] is None and drawing.winner:
                entry["last_winner"] = drawing.winner.get("name")
    return stats
