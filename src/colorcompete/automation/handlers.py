"""Trigger-specific automation handlers and the shared run postlude.

Every fan-out is sequential: one recipient is awaited before the next so
totals stay exact and the email provider is not flooded.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from itertools import zip_longest

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.automation.context import AutomationContext, find_active_automation
from colorcompete.automation.drawing_service import TIERS, run_monthly_drawing
from colorcompete.automation.formatting import (
    format_amount,
    format_date,
    get_ordinal,
    month_year_label,
    resolve_timezone,
    week_range_label,
)
from colorcompete.db.models import Contest, EmailAutomation, Submission, User
from colorcompete.email.templates import winner_reward_template
from colorcompete.gamification.stats_service import normalize_vote_count

logger = structlog.get_logger()

DEFAULT_CONTEST_PRIZE = "$25 Gift Card"
DEFAULT_REWARD_AMOUNT = 25

Handler = Callable[[AsyncSession, EmailAutomation, AutomationContext, datetime], Awaitable[int]]


def _template(automation: EmailAutomation) -> dict:
    return automation.email_template or {}


async def _users_with_email(db: AsyncSession) -> list[User]:
    result = await db.execute(
        select(User).where(User.email.is_not(None), User.email != "").order_by(User.id)
    )
    return list(result.scalars())


# ---------------------------------------------------------------------------
# Scheduled handlers
# ---------------------------------------------------------------------------


async def send_contest_announcements(
    db: AsyncSession,
    automation: EmailAutomation,
    ctx: AutomationContext,
    now: datetime,
) -> int:
    """Announce contests that went live in the last 24 hours to every user."""
    since = now - timedelta(hours=24)
    contests = (await db.execute(
        select(Contest)
        .where(Contest.is_active.is_(True), Contest.created_at >= since, Contest.created_at <= now)
        .order_by(Contest.created_at)
    )).scalars().all()
    if not contests:
        logger.info("automation_nothing_to_send", automation_id=automation.id, trigger="contest_announcement")
        return 0

    users = await _users_with_email(db)
    sent = 0
    for contest in contests:
        contest_data = {
            "contest_title": contest.title,
            "contest_description": contest.description or "",
            "contest_prize": contest.prize or DEFAULT_CONTEST_PRIZE,
            "contest_deadline": format_date(contest.end_date),
            "voting_period": format_date(contest.voting_end_date),
            "contest_image": contest.line_art_url or "",
            "contest_url": ctx.url(f"/contests/{contest.id}"),
        }
        for user in users:
            variables = {
                **contest_data,
                **ctx.common_links(user.id),
                "user_name": user.display_name,
                "last_name": user.last_name or "",
                "full_name": user.full_name,
            }
            if await ctx.deliver_template(
                db, _template(automation), variables,
                to=user.email, user_id=user.id, automation_id=automation.id,
            ):
                sent += 1

    logger.info("contest_announcements_sent", automation_id=automation.id, contests=len(contests), sent=sent)
    return sent


async def _contest_participants(db: AsyncSession, contest_id: int) -> list[User]:
    participant_ids = select(Submission.user_id).where(Submission.contest_id == contest_id).distinct()
    result = await db.execute(
        select(User)
        .where(User.id.in_(participant_ids), User.email.is_not(None), User.email != "")
        .order_by(User.id)
    )
    return list(result.scalars())


# Flat top-three fields for templates that do not loop over winners
PODIUM_KEYS = (("winner_name", "winner_votes"), ("second_place", "second_votes"), ("third_place", "third_votes"))


def _podium(ranked: list[dict]) -> dict:
    podium = {"winning_submission": ranked[0]["image_url"] if ranked else ""}
    for (name_key, votes_key), entry in zip_longest(PODIUM_KEYS, ranked[:3]):
        podium[name_key] = entry["name"] if entry else ""
        podium[votes_key] = entry["votes"] if entry else ""
    return podium


async def send_voting_results(
    db: AsyncSession,
    automation: EmailAutomation,
    ctx: AutomationContext,
    now: datetime,
) -> int:
    """Email every participant of each contest whose voting closed in the last 24 hours."""
    since = now - timedelta(hours=24)
    contests = (await db.execute(
        select(Contest)
        .where(
            Contest.is_active.is_(False),
            Contest.voting_end_date >= since,
            Contest.voting_end_date <= now,
        )
        .order_by(Contest.voting_end_date)
    )).scalars().all()

    sent = 0
    for contest in contests:
        winners = contest.winners or []
        if not winners:
            continue

        winner_ids = [w.get("user_id") for w in winners]
        winner_users = {
            u.id: u for u in (await db.execute(select(User).where(User.id.in_(winner_ids)))).scalars()
        }
        votes = (await db.execute(select(Submission.votes).where(Submission.contest_id == contest.id))).scalars().all()
        participants = await _contest_participants(db, contest.id)

        ranked = []
        for index, winner in enumerate(winners):
            user = winner_users.get(winner.get("user_id"))
            ranked.append({
                "rank": get_ordinal(index + 1),
                "name": user.display_name if user else "Unknown artist",
                "prize": winner.get("prize", ""),
                "votes": normalize_vote_count(winner.get("votes")),
                "image_url": winner.get("image_url", ""),
            })

        contest_data = {
            "contest_title": contest.title,
            "winners": ranked,
            **_podium(ranked),
            "total_submissions": len(votes),
            "total_votes": sum(normalize_vote_count(v) for v in votes),
            "total_participants": len(participants),
            "contest_url": ctx.url(f"/contests/{contest.id}/results"),
            "results_url": ctx.url(f"/contests/{contest.id}/results"),
        }

        for user in participants:
            your_rank = next(
                (get_ordinal(i + 1) for i, w in enumerate(winners) if w.get("user_id") == user.id),
                None,
            )
            variables = {
                **contest_data,
                **ctx.common_links(user.id),
                "user_name": user.display_name,
                "is_winner": your_rank is not None,
                "your_rank": your_rank,
            }
            if await ctx.deliver_template(
                db, _template(automation), variables,
                to=user.email, user_id=user.id, automation_id=automation.id,
            ):
                sent += 1

    logger.info("voting_results_sent", automation_id=automation.id, contests=len(contests), sent=sent)
    return sent


async def send_weekly_summaries(
    db: AsyncSession,
    automation: EmailAutomation,
    ctx: AutomationContext,
    now: datetime,
) -> int:
    """Personal seven-day digest plus platform stats, one email per user."""
    week_start = now - timedelta(days=7)

    active_contests = (await db.execute(
        select(func.count(Contest.id)).where(Contest.is_active.is_(True))
    )).scalar_one()
    new_members = (await db.execute(
        select(func.count(User.id)).where(User.created_at >= week_start, User.created_at <= now)
    )).scalar_one()
    new_contests = (await db.execute(
        select(func.count(Contest.id)).where(Contest.created_at >= week_start, Contest.created_at <= now)
    )).scalar_one()
    platform_submissions = (await db.execute(
        select(func.count(Submission.id)).where(Submission.created_at >= week_start, Submission.created_at <= now)
    )).scalar_one()

    platform = {
        "week_range": week_range_label(week_start, now),
        "active_contests_count": active_contests,
        "new_members_count": new_members,
        "new_contests_count": new_contests,
        "total_submissions": platform_submissions,
    }

    sent = 0
    for user in await _users_with_email(db):
        rows = (await db.execute(
            select(Submission.votes, Submission.is_winner, Submission.created_at)
            .where(Submission.user_id == user.id)
        )).all()
        this_week = [r for r in rows if _within(r.created_at, week_start, now)]

        variables = {
            **platform,
            **ctx.common_links(user.id),
            "user_name": user.display_name,
            "submissions_count": len(this_week),
            "wins_count": sum(1 for r in this_week if r.is_winner),
            "votes_count": sum(normalize_vote_count(r.votes) for r in this_week),
            "lifetime_votes": sum(normalize_vote_count(r.votes) for r in rows),
        }
        if await ctx.deliver_template(
            db, _template(automation), variables,
            to=user.email, user_id=user.id, automation_id=automation.id,
        ):
            sent += 1

    logger.info("weekly_summaries_sent", automation_id=automation.id, sent=sent)
    return sent


def _within(ts: datetime, start: datetime, end: datetime) -> bool:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return start <= ts <= end


async def _top_voted_submission(db: AsyncSession, start: datetime, end: datetime) -> Submission | None:
    """Most-voted submission created in [start, end); the earliest wins a tie."""
    submissions = (await db.execute(
        select(Submission)
        .where(
            Submission.created_at >= start.astimezone(timezone.utc),
            Submission.created_at < end.astimezone(timezone.utc),
        )
        .order_by(Submission.created_at, Submission.id)
    )).scalars().all()
    if not submissions:
        return None
    return max(submissions, key=lambda s: normalize_vote_count(s.votes))


async def _announce_period_winner(
    db: AsyncSession,
    automation: EmailAutomation,
    ctx: AutomationContext,
    start: datetime,
    end: datetime,
    period: dict,
) -> int:
    submission = await _top_voted_submission(db, start, end)
    if submission is None:
        logger.info("automation_nothing_to_send", automation_id=automation.id, trigger=automation.trigger_type)
        return 0

    winner = await db.get(User, submission.user_id)
    contest = await db.get(Contest, submission.contest_id) if submission.contest_id else None
    winner_data = {
        **period,
        "winner_name": winner.display_name if winner else "Unknown artist",
        "winner_username": winner.username if winner else "",
        "winner_votes": normalize_vote_count(submission.votes),
        "challenge_title": contest.title if contest else "",
        "submission_title": submission.title or "",
        "submission_image": submission.image_url or "",
        "submission_url": ctx.url(f"/submissions/{submission.id}"),
    }

    sent = 0
    for user in await _users_with_email(db):
        variables = {**winner_data, **ctx.common_links(user.id), "user_name": user.display_name}
        if await ctx.deliver_template(
            db, _template(automation), variables,
            to=user.email, user_id=user.id, automation_id=automation.id,
        ):
            sent += 1

    logger.info(
        "period_winner_sent",
        automation_id=automation.id,
        trigger=automation.trigger_type,
        submission_id=submission.id,
        sent=sent,
    )
    return sent


def _local_now(automation: EmailAutomation, ctx: AutomationContext, now: datetime) -> datetime:
    schedule = automation.schedule or {}
    return now.astimezone(resolve_timezone(schedule.get("timezone"), ctx.settings.default_timezone))


async def send_daily_winner(
    db: AsyncSession,
    automation: EmailAutomation,
    ctx: AutomationContext,
    now: datetime,
) -> int:
    """Tell every user about yesterday's most-voted submission."""
    end = _local_now(automation, ctx, now).replace(hour=0, minute=0, second=0, microsecond=0)
    start = end - timedelta(days=1)
    return await _announce_period_winner(db, automation, ctx, start, end, {"date": format_date(start)})


async def send_monthly_winner(
    db: AsyncSession,
    automation: EmailAutomation,
    ctx: AutomationContext,
    now: datetime,
) -> int:
    """Tell every user about last month's most-voted submission."""
    end = _local_now(automation, ctx, now).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start = (end - timedelta(days=1)).replace(day=1)
    return await _announce_period_winner(
        db, automation, ctx, start, end, {"month": month_year_label(start.month, start.year)},
    )


def _drawing_handler(tier: str) -> Handler:
    async def handler(
        db: AsyncSession,
        automation: EmailAutomation,
        ctx: AutomationContext,
        now: datetime,
    ) -> int:
        result = await run_monthly_drawing(db, automation, ctx, tier=tier, now=now)
        return result.emails_sent

    handler.__name__ = f"run_monthly_drawing_{tier}"
    return handler


HANDLERS: dict[str, Handler] = {
    "contest_announcement": send_contest_announcements,
    "voting_results": send_voting_results,
    "weekly_summary": send_weekly_summaries,
    "daily_winner": send_daily_winner,
    "monthly_winner": send_monthly_winner,
    **{f"monthly_drawing_{tier}": _drawing_handler(tier) for tier in TIERS},
}


async def run_automation(
    db: AsyncSession,
    automation: EmailAutomation,
    ctx: AutomationContext,
    now: datetime | None = None,
) -> int:
    """Run the handler for an automation's trigger type.

    On success stamps last_triggered and adds the number of emails sent to
    total_sent. Handler errors propagate after the session is rolled back.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    automation_id = automation.id
    handler = HANDLERS.get(automation.trigger_type)
    if handler is None:
        logger.info("automation_event_only", automation_id=automation_id, trigger=automation.trigger_type)
        return 0

    log = logger.bind(automation_id=automation_id, trigger=automation.trigger_type)
    log.info("automation_started", name=automation.name)
    try:
        sent = await handler(db, automation, ctx, now)
    except Exception:
        await db.rollback()
        log.exception("automation_failed")
        raise

    await record_run(db, automation_id, sent, now)
    log.info("automation_completed", sent=sent)
    return sent


async def record_run(db: AsyncSession, automation_id: int, sent: int, now: datetime) -> None:
    """Stamp last_triggered and add to total_sent in one UPDATE, then commit."""
    await db.execute(
        update(EmailAutomation)
        .where(EmailAutomation.id == automation_id)
        .values(total_sent=EmailAutomation.total_sent + sent, last_triggered=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


# ---------------------------------------------------------------------------
# Event-driven handlers (called by contest / comment flows, not scheduled)
# ---------------------------------------------------------------------------


async def send_winner_reward(
    db: AsyncSession,
    ctx: AutomationContext,
    winner_user_id: int,
    challenge_title: str,
    submission_image: str | None = None,
    now: datetime | None = None,
) -> bool:
    """Gift card then congratulations email for a contest winner.

    The email only goes out after the gift card succeeds. Nothing is retried.
    """
    if now is None:
        now = datetime.now(timezone.utc)

    automation = await find_active_automation(db, "winner_reward")
    if automation is None:
        logger.info("automation_missing", trigger="winner_reward")
        return False

    winner = await db.get(User, winner_user_id)
    if winner is None or not winner.email:
        logger.warning("winner_reward_no_recipient", user_id=winner_user_id)
        return False

    reward = automation.reward_settings or {}
    amount = reward.get("giftCardAmount", reward.get("gift_card_amount")) or DEFAULT_REWARD_AMOUNT
    message = reward.get("giftCardMessage", reward.get("gift_card_message"))

    gift_card = await ctx.send_gift_card(
        db,
        to=winner.email,
        name=winner.full_name,
        amount=amount,
        message=message,
        user_id=winner.id,
        automation_id=automation.id,
    )
    if not gift_card.success:
        await db.commit()
        return False

    variables = {
        **ctx.common_links(winner.id),
        "winner_name": winner.display_name,
        "winner_username": winner.username,
        "challenge_title": challenge_title,
        "submission_image": submission_image or "",
        "reward_amount": format_amount(amount),
        "gift_card_code": gift_card.gift_card_code or "",
        "redeem_url": gift_card.redeem_url or "",
    }
    sent = await ctx.deliver_template(
        db, _template(automation) or winner_reward_template(), variables,
        to=winner.email, user_id=winner.id, automation_id=automation.id,
    )

    if sent:
        automation.total_sent = (automation.total_sent or 0) + 1
    automation.last_triggered = now
    await db.commit()
    logger.info("winner_reward_sent", user_id=winner.id, amount=amount, email_sent=sent)
    return sent


async def send_comment_notification(
    db: AsyncSession,
    ctx: AutomationContext,
    submission_id: int,
    commenter_id: int,
    comment_text: str,
    now: datetime | None = None,
) -> bool:
    """Tell a submission's owner that someone commented on it."""
    if now is None:
        now = datetime.now(timezone.utc)

    automation = await find_active_automation(db, "comment_feedback")
    if automation is None:
        logger.info("automation_missing", trigger="comment_feedback")
        return False

    submission = await db.get(Submission, submission_id)
    owner = await db.get(User, submission.user_id) if submission else None
    if submission is None or owner is None or not owner.email:
        logger.warning("comment_notification_no_recipient", submission_id=submission_id)
        return False
    if owner.id == commenter_id:
        return False

    commenter = await db.get(User, commenter_id)
    contest = await db.get(Contest, submission.contest_id) if submission.contest_id else None

    variables = {
        **ctx.common_links(owner.id),
        "user_name": owner.display_name,
        "submission_title": submission.title or "Your Submission",
        "contest_title": contest.title if contest else "",
        "commenter_name": commenter.display_name if commenter else "Someone",
        "comment_text": comment_text,
        "comment_date": format_date(now),
        "submission_image": submission.image_url or "",
        "submission_url": ctx.url(f"/submissions/{submission.id}"),
    }
    sent = await ctx.deliver_template(
        db, _template(automation), variables,
        to=owner.email, user_id=owner.id, automation_id=automation.id,
    )

    if sent:
        automation.total_sent = (automation.total_sent or 0) + 1
    automation.last_triggered = now
    await db.commit()
    return sent
