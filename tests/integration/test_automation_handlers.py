"""Integration: scheduled automation handlers and event-driven reward emails."""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.automation import handlers
from colorcompete.automation.handlers import (
    run_automation,
    send_comment_notification,
    send_contest_announcements,
    send_daily_winner,
    send_monthly_winner,
    send_voting_results,
    send_weekly_summaries,
    send_winner_reward,
)
from colorcompete.db.models import Contest, EmailAutomation, EmailLog, Submission, User
from colorcompete.email.service import EmailResult, EmailService
from colorcompete.rewards.gift_card_service import GiftCardResult

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def _automation(trigger_type: str, subject: str, html: str, **overrides) -> EmailAutomation:
    options = {
        "name": trigger_type.replace("_", " ").title(),
        "trigger_type": trigger_type,
        "is_active": True,
        "email_template": {"subject": subject, "htmlContent": html},
        "schedule": {"time": "09:00", "timezone": "UTC"},
        "total_sent": 0,
    }
    options.update(overrides)
    return EmailAutomation(**options)


@pytest_asyncio.fixture
async def users(db_session: AsyncSession) -> dict[str, User]:
    """Three reachable users and one without an email address."""
    joined = NOW - timedelta(days=30)
    people = {
        "ada": User(username="ada", email="ada@example.com", first_name="Ada", last_name="Lovelace", created_at=joined),
        "bo": User(username="bo", email="bo@example.com", first_name="Bo", created_at=joined),
        "cy": User(username="cy", email="cy@example.com", created_at=joined),
        "dee": User(username="dee", email=None, created_at=joined),
    }
    db_session.add_all(people.values())
    await db_session.commit()
    return people


def _by_recipient(outbox: list[dict]) -> dict[str, dict]:
    return {message["to"]: message for message in outbox}


class TestContestAnnouncements:
    @pytest.mark.asyncio
    async def test_announces_only_new_active_contests(self, db_session, users, automation_ctx, email_provider):
        db_session.add_all([
            Contest(title="Spring Garden", prize="$50 Gift Card", is_active=True, created_at=NOW - timedelta(hours=1)),
            Contest(title="Old News", is_active=True, created_at=NOW - timedelta(days=3)),
            Contest(title="Cancelled", is_active=False, created_at=NOW - timedelta(hours=2)),
        ])
        automation = _automation(
            "contest_announcement",
            "New contest: {{contest_title}}",
            "<p>Hi {{userName}}, win {{contestPrize}} at {{contest_url}}</p>",
        )
        db_session.add(automation)
        await db_session.commit()

        sent = await send_contest_announcements(db_session, automation, automation_ctx, NOW)

        assert sent == 3
        assert {m["subject"] for m in email_provider.outbox} == {"New contest: Spring Garden"}
        ada = _by_recipient(email_provider.outbox)["ada@example.com"]
        assert "Hi Ada, win $50 Gift Card at https://colorcompete.test/contests/" in ada["html"]
        assert _by_recipient(email_provider.outbox)["cy@example.com"]["html"].startswith("<p>Hi cy,")

    @pytest.mark.asyncio
    async def test_nothing_new_sends_nothing(self, db_session, users, automation_ctx, email_provider):
        automation = _automation("contest_announcement", "s", "<p>b</p>")
        db_session.add(automation)
        await db_session.commit()

        assert await send_contest_announcements(db_session, automation, automation_ctx, NOW) == 0
        assert email_provider.outbox == []


class TestVotingResults:
    @pytest_asyncio.fixture
    async def finished_contest(self, db_session, users):
        ada, bo, cy, dee = users["ada"], users["bo"], users["cy"], users["dee"]
        contest = Contest(
            title="Ocean Dreams",
            is_active=False,
            voting_end_date=NOW - timedelta(hours=2),
            winners=[
                {"user_id": ada.id, "prize": "$25", "votes": [7, 8, 9], "image_url": "https://img.test/ada.png"},
                {"user_id": bo.id, "prize": "$10", "votes": 2, "image_url": "https://img.test/bo.png"},
            ],
            created_at=NOW - timedelta(days=3),
        )
        stale = Contest(
            title="Last Week",
            is_active=False,
            voting_end_date=NOW - timedelta(days=2),
            winners=[{"user_id": ada.id}],
        )
        no_winners = Contest(title="Empty", is_active=False, voting_end_date=NOW - timedelta(hours=1), winners=[])
        db_session.add_all([contest, stale, no_winners])
        await db_session.flush()
        db_session.add_all([
            Submission(user_id=ada.id, contest_id=contest.id, votes=[7, 8, 9], is_winner=True, created_at=NOW - timedelta(days=2)),
            Submission(user_id=bo.id, contest_id=contest.id, votes=2, created_at=NOW - timedelta(days=2)),
            Submission(user_id=cy.id, contest_id=contest.id, votes=[], created_at=NOW - timedelta(days=2)),
            Submission(user_id=dee.id, contest_id=contest.id, votes=1, created_at=NOW - timedelta(days=2)),
            Submission(user_id=cy.id, contest_id=stale.id, votes=0, created_at=NOW - timedelta(days=5)),
        ])
        await db_session.commit()
        return contest

    @pytest.mark.asyncio
    @pytest.mark.filterwarnings("error::sqlalchemy.exc.SAWarning")
    async def test_participants_get_ranked_results(self, db_session, finished_contest, automation_ctx, email_provider):
        automation = _automation(
            "voting_results",
            "Results: {{contest_title}}",
            "<ol>{{#winners}}<li>{{rank}} {{name}} ({{votes}})</li>{{/winners}}</ol>"
            "<p>{{total_submissions}} entries, {{total_votes}} votes</p>"
            "{{#is_winner}}<p>You placed {{your_rank}}!</p>{{/is_winner}}",
        )
        db_session.add(automation)
        await db_session.commit()

        sent = await send_voting_results(db_session, automation, automation_ctx, NOW)

        assert sent == 3
        outbox = _by_recipient(email_provider.outbox)
        assert set(outbox) == {"ada@example.com", "bo@example.com", "cy@example.com"}
        assert all(m["subject"] == "Results: Ocean Dreams" for m in email_provider.outbox)

        ada_html = outbox["ada@example.com"]["html"]
        assert "<li>1st Ada (3)</li><li>2nd Bo (2)</li>" in ada_html
        assert "<p>4 entries, 6 votes</p>" in ada_html
        assert "You placed 1st!" in ada_html
        assert "You placed 2nd!" in outbox["bo@example.com"]["html"]
        assert "You placed" not in outbox["cy@example.com"]["html"]

    @pytest.mark.asyncio
    async def test_flat_podium_fields(self, db_session, finished_contest, automation_ctx, email_provider):
        automation = _automation(
            "voting_results",
            "Voting Complete: {{challenge_title}} Results",
            "<h2>Winner: {{winner_name}}</h2><img src=\"{{winning_submission}}\">"
            "<ol><li>{{winner_name}} - {{winner_votes}}</li>"
            "<li>{{second_place}} - {{second_votes}}</li>"
            "<li>{{third_place}} - {{third_votes}}</li></ol>",
        )
        db_session.add(automation)
        await db_session.commit()

        await send_voting_results(db_session, automation, automation_ctx, NOW)

        message = _by_recipient(email_provider.outbox)["cy@example.com"]
        assert message["subject"] == "Voting Complete: Ocean Dreams Results"
        assert "<h2>Winner: Ada</h2>" in message["html"]
        assert 'src="https://img.test/ada.png"' in message["html"]
        assert "<li>Ada - 3</li><li>Bo - 2</li><li> - </li>" in message["html"]


class TestWeeklySummaries:
    @pytest.mark.asyncio
    async def test_personal_and_platform_numbers(self, db_session, users, automation_ctx, email_provider):
        ada = users["ada"]
        db_session.add_all([
            Submission(user_id=ada.id, votes=[1, 2], is_winner=True, created_at=NOW - timedelta(days=1)),
            Submission(user_id=ada.id, votes=0, created_at=NOW - timedelta(days=2)),
            Submission(user_id=ada.id, votes=5, created_at=NOW - timedelta(days=14)),
            User(username="newbie", email="newbie@example.com", created_at=NOW - timedelta(days=1)),
        ])
        automation = _automation(
            "weekly_summary",
            "Your week: {{week_range}}",
            "<p>{{submissions_count}}|{{wins_count}}|{{votes_count}}|{{lifetime_votes}}</p>"
            "<p>{{new_members_count}} new, {{total_submissions}} total</p>",
            schedule={"time": "10:00", "dayOfWeek": 0},
        )
        db_session.add(automation)
        await db_session.commit()

        sent = await send_weekly_summaries(db_session, automation, automation_ctx, NOW)

        assert sent == 4
        outbox = _by_recipient(email_provider.outbox)
        assert outbox["ada@example.com"]["subject"] == "Your week: March 3, 2026 - March 10, 2026"
        assert "<p>2|1|2|7</p>" in outbox["ada@example.com"]["html"]
        assert "<p>0|0|0|0</p>" in outbox["bo@example.com"]["html"]
        assert "<p>1 new, 2 total</p>" in outbox["cy@example.com"]["html"]

    @pytest.mark.asyncio
    async def test_legacy_template_keys(self, db_session, users, automation_ctx, email_provider):
        db_session.add_all([
            Submission(user_id=users["ada"].id, votes=[1, 2], is_winner=True, created_at=NOW - timedelta(days=1)),
            Contest(title="Spring Garden", is_active=True, created_at=NOW - timedelta(days=10)),
        ])
        automation = _automation(
            "weekly_summary",
            "Week of {{weekRange}}",
            "subs={{submissions_count}} votes={{votes_received}} won={{contests_won}} "
            "active={{active_contests}} new={{new_members}} | "
            "{{submissionsThisWeek}}/{{votesReceived}}/{{newContestsCount}}",
            schedule={"time": "10:00", "dayOfWeek": 0},
        )
        db_session.add(automation)
        await db_session.commit()

        await send_weekly_summaries(db_session, automation, automation_ctx, NOW)

        message = _by_recipient(email_provider.outbox)["ada@example.com"]
        assert message["subject"] == "Week of March 3, 2026 - March 10, 2026"
        assert "subs=1 votes=2 won=1 active=1 new=0 | 1/2/0" in message["html"]


class TestPeriodWinners:
    @pytest_asyncio.fixture
    async def entries(self, db_session, users) -> Contest:
        ada, bo, cy = users["ada"], users["bo"], users["cy"]
        contest = Contest(title="Ocean Dreams", is_active=True, created_at=NOW - timedelta(days=40))
        db_session.add(contest)
        await db_session.flush()
        db_session.add_all([
            # March 9 (yesterday)
            Submission(user_id=ada.id, contest_id=contest.id, votes=[1, 2, 3], created_at=datetime(2026, 3, 9, 8, tzinfo=timezone.utc)),
            Submission(
                user_id=bo.id, contest_id=contest.id, title="Reef", image_url="https://img.test/reef.png",
                votes=5, created_at=datetime(2026, 3, 9, 20, tzinfo=timezone.utc),
            ),
            # Today and the day before yesterday
            Submission(user_id=cy.id, votes=10, created_at=datetime(2026, 3, 10, 1, tzinfo=timezone.utc)),
            Submission(user_id=cy.id, votes=20, created_at=datetime(2026, 3, 8, 23, tzinfo=timezone.utc)),
            # February
            Submission(user_id=ada.id, votes=4, created_at=datetime(2026, 2, 3, tzinfo=timezone.utc)),
            Submission(user_id=bo.id, contest_id=contest.id, votes=[1, 2, 3, 4, 5, 6], created_at=datetime(2026, 2, 20, tzinfo=timezone.utc)),
            # January 31
            Submission(user_id=cy.id, votes=40, created_at=datetime(2026, 1, 31, 23, tzinfo=timezone.utc)),
        ])
        await db_session.commit()
        return contest

    @pytest.mark.asyncio
    async def test_daily_winner_picks_yesterdays_top_entry(self, db_session, entries, automation_ctx, email_provider):
        automation = _automation(
            "daily_winner",
            "Winner: {{winner_name}}",
            "<p>{{winner_name}} (@{{winner_username}}) won {{date}} with {{winner_votes}} votes in {{challenge_title}}</p>"
            "<img src=\"{{submission_image}}\">",
        )
        db_session.add(automation)
        await db_session.commit()

        sent = await send_daily_winner(db_session, automation, automation_ctx, NOW)

        assert sent == 3
        message = _by_recipient(email_provider.outbox)["cy@example.com"]
        assert message["subject"] == "Winner: Bo"
        assert "<p>Bo (@bo) won March 9, 2026 with 5 votes in Ocean Dreams</p>" in message["html"]
        assert 'src="https://img.test/reef.png"' in message["html"]

    @pytest.mark.asyncio
    async def test_monthly_winner_picks_last_months_top_entry(self, db_session, entries, automation_ctx, email_provider):
        automation = _automation(
            "monthly_winner",
            "{{month}} champion",
            "<p>{{winner_name}}: {{winner_votes}}</p>",
            schedule={"time": "10:00", "timezone": "UTC"},
        )
        db_session.add(automation)
        await db_session.commit()

        sent = await run_automation(db_session, automation, automation_ctx, NOW)

        assert sent == 3
        assert {m["subject"] for m in email_provider.outbox} == {"February 2026 champion"}
        assert all("<p>Bo: 6</p>" in m["html"] for m in email_provider.outbox)
        await db_session.refresh(automation)
        assert automation.total_sent == 3

    @pytest.mark.asyncio
    async def test_schedule_timezone_sets_the_day(self, db_session, entries, automation_ctx, email_provider):
        # 00:00-24:00 on March 9 in New York is 04:00 March 9 to 04:00 March 10 UTC
        automation = _automation(
            "daily_winner", "s", "<p>{{winner_name}} {{winner_votes}}</p>",
            schedule={"time": "12:00", "timezone": "America/New_York"},
        )
        db_session.add(automation)
        await db_session.commit()

        await send_daily_winner(db_session, automation, automation_ctx, NOW)

        assert "<p>cy 10</p>" in email_provider.outbox[0]["html"]

    @pytest.mark.asyncio
    async def test_no_entries_sends_nothing(self, db_session, users, automation_ctx, email_provider):
        automation = _automation("daily_winner", "s", "<p>{{winner_name}}</p>")
        db_session.add(automation)
        await db_session.commit()

        assert await send_daily_winner(db_session, automation, automation_ctx, NOW) == 0
        assert email_provider.outbox == []


class TestRunAutomation:
    @pytest.mark.asyncio
    async def test_records_totals(self, db_session, users, automation_ctx):
        automation = _automation("weekly_summary", "Weekly", "<p>{{user_name}}</p>", total_sent=10)
        db_session.add(automation)
        await db_session.commit()

        sent = await run_automation(db_session, automation, automation_ctx, NOW)

        assert sent == 3
        await db_session.refresh(automation)
        assert automation.total_sent == 13
        assert automation.last_triggered is not None
        logs = (await db_session.execute(select(EmailLog).where(EmailLog.automation_id == automation.id))).scalars().all()
        assert len(logs) == 3
        assert {log.status for log in logs} == {"sent"}

    @pytest.mark.asyncio
    async def test_event_only_trigger_does_nothing(self, db_session, users, automation_ctx, email_provider):
        automation = _automation("admin_broadcast", "s", "<p>b</p>")
        db_session.add(automation)
        await db_session.commit()

        assert await run_automation(db_session, automation, automation_ctx, NOW) == 0
        await db_session.refresh(automation)
        assert automation.last_triggered is None
        assert email_provider.outbox == []

    @pytest.mark.asyncio
    async def test_handler_error_propagates_without_recording(self, db_session, users, automation_ctx):
        automation = _automation("weekly_summary", "s", "<p>b</p>")
        db_session.add(automation)
        await db_session.commit()
        broken = AsyncMock(side_effect=RuntimeError("template store offline"))

        with patch.dict(handlers.HANDLERS, {"weekly_summary": broken}), pytest.raises(RuntimeError):
            await run_automation(db_session, automation, automation_ctx, NOW)

        await db_session.refresh(automation)
        assert automation.total_sent == 0
        assert automation.last_triggered is None

    @pytest.mark.asyncio
    async def test_failed_sends_are_logged_not_counted(self, db_session, users, automation_ctx):
        automation = _automation("weekly_summary", "s", "<p>b</p>")
        db_session.add(automation)
        await db_session.commit()
        flaky = MagicMock()
        flaky.send = AsyncMock(side_effect=[
            EmailResult(success=True, message_id="msg-1"),
            EmailResult(success=False, error="mailbox full"),
            EmailResult(success=True, message_id="msg-3"),
        ])
        ctx = dataclasses.replace(automation_ctx, email_service=EmailService(provider=flaky))

        sent = await run_automation(db_session, automation, ctx, NOW)

        assert sent == 2
        statuses = (await db_session.execute(select(EmailLog.status).order_by(EmailLog.id))).scalars().all()
        assert statuses == ["sent", "failed", "sent"]


class TestWinnerReward:
    @pytest.mark.asyncio
    async def test_gift_card_then_email(self, db_session, users, automation_ctx, email_provider, gift_card_provider):
        automation = EmailAutomation(
            name="Winner Reward",
            trigger_type="winner_reward",
            is_active=True,
            email_template={},
            reward_settings={"giftCardAmount": 40, "giftCardMessage": "Great work!"},
            total_sent=0,
        )
        db_session.add(automation)
        await db_session.commit()

        ok = await send_winner_reward(db_session, automation_ctx, users["ada"].id, "Ocean Dreams", now=NOW)

        assert ok is True
        assert gift_card_provider.sent == [
            {"email": "ada@example.com", "name": "Ada Lovelace", "amount": 40, "message": "Great work!"},
        ]
        [message] = email_provider.outbox
        assert message["to"] == "ada@example.com"
        assert "Ocean Dreams" in message["html"]
        assert "$40" in message["html"]
        await db_session.refresh(automation)
        assert automation.total_sent == 1

    @pytest.mark.asyncio
    async def test_gift_card_failure_sends_no_email(self, db_session, users, automation_ctx, email_provider):
        db_session.add(EmailAutomation(
            name="Winner Reward", trigger_type="winner_reward", is_active=True, email_template={}, total_sent=0,
        ))
        await db_session.commit()
        failing = MagicMock()
        failing.send_gift_card = AsyncMock(return_value=GiftCardResult(success=False, error="declined"))
        ctx = dataclasses.replace(automation_ctx, gift_cards=failing)

        ok = await send_winner_reward(db_session, ctx, users["ada"].id, "Ocean Dreams", now=NOW)

        assert ok is False
        assert email_provider.outbox == []
        failing.send_gift_card.assert_awaited_once_with("ada@example.com", "Ada Lovelace", 25, None)
        log = (await db_session.execute(select(EmailLog))).scalar_one()
        assert (log.status, log.failure_reason) == ("failed", "declined")

    @pytest.mark.asyncio
    async def test_no_automation_configured(self, db_session, users, automation_ctx, gift_card_provider):
        assert await send_winner_reward(db_session, automation_ctx, users["ada"].id, "Ocean Dreams") is False
        assert gift_card_provider.sent == []


class TestCommentNotification:
    @pytest_asyncio.fixture
    async def commented(self, db_session, users):
        contest = Contest(title="Ocean Dreams", is_active=True, created_at=NOW)
        db_session.add(contest)
        await db_session.flush()
        submission = Submission(
            user_id=users["ada"].id, contest_id=contest.id, title="Blue Whale", votes=[], created_at=NOW,
        )
        db_session.add(submission)
        db_session.add(_automation(
            "comment_feedback",
            "{{commenter_name}} commented on {{submission_title}}",
            "<p>{{comment_text}}</p><a href=\"{{submission_url}}\">{{contest_title}}</a>",
            schedule=None,
        ))
        await db_session.commit()
        return submission

    @pytest.mark.asyncio
    async def test_owner_is_notified(self, db_session, users, commented, automation_ctx, email_provider):
        ok = await send_comment_notification(db_session, automation_ctx, commented.id, users["bo"].id, "Lovely shading")

        assert ok is True
        [message] = email_provider.outbox
        assert message["to"] == "ada@example.com"
        assert message["subject"] == "Bo commented on Blue Whale"
        assert "<p>Lovely shading</p>" in message["html"]
        assert f"/submissions/{commented.id}" in message["html"]

    @pytest.mark.asyncio
    async def test_self_comment_is_ignored(self, db_session, users, commented, automation_ctx, email_provider):
        ok = await send_comment_notification(db_session, automation_ctx, commented.id, users["ada"].id, "note to self")
        assert ok is False
        assert email_provider.outbox == []

    @pytest.mark.asyncio
    async def test_unknown_submission(self, db_session, users, commented, automation_ctx):
        assert await send_comment_notification(db_session, automation_ctx, 9999, users["bo"].id, "hi") is False
