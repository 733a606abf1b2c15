"""arq job functions run against the application database."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from colorcompete.automation.worker import send_comment_notification_job, send_winner_reward_job
from colorcompete.database import get_session_factory
from colorcompete.db.models import EmailAutomation, Submission, User
from colorcompete.gamification.worker import check_all_badges, check_user_badges
from colorcompete.workers.settings import WorkerSettings

START = datetime(2026, 2, 1, 15, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def winner_id(app) -> int:
    async with get_session_factory()() as db:
        user = User(username="ada", email="ada@example.com", first_name="Ada", created_at=START)
        db.add(user)
        await db.flush()
        db.add(Submission(user_id=user.id, title="Blue Whale", votes=4, is_winner=True, created_at=START))
        db.add(EmailAutomation(
            name="Winner Reward",
            trigger_type="winner_reward",
            is_active=True,
            email_template={},
            reward_settings={"giftCardAmount": 30},
            total_sent=0,
        ))
        await db.commit()
        return user.id


class TestBadgeJobs:
    @pytest.mark.asyncio
    async def test_check_user_badges(self, winner_id):
        awarded = await check_user_badges({}, winner_id, "contest_completed", {"contest_id": 4})
        assert set(awarded) == {"First Win", "People's Choice"}
        assert await check_user_badges({}, winner_id) == []

    @pytest.mark.asyncio
    async def test_check_all_badges(self, winner_id):
        async with get_session_factory()() as db:
            other = User(username="bo", email="bo@example.com", created_at=START)
            db.add(other)
            await db.flush()
            db.add_all([
                Submission(user_id=other.id, votes=0, created_at=START + timedelta(days=i)) for i in range(30)
            ])
            await db.commit()

        assert await check_all_badges({}) == 3


class TestAutomationJobs:
    @pytest.mark.asyncio
    async def test_winner_reward_job(self, winner_id, automation_ctx, email_provider, gift_card_provider):
        ok = await send_winner_reward_job({"automation_context": automation_ctx}, winner_id, "Ocean Dreams")

        assert ok is True
        assert gift_card_provider.sent[0]["amount"] == 30
        assert email_provider.outbox[0]["to"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_comment_job_without_automation(self, winner_id, automation_ctx, email_provider):
        ok = await send_comment_notification_job({"automation_context": automation_ctx}, 1, winner_id + 1, "Nice")
        assert ok is False
        assert email_provider.outbox == []


class TestWorkerSettings:
    def test_settings_are_declared_on_the_class(self):
        # arq reads worker options from the class __dict__
        options = vars(WorkerSettings)
        names = {f.__name__ for f in options["functions"]}
        assert names == {
            "check_user_badges",
            "check_all_badges",
            "send_winner_reward_job",
            "send_comment_notification_job",
        }
        assert options["max_tries"] == 1
        assert len(options["cron_jobs"]) == 1
