"""Badge rule evaluator. Checks badge criteria against a user's stats."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.db.models import BadgeDefinition, User
from colorcompete.gamification.badge_service import GRANT_FAILED, award_badge, has_badge
from colorcompete.gamification.stats_service import UserStatsSnapshot, compute_stats

logger = logging.getLogger(__name__)

# criteria.type -> check(stats, threshold)
CRITERIA_CHECKS: dict[str, Callable[[UserStatsSnapshot, float], bool]] = {
    "wins": lambda s, t: s.total_wins >= t,
    "consecutive_wins": lambda s, t: s.consecutive_wins >= t,
    "votes": lambda s, t: s.total_votes >= t,
    "total_votes": lambda s, t: s.total_votes >= t,
    "top_votes": lambda s, _t: s.has_won_most_votes,
    "submissions": lambda s, t: s.total_submissions >= t,
    "consecutive_submissions": lambda s, t: s.consecutive_submission_days >= t,
    "submission_streak": lambda s, t: s.consecutive_submission_days >= t,
}


def criteria_met(criteria: dict[str, Any], stats: UserStatsSnapshot) -> bool:
    """Evaluate one badge's criteria. Unknown criteria types never match."""
    criteria_type = criteria.get("type")
    check = CRITERIA_CHECKS.get(criteria_type)  # type: ignore[arg-type]
    if check is None:
        logger.warning("Unknown badge criteria type: %s", criteria_type)
        return False

    threshold = criteria.get("threshold")
    if threshold is None:
        threshold = 1
    return check(stats, float(threshold))


@dataclass(frozen=True)
class _BadgeRule:
    id: int
    name: str
    criteria: dict[str, Any]


@dataclass
class EvaluationResult:
    """Outcome of one evaluation pass for a user."""

    user_id: int
    awarded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    stats_error: str | None = None
    error: str | None = None


class BadgeRuleEvaluator:
    """Evaluates the active badge catalog for a user and awards new badges."""

    def __init__(self, db: AsyncSession, redis: object = None) -> None:
        self.db = db
        self.redis = redis
        self._badge_cache: list[_BadgeRule] | None = None

    async def _load_badges(self) -> list[_BadgeRule]:
        """Load and cache active badges (a NULL is_active counts as active).

        Rules are copied out of the ORM rows so a rollback after a failed
        grant cannot expire them mid-loop.
        """
        if self._badge_cache is None:
            result = await self.db.execute(
                select(BadgeDefinition)
                .where(or_(BadgeDefinition.is_active.is_(True), BadgeDefinition.is_active.is_(None)))
                .order_by(BadgeDefinition.id)
            )
            self._badge_cache = [
                _BadgeRule(id=b.id, name=b.name, criteria=dict(b.criteria or {}))
                for b in result.scalars()
            ]
        return self._badge_cache

    async def evaluate_and_award(
        self,
        user_id: int,
        event_type: str = "submission",
        metadata: dict | None = None,
    ) -> EvaluationResult:
        """Award every badge whose criteria the user now meets.

        Each badge is checked independently; a failure on one badge is
        recorded and the loop moves on to the next.
        """
        outcome = EvaluationResult(user_id=user_id)
        badges = await self._load_badges()

        stats_result = await compute_stats(self.db, user_id)
        if not stats_result.ok:
            outcome.stats_error = stats_result.error
            logger.warning("Evaluating badges for user %s against empty stats: %s", user_id, stats_result.error)
        stats = stats_result.stats

        grant_metadata = {"event_type": event_type, **(metadata or {})}

        for badge in badges:
            try:
                if await has_badge(self.db, user_id, badge.id):
                    continue
                if not criteria_met(badge.criteria, stats):
                    continue

                grant = await award_badge(self.db, self.redis, user_id, badge.id, metadata=grant_metadata)
                if grant.awarded:
                    await self.db.commit()
                    outcome.awarded.append(badge.name)
                    logger.info("Awarded badge %r to user %s (event=%s)", badge.name, user_id, event_type)
                elif grant.status == GRANT_FAILED:
                    outcome.failed.append(badge.name)
                    logger.error(
                        "badge_grant_failed user=%s badge=%r error=%s",
                        user_id, badge.name, grant.error,
                    )
            except Exception:
                await self.db.rollback()
                outcome.failed.append(badge.name)
                logger.exception("Badge check failed for user %s badge %r", user_id, badge.name)

        return outcome


async def check_and_award_badges(
    db: AsyncSession,
    user_id: int,
    event_type: str = "submission",
    metadata: dict | None = None,
    redis: object = None,
) -> EvaluationResult:
    """Entry point for submission / contest-completion hooks. Never raises."""
    try:
        return await BadgeRuleEvaluator(db, redis).evaluate_and_award(user_id, event_type, metadata)
    except Exception as exc:
        logger.exception("Badge evaluation failed for user %s", user_id)
        return EvaluationResult(user_id=user_id, error=str(exc))


async def check_all_user_badges(db: AsyncSession, redis: object = None) -> int:
    """Re-evaluate every user against the catalog. Returns badges awarded."""
    user_ids = (await db.execute(select(User.id).order_by(User.id))).scalars().all()
    evaluator = BadgeRuleEvaluator(db, redis)
    total = 0

    for user_id in user_ids:
        try:
            outcome = await evaluator.evaluate_and_award(user_id, event_type="backfill")
        except Exception:
            logger.exception("Badge backfill failed for user %s", user_id)
            continue
        total += len(outcome.awarded)

    logger.info("Badge backfill checked %d users, awarded %d badges", len(user_ids), total)
    return total
