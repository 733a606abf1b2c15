"""User statistics aggregated from submission history.

Stats are always derived fresh from the submissions table and never stored.
Aggregation failures never block badge checking: the caller gets a zeroed
snapshot plus the error in a StatsResult and decides what to do with it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.db.models import Submission

logger = logging.getLogger(__name__)


class ActivityRecord(Protocol):
    """The submission fields the aggregator reads."""

    created_at: datetime
    votes: Any
    is_winner: bool


@dataclass(frozen=True)
class UserStatsSnapshot:
    total_submissions: int = 0
    total_wins: int = 0
    consecutive_wins: int = 0
    total_votes: int = 0
    consecutive_submission_days: int = 0
    most_votes_in_single_contest: int = 0
    has_won_most_votes: bool = False

    @classmethod
    def empty(cls) -> UserStatsSnapshot:
        return cls()


@dataclass(frozen=True)
class StatsResult:
    """Snapshot plus the aggregation error, if any."""

    stats: UserStatsSnapshot
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_vote_count(votes: Any) -> int:  # noqa: ANN401
    """Votes are stored either as a list of voter ids or as a plain number."""
    if isinstance(votes, (list, tuple, set)):
        return len(votes)
    if isinstance(votes, bool):
        return 0
    if isinstance(votes, (int, float)):
        return int(votes)
    return 0


def utc_date(ts: datetime) -> date:
    """Calendar date of a timestamp in UTC. Naive values are taken as UTC."""
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.date()


def longest_daily_streak(dates: Iterable[date]) -> int:
    """Longest run of calendar days where each neighbour is exactly one day apart."""
    ordered = sorted(set(dates))
    if not ordered:
        return 0

    longest = current = 1
    for prev, cur in zip(ordered, ordered[1:]):
        if (cur - prev).days == 1:
            current += 1
            longest = max(longest, current)
        else:
            current = 1
    return longest


def compute_stats_from_records(records: Sequence[ActivityRecord]) -> UserStatsSnapshot:
    """Aggregate submissions ordered by creation time ascending.

    Win streak counts consecutive winner-flagged submissions in that order.
    Any winning submission counts as having won the most votes.
    """
    total_wins = 0
    total_votes = 0
    running_wins = 0
    max_win_streak = 0
    most_votes = 0
    has_won_most_votes = False

    for record in records:
        votes = normalize_vote_count(record.votes)
        total_votes += votes
        most_votes = max(most_votes, votes)

        if record.is_winner:
            total_wins += 1
            running_wins += 1
            max_win_streak = max(max_win_streak, running_wins)
            has_won_most_votes = True
        else:
            running_wins = 0

    return UserStatsSnapshot(
        total_submissions=len(records),
        total_wins=total_wins,
        consecutive_wins=max_win_streak,
        total_votes=total_votes,
        consecutive_submission_days=longest_daily_streak(utc_date(r.created_at) for r in records),
        most_votes_in_single_contest=most_votes,
        has_won_most_votes=has_won_most_votes,
    )


async def compute_stats(db: AsyncSession, user_id: int) -> StatsResult:
    """Compute a user's stats from their full submission history."""
    try:
        result = await db.execute(
            select(Submission)
            .where(Submission.user_id == user_id)
            .order_by(Submission.created_at.asc(), Submission.id.asc())
        )
        records = result.scalars().all()
    except SQLAlchemyError as exc:
        logger.error("Failed to load submissions for user %s", user_id, exc_info=True)
        return StatsResult(stats=UserStatsSnapshot.empty(), error=str(exc))

    return StatsResult(stats=compute_stats_from_records(records))
