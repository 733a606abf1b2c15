"""Badge grant writer with constraint-backed duplicate prevention."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.db.models import BadgeDefinition, User, UserBadge

logger = logging.getLogger(__name__)

GRANT_AWARDED = "awarded"
GRANT_ALREADY_EARNED = "already_earned"
GRANT_FAILED = "failed"


@dataclass(frozen=True)
class GrantResult:
    status: str
    badge_id: int
    user_badge_id: int | None = None
    error: str | None = None

    @property
    def awarded(self) -> bool:
        return self.status == GRANT_AWARDED


async def get_badge_by_name(db: AsyncSession, name: str) -> BadgeDefinition | None:
    """Fetch a badge definition by name."""
    result = await db.execute(
        select(BadgeDefinition).where(BadgeDefinition.name == name)
    )
    return result.scalar_one_or_none()


async def has_badge(db: AsyncSession, user_id: int, badge_id: int) -> bool:
    """Check if user already has a specific badge."""
    result = await db.execute(
        select(UserBadge.id).where(
            UserBadge.user_id == user_id,
            UserBadge.badge_id == badge_id,
        )
    )
    return result.scalar_one_or_none() is not None


async def get_user_badges(db: AsyncSession, user_id: int) -> list[UserBadge]:
    """All badges a user has earned, newest first."""
    result = await db.execute(
        select(UserBadge)
        .where(UserBadge.user_id == user_id)
        .order_by(UserBadge.earned_at.desc())
    )
    return list(result.scalars().unique())


async def award_badge(
    db: AsyncSession,
    redis: object,
    user_id: int,
    badge_id: int,
    metadata: dict | None = None,
) -> GrantResult:
    """Insert a user_badges row and bump the user's badge counter.

    The (user_id, badge_id) unique constraint is the duplicate check: an
    IntegrityError on flush means the badge was already earned. Any other
    database error is reported as a failed grant. The caller commits.
    """
    now = datetime.now(timezone.utc)

    user_badge = UserBadge(
        user_id=user_id,
        badge_id=badge_id,
        earned_at=now,
        badge_metadata=metadata or {},
        is_visible=True,
    )
    db.add(user_badge)

    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        return GrantResult(status=GRANT_ALREADY_EARNED, badge_id=badge_id)
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to write badge %s for user %s", badge_id, user_id, exc_info=True)
        return GrantResult(status=GRANT_FAILED, badge_id=badge_id, error=str(exc))

    try:
        # Denormalized back-reference count; the unique row keeps it set-like
        await db.execute(
            update(User)
            .where(User.id == user_id)
            .values(badges_earned=User.badges_earned + 1)
        )
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.error("Failed to update badge count for user %s", user_id, exc_info=True)
        return GrantResult(status=GRANT_FAILED, badge_id=badge_id, error=str(exc))

    await _emit_badge_earned(redis, user_id, badge_id, metadata or {})

    return GrantResult(status=GRANT_AWARDED, badge_id=badge_id, user_badge_id=user_badge.id)


async def _emit_badge_earned(
    redis: object,
    user_id: int,
    badge_id: int,
    metadata: dict,
) -> None:
    """Push a badge_earned event for live clients via Redis pub/sub."""
    if redis is None:
        return
    try:
        await redis.publish(  # type: ignore[union-attr]
            "pubsub:badge_earned",
            json.dumps({
                "user_id": user_id,
                "badge_id": badge_id,
                "metadata": metadata,
            }, default=str),
        )
    except Exception:
        logger.warning("Failed to publish badge_earned notification", exc_info=True)
