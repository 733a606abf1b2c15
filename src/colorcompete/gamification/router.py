"""Badge API endpoints."""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.database import get_session
from colorcompete.db.models import BadgeDefinition, User
from colorcompete.dependencies import get_optional_redis_dep
from colorcompete.gamification.badge_service import get_user_badges
from colorcompete.gamification.schemas import (
    AllBadgesResponse,
    BadgeCheckResponse,
    BadgeDefinitionResponse,
    EarnedBadgeResponse,
    UserBadgesResponse,
    UserStatsResponse,
)
from colorcompete.gamification.stats_service import compute_stats
from colorcompete.gamification.trigger_engine import check_and_award_badges

router = APIRouter(prefix="/api/v1", tags=["Badges"])

_active_badge = or_(BadgeDefinition.is_active.is_(True), BadgeDefinition.is_active.is_(None))


async def _require_user(db: AsyncSession, user_id: int) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges(db: AsyncSession = Depends(get_session)):
    """Active badge catalog."""
    result = await db.execute(select(BadgeDefinition).where(_active_badge).order_by(BadgeDefinition.id))
    return AllBadgesResponse(badges=[
        BadgeDefinitionResponse(
            id=b.id,
            name=b.name,
            description=b.description,
            icon=b.icon,
            icon_color=b.icon_color,
            category=b.category,
            criteria=b.criteria or {},
        )
        for b in result.scalars()
    ])


@router.get("/users/{user_id}/badges", response_model=UserBadgesResponse)
async def user_badges(user_id: int, db: AsyncSession = Depends(get_session)):
    await _require_user(db, user_id)
    earned = await get_user_badges(db, user_id)
    total_available = (await db.execute(select(func.count(BadgeDefinition.id)).where(_active_badge))).scalar_one()

    return UserBadgesResponse(
        earned=[
            EarnedBadgeResponse(
                badge_id=ub.badge_id,
                name=ub.badge.name,
                icon=ub.badge.icon,
                icon_color=ub.badge.icon_color,
                category=ub.badge.category,
                earned_at=ub.earned_at,
                metadata=ub.badge_metadata or {},
            )
            for ub in earned
            if ub.is_visible
        ],
        total_available=total_available,
        total_earned=len(earned),
    )


@router.post("/users/{user_id}/badges/check", response_model=BadgeCheckResponse)
async def check_user_badges(
    user_id: int,
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_optional_redis_dep),
):
    """Run the badge evaluator for one user now."""
    await _require_user(db, user_id)
    outcome = await check_and_award_badges(db, user_id, event_type="manual", redis=redis)
    if outcome.error:
        raise HTTPException(status_code=500, detail="Badge evaluation failed")
    return BadgeCheckResponse(
        user_id=user_id,
        awarded=outcome.awarded,
        failed=outcome.failed,
        stats_error=outcome.stats_error,
    )


@router.get("/users/{user_id}/stats", response_model=UserStatsResponse)
async def user_stats(user_id: int, db: AsyncSession = Depends(get_session)):
    await _require_user(db, user_id)
    result = await compute_stats(db, user_id)
    if not result.ok:
        raise HTTPException(status_code=503, detail="Stats unavailable")
    return UserStatsResponse(user_id=user_id, **asdict(result.stats))
