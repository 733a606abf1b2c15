"""Badge seed data: the six default ColorCompete badges."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.db.models import BadgeDefinition

logger = logging.getLogger(__name__)

BADGE_SEED_DATA: list[dict] = [
    # Wins
    {
        "name": "First Win",
        "description": "Awarded for your first contest victory",
        "icon": "Medal",
        "icon_color": "text-yellow-500",
        "category": "win",
        "criteria": {"type": "wins", "threshold": 1, "timeframe": "all_time"},
    },
    {
        "name": "Hat Trick",
        "description": "Win 3 contests in a row",
        "icon": "Trophy",
        "icon_color": "text-gold-500",
        "category": "win",
        "criteria": {"type": "consecutive_wins", "threshold": 3, "timeframe": "consecutive"},
    },
    # Achievements
    {
        "name": "People's Choice",
        "description": "Receive the most community votes",
        "icon": "Star",
        "icon_color": "text-blue-500",
        "category": "achievement",
        "criteria": {"type": "top_votes", "threshold": 1, "timeframe": "all_time"},
    },
    # Participation
    {
        "name": "Consistency King",
        "description": "Submit to 30 consecutive daily contests",
        "icon": "Award",
        "icon_color": "text-green-500",
        "category": "participation",
        "criteria": {"type": "submission_streak", "threshold": 30, "timeframe": "consecutive"},
    },
    # Milestones
    {
        "name": "Master Artist",
        "description": "Win 10 total contests",
        "icon": "Crown",
        "icon_color": "text-purple-500",
        "category": "milestone",
        "criteria": {"type": "wins", "threshold": 10, "timeframe": "all_time"},
    },
    {
        "name": "Community Favorite",
        "description": "Accumulate 1000 total votes",
        "icon": "Sparkles",
        "icon_color": "text-pink-500",
        "category": "milestone",
        "criteria": {"type": "total_votes", "threshold": 1000, "timeframe": "all_time"},
    },
]


async def seed_badges(db: AsyncSession) -> int:
    """Insert any default badge missing by name. Returns number created.

    Existing badges are left untouched so admin edits survive restarts.
    """
    existing = set((await db.execute(select(BadgeDefinition.name))).scalars().all())
    now = datetime.now(timezone.utc)
    created = 0

    for badge_data in BADGE_SEED_DATA:
        if badge_data["name"] in existing:
            continue
        db.add(BadgeDefinition(**badge_data, is_active=True, created_at=now))
        created += 1

    await db.commit()
    logger.info("Seeded %d badge definitions", created)
    return created
