"""Default monthly drawing automations, one per paid tier."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.automation.formatting import DEFAULT_PRIZES, TIER_NAMES
from colorcompete.db.models import EmailAutomation
from colorcompete.email.templates import monthly_drawing_winner_template

logger = logging.getLogger(__name__)

DRAWING_TIME = "11:00"
DRAWING_TIMEZONE = "America/New_York"
DRAWING_DAY = 1


def _drawing_automation(tier: str) -> dict:
    tier_name = TIER_NAMES[tier]
    prize = DEFAULT_PRIZES[tier]
    template = monthly_drawing_winner_template(tier_name, prize)
    return {
        "name": f"Monthly Drawing - {tier_name} Tier",
        "description": f"Monthly ${prize} gift card drawing for {tier_name} subscribers",
        "trigger_type": f"monthly_drawing_{tier}",
        "email_template": template,
        "schedule": {"time": DRAWING_TIME, "timezone": DRAWING_TIMEZONE},
        "monthly_drawing_settings": {
            "subscriptionTier": tier,
            "prizeAmount": prize,
            "drawingDate": DRAWING_DAY,
        },
    }


AUTOMATION_SEED_DATA: list[dict] = [_drawing_automation(tier) for tier in ("lite", "pro", "champ")]


async def seed_automations(db: AsyncSession) -> int:
    """Insert the drawing automations whose trigger type has no row yet.

    Returns number created. Existing rows keep their admin edits.
    """
    existing = set((await db.execute(select(EmailAutomation.trigger_type))).scalars().all())
    now = datetime.now(timezone.utc)
    created = 0

    for data in AUTOMATION_SEED_DATA:
        if data["trigger_type"] in existing:
            continue
        db.add(EmailAutomation(**data, is_active=True, total_sent=0, created_at=now, updated_at=now))
        created += 1

    await db.commit()
    logger.info("Seeded %d email automations", created)
    return created
