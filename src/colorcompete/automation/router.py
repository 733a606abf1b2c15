"""Automation and monthly drawing API endpoints (admin side, no auth)."""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from colorcompete.automation.context import AutomationContext, find_active_automation
from colorcompete.automation.drawing_service import TIERS, drawing_stats, list_drawings, run_monthly_drawing
from colorcompete.automation.handlers import record_run, run_automation
from colorcompete.automation.scheduler import AutomationScheduler
from colorcompete.automation.schemas import (
    AutomationRunResponse,
    DrawingRunResponse,
    DrawingStatsResponse,
    MonthlyDrawingResponse,
    MonthlyDrawingsResponse,
    RescheduleResponse,
    TierDrawingStats,
)
from colorcompete.database import get_session
from colorcompete.db.models import EmailAutomation
from colorcompete.dependencies import get_automation_context, get_scheduler

router = APIRouter(prefix="/api/v1", tags=["Automations"])


def _validate_tier(tier: str) -> str:
    if tier not in TIERS:
        raise HTTPException(status_code=422, detail=f"Unknown tier: {tier}")
    return tier


@router.post("/automations/{automation_id}/reschedule", response_model=RescheduleResponse)
async def reschedule_automation(
    automation_id: int,
    db: AsyncSession = Depends(get_session),
    scheduler: AutomationScheduler = Depends(get_scheduler),
):
    """Pick up an edited automation: reschedule it, or drop it when inactive."""
    if await db.get(EmailAutomation, automation_id) is None:
        raise HTTPException(status_code=404, detail="Automation not found")

    scheduled = await scheduler.update_automation(automation_id)
    schedule = scheduler.get_schedule(automation_id)
    return RescheduleResponse(
        automation_id=automation_id,
        scheduled=scheduled,
        cron=schedule.expression if schedule else None,
        timezone=schedule.timezone if schedule else None,
    )


@router.post("/automations/{automation_id}/run", response_model=AutomationRunResponse)
async def run_automation_now(
    automation_id: int,
    db: AsyncSession = Depends(get_session),
    ctx: AutomationContext = Depends(get_automation_context),
):
    """Execute an automation immediately, outside its schedule."""
    automation = await db.get(EmailAutomation, automation_id)
    if automation is None:
        raise HTTPException(status_code=404, detail="Automation not found")
    trigger_type = automation.trigger_type

    try:
        sent = await run_automation(db, automation, ctx)
    except Exception:
        raise HTTPException(status_code=500, detail="Automation run failed") from None
    return AutomationRunResponse(automation_id=automation_id, trigger_type=trigger_type, emails_sent=sent)


@router.post("/monthly-drawings/{tier}/run", response_model=DrawingRunResponse)
async def run_drawing_now(
    tier: str,
    db: AsyncSession = Depends(get_session),
    ctx: AutomationContext = Depends(get_automation_context),
):
    """Run a tier's drawing for the current month. A failed drawing is retried."""
    _validate_tier(tier)
    automation = await find_active_automation(db, f"monthly_drawing_{tier}")
    if automation is None:
        raise HTTPException(status_code=404, detail=f"No active monthly_drawing_{tier} automation")
    automation_id = automation.id

    now = datetime.now(timezone.utc)
    result = await run_monthly_drawing(db, automation, ctx, tier=tier, now=now, retry_failed=True)
    if result.completed:
        await record_run(db, automation_id, result.emails_sent, now)
    return DrawingRunResponse(**asdict(result))


@router.get("/monthly-drawings", response_model=MonthlyDrawingsResponse)
async def get_drawings(
    tier: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
):
    if tier is not None:
        _validate_tier(tier)
    drawings = await list_drawings(db, tier=tier, limit=limit)
    return MonthlyDrawingsResponse(drawings=[
        MonthlyDrawingResponse(
            id=d.id,
            month=d.month,
            year=d.year,
            subscription_tier=d.subscription_tier,
            prize_amount=d.prize_amount,
            drawing_date=d.drawing_date,
            status=d.status,
            is_completed=d.is_completed,
            participant_count=len(d.participants or []),
            winner=d.winner,
        )
        for d in drawings
    ])


@router.get("/monthly-drawings/stats", response_model=DrawingStatsResponse)
async def get_drawing_stats(db: AsyncSession = Depends(get_session)):
    stats = await drawing_stats(db)
    return DrawingStatsResponse(tiers={tier: TierDrawingStats(**entry) for tier, entry in stats.items()})
