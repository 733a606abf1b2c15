"""Pydantic response models for automation and drawing endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class RescheduleResponse(BaseModel):
    automation_id: int
    scheduled: bool
    cron: str | None = None
    timezone: str | None = None


class AutomationRunResponse(BaseModel):
    automation_id: int
    trigger_type: str
    emails_sent: int


class DrawingRunResponse(BaseModel):
    status: str
    tier: str
    month: int
    year: int
    drawing_id: int | None = None
    winner_user_id: int | None = None
    participant_count: int = 0
    emails_sent: int = 0
    participant_emails_sent: int = 0
    error: str | None = None


class MonthlyDrawingResponse(BaseModel):
    id: int
    month: int
    year: int
    subscription_tier: str
    prize_amount: float
    drawing_date: datetime
    status: str
    is_completed: bool
    participant_count: int
    winner: dict | None = None


class MonthlyDrawingsResponse(BaseModel):
    drawings: list[MonthlyDrawingResponse]


class TierDrawingStats(BaseModel):
    total: int
    completed: int
    total_prizes: float
    last_winner: str | None = None


class DrawingStatsResponse(BaseModel):
    tiers: dict[str, TierDrawingStats]
