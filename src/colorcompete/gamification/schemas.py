"""Pydantic response models for badge endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class BadgeDefinitionResponse(BaseModel):
    id: int
    name: str
    description: str
    icon: str
    icon_color: str
    category: str
    criteria: dict = {}


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class EarnedBadgeResponse(BaseModel):
    badge_id: int
    name: str
    icon: str
    icon_color: str
    category: str
    earned_at: datetime
    metadata: dict = {}


class UserBadgesResponse(BaseModel):
    earned: list[EarnedBadgeResponse]
    total_available: int
    total_earned: int


class BadgeCheckResponse(BaseModel):
    user_id: int
    awarded: list[str]
    failed: list[str] = []
    stats_error: str | None = None


class UserStatsResponse(BaseModel):
    user_id: int
    total_submissions: int
    total_wins: int
    consecutive_wins: int
    total_votes: int
    consecutive_submission_days: int
    most_votes_in_single_contest: int
    has_won_most_votes: bool
