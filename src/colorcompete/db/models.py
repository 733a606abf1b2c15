"""ORM models for the ColorCompete engagement core.

Tables are created by the Alembic baseline revision. The same models run
against SQLite in tests, so column types stay portable (see JSONType).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    true,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from colorcompete.db.base import Base, JSONType


def _default_email_preferences() -> dict[str, bool]:
    return {
        "marketing_emails": True,
        "contest_notifications": True,
        "winner_announcements": True,
        "reward_notifications": True,
    }


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), unique=True, nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    email_preferences: Mapped[dict[str, Any]] = mapped_column(
        JSONType, nullable=False, default=_default_email_preferences
    )
    badges_earned: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def display_name(self) -> str:
        """First name when set, otherwise the username."""
        return self.first_name or self.username

    @property
    def full_name(self) -> str:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else self.username


# ---------------------------------------------------------------------------
# Contests & Submissions
# ---------------------------------------------------------------------------


class Contest(Base):
    """A daily coloring contest (a.k.a. challenge)."""

    __tablename__ = "contests"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    prize: Mapped[str | None] = mapped_column(String(128), nullable=True)
    line_art_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voting_end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    # Ordered by rank: [{user_id, submission_id, prize, votes, image_url}]
    winners: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Submission(Base):
    """A colored entry. Read-only input for stats aggregation."""

    __tablename__ = "submissions"
    __table_args__ = (
        Index("idx_submissions_user_created", "user_id", "created_at"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    contest_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("contests.id"), nullable=True)
    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Either a list of voter ids or a plain count
    votes: Mapped[Any] = mapped_column(JSONType, nullable=False, default=list)
    is_winner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------


class BadgeDefinition(Base):
    """Badge catalog. Six defaults are seeded on startup."""

    __tablename__ = "badge_definitions"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    icon: Mapped[str] = mapped_column(String(64), nullable=False)
    icon_color: Mapped[str] = mapped_column(String(64), nullable=False, server_default="text-yellow-500")
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    # {type, threshold, timeframe}
    criteria: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    # NULL is treated as active
    is_active: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class UserBadge(Base):
    """Badges earned by users. UNIQUE(user_id, badge_id) prevents duplicates."""

    __tablename__ = "user_badges"
    __table_args__ = (
        UniqueConstraint("user_id", "badge_id", name="user_badges_user_id_badge_id_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    badge_id: Mapped[int] = mapped_column(Integer, ForeignKey("badge_definitions.id"), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    badge_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, nullable=False, default=dict)
    is_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    badge: Mapped[BadgeDefinition] = relationship("BadgeDefinition", lazy="joined")


# ---------------------------------------------------------------------------
# Email automations
# ---------------------------------------------------------------------------


class EmailAutomation(Base):
    """Admin-managed automation: trigger type, template and schedule."""

    __tablename__ = "email_automations"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())
    trigger_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # {subject, htmlContent, textContent?}
    email_template: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    # {time "HH:MM", dayOfWeek?, dayOfMonth?, timezone?}
    schedule: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    # {giftCardAmount, giftCardMessage}
    reward_settings: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    # {subscriptionTier, prizeAmount, drawingDate}
    monthly_drawing_settings: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    total_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_triggered: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class EmailLog(Base):
    """One row per delivery attempt (emails and gift cards)."""

    __tablename__ = "email_logs"
    __table_args__ = {"extend_existing": True}  # noqa: RUF012

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    recipient_email: Mapped[str] = mapped_column(String(320), nullable=False)
    automation_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("email_automations.id", ondelete="SET NULL"), nullable=True
    )
    campaign_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subject: Mapped[str] = mapped_column(String(512), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    message_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


# ---------------------------------------------------------------------------
# Subscriptions & Monthly drawings
# ---------------------------------------------------------------------------


class Subscription(Base):
    """Per-month subscription with a submission allowance."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint("user_id", "month", "year", name="subscriptions_user_month_year_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tier: Mapped[str] = mapped_column(String(16), nullable=False)
    remaining_submissions: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=true())

    user: Mapped[User] = relationship("User", lazy="joined")


class MonthlyDrawing(Base):
    """One drawing per (month, year, tier). Claimed atomically before running."""

    __tablename__ = "monthly_drawings"
    __table_args__ = (
        UniqueConstraint("month", "year", "subscription_tier", name="monthly_drawings_month_year_tier_key"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    subscription_tier: Mapped[str] = mapped_column(String(16), nullable=False)
    prize_amount: Mapped[float] = mapped_column(Float, nullable=False)
    drawing_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # [{user_id, email, name}]
    participants: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    # {user_id, email, name}
    winner: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    # {id, code, redeem_url, order_id, sent_at}
    gift_card_details: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=false())
    automation_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("email_automations.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
