"""Engagement core tables.

Creates users, contests, submissions, badge catalog and grants, email
automations and their delivery log, subscriptions and monthly drawings.
Uniqueness of badge grants and of drawings per (month, year, tier) is
enforced here, not by application pre-checks.

Revision ID: 001_engagement_core
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_engagement_core"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Users / contests / submissions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            username VARCHAR(64) UNIQUE NOT NULL,
            email VARCHAR(320) UNIQUE,
            first_name VARCHAR(64),
            last_name VARCHAR(64),
            email_preferences JSONB NOT NULL DEFAULT
                '{"marketing_emails": true, "contest_notifications": true, "winner_announcements": true, "reward_notifications": true}',
            badges_earned INTEGER NOT NULL DEFAULT 0,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS contests (
            id SERIAL PRIMARY KEY,
            title VARCHAR(200) NOT NULL,
            description TEXT,
            prize VARCHAR(128),
            line_art_url TEXT,
            start_date TIMESTAMPTZ,
            end_date TIMESTAMPTZ,
            voting_end_date TIMESTAMPTZ,
            is_active BOOLEAN NOT NULL DEFAULT true,
            winners JSONB NOT NULL DEFAULT '[]',
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_contests_voting_end
        ON contests(voting_end_date)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS submissions (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            contest_id INTEGER REFERENCES contests(id),
            title VARCHAR(200),
            image_url TEXT,
            votes JSONB NOT NULL DEFAULT '[]',
            is_winner BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_submissions_user_created
        ON submissions(user_id, created_at)
    """)

    # --- Badges ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS badge_definitions (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) UNIQUE NOT NULL,
            description TEXT NOT NULL,
            icon VARCHAR(64) NOT NULL,
            icon_color VARCHAR(64) NOT NULL DEFAULT 'text-yellow-500',
            category VARCHAR(32) NOT NULL,
            criteria JSONB NOT NULL DEFAULT '{}',
            is_active BOOLEAN DEFAULT true,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_badges (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            badge_id INTEGER NOT NULL REFERENCES badge_definitions(id),
            earned_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            metadata JSONB NOT NULL DEFAULT '{}',
            is_visible BOOLEAN NOT NULL DEFAULT true,
            CONSTRAINT user_badges_user_id_badge_id_key UNIQUE (user_id, badge_id)
        )
    """)

    # --- Email automations ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS email_automations (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            description TEXT,
            is_active BOOLEAN NOT NULL DEFAULT true,
            trigger_type VARCHAR(64) NOT NULL,
            email_template JSONB NOT NULL DEFAULT '{}',
            schedule JSONB,
            reward_settings JSONB,
            monthly_drawing_settings JSONB,
            total_sent INTEGER NOT NULL DEFAULT 0,
            last_triggered TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_email_automations_trigger_type
        ON email_automations(trigger_type)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS email_logs (
            id SERIAL PRIMARY KEY,
            user_id INTEGER REFERENCES users(id) ON DELETE SET NULL,
            recipient_email VARCHAR(320) NOT NULL,
            automation_id INTEGER REFERENCES email_automations(id) ON DELETE SET NULL,
            campaign_id VARCHAR(64),
            subject VARCHAR(512) NOT NULL,
            status VARCHAR(16) NOT NULL,
            message_id VARCHAR(256),
            failure_reason TEXT,
            sent_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_email_logs_automation_sent
        ON email_logs(automation_id, sent_at DESC)
    """)

    # --- Subscriptions / monthly drawings ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS subscriptions (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            tier VARCHAR(16) NOT NULL,
            remaining_submissions INTEGER NOT NULL DEFAULT 0,
            month INTEGER NOT NULL,
            year INTEGER NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true,
            CONSTRAINT subscriptions_user_month_year_key UNIQUE (user_id, month, year)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_subscriptions_tier_period
        ON subscriptions(tier, year, month)
    """)
    op.execute("""
        CREATE TABLE IF NOT EXISTS monthly_drawings (
            id SERIAL PRIMARY KEY,
            month INTEGER NOT NULL,
            year INTEGER NOT NULL,
            subscription_tier VARCHAR(16) NOT NULL,
            prize_amount DOUBLE PRECISION NOT NULL,
            drawing_date TIMESTAMPTZ NOT NULL,
            participants JSONB NOT NULL DEFAULT '[]',
            winner JSONB,
            gift_card_details JSONB,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            claimed_at TIMESTAMPTZ,
            is_completed BOOLEAN NOT NULL DEFAULT false,
            automation_id INTEGER REFERENCES email_automations(id) ON DELETE SET NULL,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT monthly_drawings_month_year_tier_key UNIQUE (month, year, subscription_tier)
        )
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS monthly_drawings CASCADE")
    op.execute("DROP TABLE IF EXISTS subscriptions CASCADE")
    op.execute("DROP TABLE IF EXISTS email_logs CASCADE")
    op.execute("DROP TABLE IF EXISTS email_automations CASCADE")
    op.execute("DROP TABLE IF EXISTS user_badges CASCADE")
    op.execute("DROP TABLE IF EXISTS badge_definitions CASCADE")
    op.execute("DROP TABLE IF EXISTS submissions CASCADE")
    op.execute("DROP TABLE IF EXISTS contests CASCADE")
    op.execute("DROP TABLE IF EXISTS users CASCADE")
