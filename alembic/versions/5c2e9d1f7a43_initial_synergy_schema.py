"""Initial Synergy schema

Revision ID: 5c2e9d1f7a43
Revises:
Create Date: 2026-10-17 09:12:31.504118

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '5c2e9d1f7a43'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create users, events, access keys, registrations, announcements, audit log."""

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger, primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("telegram", sa.String(64), nullable=True),
        sa.Column("twitter", sa.String(64), nullable=True),
        sa.Column("wallets", sa.Text, nullable=True),
        sa.Column("event_reminders", sa.Boolean, nullable=True, server_default=sa.true()),
        sa.Column("waitlist_updates", sa.Boolean, nullable=True, server_default=sa.true()),
        sa.Column("direct_messages", sa.Boolean, nullable=True, server_default=sa.true()),
        sa.Column("events_joined", sa.Integer, nullable=True, server_default="0"),
        sa.Column("events_completed", sa.Integer, nullable=True, server_default="0"),
        sa.Column("waitlist_joins", sa.Integer, nullable=True, server_default="0"),
        sa.Column("last_active_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_events_joined", "users", ["events_joined"])

    # --- events ---
    op.create_table(
        "events",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("location", sa.String(200), nullable=False, server_default="Online"),
        sa.Column("rewards", sa.Text, nullable=True),
        sa.Column("created_by", sa.BigInteger, nullable=False),
        sa.Column("capacity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("registrations_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("waitlist_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_registration_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("reminder_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("notified_start", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("notified_end", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("capacity >= 0", name="ck_events_capacity_nonneg"),
        sa.CheckConstraint("registrations_count >= 0", name="ck_events_reg_count_nonneg"),
        sa.CheckConstraint("waitlist_count >= 0", name="ck_events_wait_count_nonneg"),
        sa.CheckConstraint("end_date > start_date", name="ck_events_dates_ordered"),
    )
    op.create_index("ix_events_active_start", "events", ["active", "start_date"])
    op.create_index("ix_events_guild", "events", ["guild_id"])

    # --- access_keys ---
    op.create_table(
        "access_keys",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "event_id",
            sa.Integer,
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("key", sa.String(200), nullable=False),
        sa.Column("issued_to", sa.BigInteger, nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("event_id", "key", name="uq_access_keys_event_key"),
    )
    op.create_index(
        "ix_access_keys_event_holder",
        "access_keys",
        ["event_id", "issued_to"],
        unique=True,
        postgresql_where=sa.text("issued_to IS NOT NULL"),
    )

    # --- registrations ---
    op.create_table(
        "registrations",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.BigInteger, nullable=False),
        sa.Column(
            "event_id",
            sa.Integer,
            sa.ForeignKey("events.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("waitlist_position", sa.Integer, nullable=True),
        sa.Column("registered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("promoted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "event_id", name="uq_registrations_user_event"),
    )
    op.create_index("ix_registrations_event_status", "registrations", ["event_id", "status"])
    op.create_index(
        "ix_registrations_event_waitlist", "registrations", ["event_id", "waitlist_position"]
    )

    # --- scheduled_announcements ---
    op.create_table(
        "scheduled_announcements",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("channel_id", sa.BigInteger, nullable=False),
        sa.Column("title", sa.String(256), nullable=False),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("color", sa.String(7), nullable=False, server_default="#0099ff"),
        sa.Column("creator_id", sa.BigInteger, nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_sent", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failed_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_sched_announcements_pending",
        "scheduled_announcements",
        ["is_sent", "scheduled_at"],
    )

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger, nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"]
    )


def downgrade() -> None:
    """Drop every Synergy table."""
    op.drop_table("admin_log")
    op.drop_table("scheduled_announcements")
    op.drop_table("registrations")
    op.drop_table("access_keys")
    op.drop_table("events")
    op.drop_table("users")
