"""Event profile requirements, recurrence and templates

Revision ID: 8a3f6b2c9d10
Revises: 5c2e9d1f7a43
Create Date: 2026-10-17 15:40:08.216907

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '8a3f6b2c9d10'
down_revision: str | Sequence[str] | None = '5c2e9d1f7a43'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Add event_templates and the requirement/recurrence columns on events."""

    # --- event_templates ---
    op.create_table(
        "event_templates",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("location", sa.String(200), nullable=False, server_default="Online"),
        sa.Column("rewards", sa.Text, nullable=True),
        sa.Column("capacity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("duration_minutes", sa.Integer, nullable=False, server_default="120"),
        sa.Column("require_telegram", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("require_twitter", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("require_wallets", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_by", sa.BigInteger, nullable=False),
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("guild_id", "name", name="uq_event_templates_guild_name"),
        sa.CheckConstraint("capacity >= 0", name="ck_event_templates_capacity_nonneg"),
        sa.CheckConstraint("duration_minutes > 0", name="ck_event_templates_duration_pos"),
    )

    # --- events: profile requirements ---
    for field in ("require_telegram", "require_twitter", "require_wallets"):
        op.add_column(
            "events",
            sa.Column(field, sa.Boolean, nullable=False, server_default=sa.false()),
        )

    # --- events: recurrence + lineage ---
    op.add_column("events", sa.Column("recurrence", sa.String(10), nullable=True))
    op.add_column(
        "events",
        sa.Column("recurrence_interval", sa.Integer, nullable=False, server_default="1"),
    )
    op.add_column(
        "events", sa.Column("recurrence_until", sa.DateTime(timezone=True), nullable=True)
    )
    op.add_column("events", sa.Column("recurrence_remaining", sa.Integer, nullable=True))
    op.add_column("events", sa.Column("previous_event_id", sa.Integer, nullable=True))
    op.add_column("events", sa.Column("template_id", sa.Integer, nullable=True))
    op.create_foreign_key(
        "fk_events_previous_event", "events", "events",
        ["previous_event_id"], ["id"], ondelete="SET NULL",
    )
    op.create_foreign_key(
        "fk_events_template", "events", "event_templates",
        ["template_id"], ["id"], ondelete="SET NULL",
    )
    op.create_check_constraint(
        "ck_events_recurrence_interval", "events", "recurrence_interval >= 1"
    )


def downgrade() -> None:
    """Drop the template table and the added event columns."""
    op.drop_constraint("ck_events_recurrence_interval", "events", type_="check")
    op.drop_constraint("fk_events_template", "events", type_="foreignkey")
    op.drop_constraint("fk_events_previous_event", "events", type_="foreignkey")
    for column in (
        "template_id",
        "previous_event_id",
        "recurrence_remaining",
        "recurrence_until",
        "recurrence_interval",
        "recurrence",
        "require_wallets",
        "require_twitter",
        "require_telegram",
    ):
        op.drop_column("events", column)
    op.drop_table("event_templates")
