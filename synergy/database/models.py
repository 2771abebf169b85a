"""
synergy.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users                    — Member profiles, notification opt-outs, stats
- events                   — Capacity, counters, lifecycle flags, profile
                             requirements and recurrence (versioned)
- event_templates          — Reusable defaults for /event-create
- access_keys              — Single-use access keys pooled per event
- registrations            — One row per (user, event) with FIFO waitlist slot
- scheduled_announcements  — Channel announcements delivered by a poll sweep
- admin_log                — Append-only audit trail
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Synergy ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class RegistrationStatus(enum.StrEnum):
    """Closed set of registration states.

    ``CONFIRMED`` occupies a capacity slot, ``WAITLIST`` holds a FIFO
    position, ``CANCELLED`` and ``COMPLETED`` are terminal for a given
    attendance (a cancelled row may be reused by a later registration).
    """
    CONFIRMED = "confirmed"
    WAITLIST = "waitlist"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    CANCEL = "CANCEL"
    ADD_KEYS = "ADD_KEYS"
    PROMOTE = "PROMOTE"
    ADD_PARTICIPANT = "ADD_PARTICIPANT"
    REMOVE_PARTICIPANT = "REMOVE_PARTICIPANT"
    TEMPLATE_CREATE = "TEMPLATE_CREATE"
    TEMPLATE_DELETE = "TEMPLATE_DELETE"


class RecurrenceFrequency(enum.StrEnum):
    """How often a recurring event repeats (times ``recurrence_interval``)."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


# ---------------------------------------------------------------------------
# Users — one row per Discord member
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False)
    telegram: Mapped[str | None] = mapped_column(String(64), default=None)
    twitter: Mapped[str | None] = mapped_column(String(64), default=None)
    wallets: Mapped[str | None] = mapped_column(Text, default=None)

    # Notification preferences
    event_reminders: Mapped[bool] = mapped_column(Boolean, default=True)
    waitlist_updates: Mapped[bool] = mapped_column(Boolean, default=True)
    direct_messages: Mapped[bool] = mapped_column(Boolean, default=True)

    # Participation stats
    events_joined: Mapped[int] = mapped_column(Integer, default=0)
    events_completed: Mapped[int] = mapped_column(Integer, default=0)
    waitlist_joins: Mapped[int] = mapped_column(Integer, default=0)
    last_active_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_users_events_joined", "events_joined"),
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.username!r}>"


# ---------------------------------------------------------------------------
# Events — capacity, counters and lifecycle flags
# ---------------------------------------------------------------------------
class Event(Base):
    """A community event members can register for.

    ``registrations_count`` and ``waitlist_count`` mirror the number of
    registrations in the matching status.  Every UPDATE of this row is
    predicated on ``version`` (SQLAlchemy ``version_id_col``), so two
    transactions that read the same counters cannot both commit.
    """
    __tablename__ = "events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    location: Mapped[str] = mapped_column(String(200), nullable=False, default="Online")
    rewards: Mapped[str | None] = mapped_column(Text, default=None)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)

    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)  # 0 = unlimited
    registrations_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    waitlist_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_registration_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Lifecycle
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    reminder_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notified_start: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notified_end: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    # Profile fields a member must fill in before registering
    require_telegram: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_twitter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_wallets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Recurrence: NULL frequency = one-off event.
    # recurrence_remaining counts occurrences still to create (NULL = no limit).
    recurrence: Mapped[str | None] = mapped_column(String(10), default=None)
    recurrence_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    recurrence_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )
    recurrence_remaining: Mapped[int | None] = mapped_column(Integer, default=None)
    previous_event_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="SET NULL"), default=None
    )
    template_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("event_templates.id", ondelete="SET NULL"), default=None
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    access_keys: Mapped[list[AccessKey]] = relationship(
        back_populates="event",
        cascade="all, delete-orphan",
        order_by="AccessKey.position",
    )
    registrations: Mapped[list[Registration]] = relationship(
        back_populates="event", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("capacity >= 0", name="ck_events_capacity_nonneg"),
        CheckConstraint("registrations_count >= 0", name="ck_events_reg_count_nonneg"),
        CheckConstraint("waitlist_count >= 0", name="ck_events_wait_count_nonneg"),
        CheckConstraint("end_date > start_date", name="ck_events_dates_ordered"),
        CheckConstraint("recurrence_interval >= 1", name="ck_events_recurrence_interval"),
        Index("ix_events_active_start", "active", "start_date"),
        Index("ix_events_guild", "guild_id"),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} title={self.title!r} active={self.active}>"


# ---------------------------------------------------------------------------
# EventTemplate — reusable defaults for new events
# ---------------------------------------------------------------------------
class EventTemplate(Base):
    """Named set of event defaults, scoped to a guild.

    Deleting a template only clears ``active``; events created from it keep
    their ``template_id``.
    """
    __tablename__ = "event_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    location: Mapped[str] = mapped_column(String(200), nullable=False, default="Online")
    rewards: Mapped[str | None] = mapped_column(Text, default=None)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=120)
    require_telegram: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_twitter: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    require_wallets: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[int] = mapped_column(BigInteger, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("guild_id", "name", name="uq_event_templates_guild_name"),
        CheckConstraint("capacity >= 0", name="ck_event_templates_capacity_nonneg"),
        CheckConstraint("duration_minutes > 0", name="ck_event_templates_duration_pos"),
    )

    def __repr__(self) -> str:
        return f"<EventTemplate id={self.id} name={self.name!r} active={self.active}>"


# ---------------------------------------------------------------------------
# AccessKey — single-use credential pooled per event
# ---------------------------------------------------------------------------
class AccessKey(Base):
    """One entry of an event's access-key pool.

    Available iff ``issued_to`` is NULL.  Reclaimed keys stay at their
    original ``position`` and may be reissued.
    """
    __tablename__ = "access_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    key: Mapped[str] = mapped_column(String(200), nullable=False)
    issued_to: Mapped[int | None] = mapped_column(BigInteger, default=None)
    issued_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    event: Mapped[Event] = relationship(back_populates="access_keys")

    __table_args__ = (
        UniqueConstraint("event_id", "key", name="uq_access_keys_event_key"),
        # A user holds at most one key per event
        Index(
            "ix_access_keys_event_holder",
            "event_id",
            "issued_to",
            unique=True,
            postgresql_where=text("issued_to IS NOT NULL"),
            sqlite_where=text("issued_to IS NOT NULL"),
        ),
    )

    def __repr__(self) -> str:
        return f"<AccessKey event={self.event_id} pos={self.position} holder={self.issued_to}>"


# ---------------------------------------------------------------------------
# Registration — per (user, event) attendance record
# ---------------------------------------------------------------------------
class Registration(Base):
    __tablename__ = "registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    event_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    waitlist_position: Mapped[int | None] = mapped_column(Integer, default=None)

    registered_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    promoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    event: Mapped[Event] = relationship(back_populates="registrations")

    __table_args__ = (
        UniqueConstraint("user_id", "event_id", name="uq_registrations_user_event"),
        Index("ix_registrations_event_status", "event_id", "status"),
        Index("ix_registrations_event_waitlist", "event_id", "waitlist_position"),
    )

    def __repr__(self) -> str:
        return (
            f"<Registration user={self.user_id} event={self.event_id} "
            f"status={self.status} pos={self.waitlist_position}>"
        )


# ---------------------------------------------------------------------------
# ScheduledAnnouncement — channel posts with a due date
# ---------------------------------------------------------------------------
class ScheduledAnnouncement(Base):
    """An announcement waiting for its ``scheduled_at`` moment.

    Delivery is driven by a periodic sweep over unsent rows rather than a
    per-row timer, so pending announcements survive restarts.
    """
    __tablename__ = "scheduled_announcements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#0099ff")
    creator_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    failed_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_sched_announcements_pending", "is_sent", "scheduled_at"),
    )

    def __repr__(self) -> str:
        return f"<ScheduledAnnouncement id={self.id} at={self.scheduled_at} sent={self.is_sent}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
