"""
synergy.engine.outcomes — Result Records of the Registration Engine
====================================================================

The waitlist engine never fires notifications itself.  Each operation
returns one of these records describing what changed and who needs to
hear about it; the caller hands the record to
:func:`synergy.services.notification_service.dispatch_outcome`.

All records are detached from the ORM session, so they are safe to pass
back across the :func:`~synergy.database.engine.run_db` thread boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from synergy.database.models import RegistrationStatus
from synergy.engine.lifecycle import required_fields

if TYPE_CHECKING:
    from synergy.database.models import Event

__all__ = [
    "EventSnapshot",
    "StatusChange",
    "Promotion",
    "RegistrationOutcome",
    "PromotionOutcome",
    "CancellationOutcome",
    "SweepReport",
]


@dataclass(frozen=True, slots=True)
class EventSnapshot:
    """Read-only copy of the event fields notifications and embeds need."""

    id: int
    guild_id: int
    title: str
    location: str
    start_date: datetime
    end_date: datetime
    capacity: int
    registrations_count: int
    waitlist_count: int
    has_key_pool: bool
    requirements: tuple[str, ...] = ()

    @classmethod
    def from_event(cls, event: Event) -> EventSnapshot:
        return cls(
            id=event.id,
            guild_id=event.guild_id,
            title=event.title,
            location=event.location,
            start_date=event.start_date,
            end_date=event.end_date,
            capacity=event.capacity,
            registrations_count=event.registrations_count,
            waitlist_count=event.waitlist_count,
            has_key_pool=bool(event.access_keys),
            requirements=required_fields(event),
        )


@dataclass(frozen=True, slots=True)
class StatusChange:
    """A registration moved from ``old_status`` to ``new_status``.

    ``old_status`` is ``None`` for a freshly created registration.
    """

    user_id: int
    event: EventSnapshot
    old_status: RegistrationStatus | None
    new_status: RegistrationStatus


@dataclass(frozen=True, slots=True)
class Promotion:
    """A waitlisted user was moved into a confirmed slot."""

    user_id: int
    event: EventSnapshot
    promoted_at: datetime
    access_key: str | None = None


@dataclass(slots=True)
class RegistrationOutcome:
    """Result of a user-facing registration operation.

    ``status`` is the caller's registration status afterwards, or ``None``
    when the registration row no longer exists (waitlist removal) or was
    never created (``waitlist_offered``).
    """

    user_id: int
    event: EventSnapshot
    status: RegistrationStatus | None
    access_key: str | None = None
    reclaimed_key: str | None = None
    waitlist_position: int | None = None
    waitlist_offered: bool = False
    already_waitlisted: bool = False
    promotions: list[Promotion] = field(default_factory=list)
    status_changes: list[StatusChange] = field(default_factory=list)

    @property
    def key_pool_exhausted(self) -> bool:
        """Confirmed without a key: access is granted on-site instead."""
        return self.status is RegistrationStatus.CONFIRMED and self.access_key is None


@dataclass(slots=True)
class PromotionOutcome:
    """Result of one or more waitlist promotions for a single event."""

    event: EventSnapshot
    promotions: list[Promotion] = field(default_factory=list)
    status_changes: list[StatusChange] = field(default_factory=list)

    @property
    def user_id(self) -> int | None:
        """First promoted user, or ``None`` if the waitlist was empty."""
        return self.promotions[0].user_id if self.promotions else None

    @property
    def user_ids(self) -> list[int]:
        return [p.user_id for p in self.promotions]


@dataclass(slots=True)
class SweepReport:
    """Summary of one scheduler sweep."""

    sweep: str
    events: list[int] = field(default_factory=list)
    notified: int = 0
    failed: int = 0
    transitioned: int = 0
    spawned: list[EventSnapshot] = field(default_factory=list)


@dataclass(slots=True)
class CancellationOutcome:
    """An admin cancelled a whole event; every active registrant is told."""

    event: EventSnapshot
    status_changes: list[StatusChange] = field(default_factory=list)
    promotions: list[Promotion] = field(default_factory=list)
