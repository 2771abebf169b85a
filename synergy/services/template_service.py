"""
synergy.services.template_service — Reusable Event Templates
=============================================================

Templates store the defaults of a recurring *kind* of event (title,
description, capacity, duration, profile requirements) under a short name
per guild.  ``/event-create template:<name>`` fills every option the admin
left blank from the template.

Templates never carry access keys; keys are per-event secrets.  Deleting a
template is a soft delete, and creating a template under a deleted name
revives the row.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from synergy.database.engine import get_session
from synergy.database.models import AdminActionType, EventTemplate
from synergy.engine.errors import DuplicateTemplate, InvalidEvent, TemplateNotFound
from synergy.engine.lifecycle import ensure_utc
from synergy.engine.outcomes import EventSnapshot
from synergy.engine.recurrence import RecurrenceRule
from synergy.services import admin_service, event_store

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100


@dataclass(frozen=True, slots=True)
class TemplateSnapshot:
    id: int
    guild_id: int
    name: str
    title: str
    description: str
    location: str
    rewards: str | None
    capacity: int
    duration_minutes: int
    require_telegram: bool
    require_twitter: bool
    require_wallets: bool

    @classmethod
    def from_template(cls, template: EventTemplate) -> TemplateSnapshot:
        return cls(
            id=template.id,
            guild_id=template.guild_id,
            name=template.name,
            title=template.title,
            description=template.description,
            location=template.location,
            rewards=template.rewards,
            capacity=template.capacity,
            duration_minutes=template.duration_minutes,
            require_telegram=template.require_telegram,
            require_twitter=template.require_twitter,
            require_wallets=template.require_wallets,
        )

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.duration_minutes)


def _normalise_name(name: str) -> str:
    name = name.strip()
    if not name:
        raise InvalidEvent("Template names cannot be blank.")
    if len(name) > MAX_NAME_LENGTH:
        raise InvalidEvent(f"Template names are at most {MAX_NAME_LENGTH} characters.")
    return name


def _pick(value, default):
    return default if value is None else value


def _find(session: Session, guild_id: int, name: str) -> EventTemplate | None:
    return session.scalars(
        select(EventTemplate).where(
            EventTemplate.guild_id == guild_id,
            EventTemplate.name == name,
        )
    ).first()


def _upsert(
    session: Session,
    *,
    actor_id: int,
    guild_id: int,
    name: str,
    fields: dict,
) -> EventTemplate:
    if fields["capacity"] < 0:
        raise InvalidEvent("Capacity cannot be negative.")
    if fields["duration_minutes"] <= 0:
        raise InvalidEvent("The template duration must be positive.")

    template = _find(session, guild_id, name)
    if template is not None and template.active:
        raise DuplicateTemplate(name)

    before = admin_service.row_to_dict(template)
    if template is None:
        template = EventTemplate(guild_id=guild_id, name=name, created_by=actor_id)
        session.add(template)
    for key, value in fields.items():
        setattr(template, key, value)
    template.active = True
    template.created_by = actor_id
    session.flush()

    admin_service.log_admin_action(
        session,
        actor_id=actor_id,
        action_type=AdminActionType.TEMPLATE_CREATE,
        target_table="event_templates",
        target_id=str(template.id),
        before=before,
        after=admin_service.row_to_dict(template),
    )
    logger.info("Template %r saved in guild %d by %d", name, guild_id, actor_id)
    return template


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def create_template(
    engine: Engine,
    *,
    actor_id: int,
    guild_id: int,
    name: str,
    title: str,
    description: str = "",
    location: str = "Online",
    rewards: str | None = None,
    capacity: int = 0,
    duration_minutes: int = 120,
    require_telegram: bool = False,
    require_twitter: bool = False,
    require_wallets: bool = False,
) -> TemplateSnapshot:
    """Store a new template; :class:`DuplicateTemplate` if the name is taken."""
    name = _normalise_name(name)
    with get_session(engine) as session:
        template = _upsert(
            session,
            actor_id=actor_id,
            guild_id=guild_id,
            name=name,
            fields={
                "title": title,
                "description": description,
                "location": location,
                "rewards": rewards,
                "capacity": capacity,
                "duration_minutes": duration_minutes,
                "require_telegram": require_telegram,
                "require_twitter": require_twitter,
                "require_wallets": require_wallets,
            },
        )
        return TemplateSnapshot.from_template(template)


def save_event_as_template(
    engine: Engine,
    event_id: int,
    *,
    actor_id: int,
    name: str,
) -> TemplateSnapshot:
    """Capture an existing event's settings (not its keys) as a template."""
    name = _normalise_name(name)
    with get_session(engine) as session:
        event = event_store.get_event(session, event_id)
        duration = ensure_utc(event.end_date) - ensure_utc(event.start_date)
        template = _upsert(
            session,
            actor_id=actor_id,
            guild_id=event.guild_id,
            name=name,
            fields={
                "title": event.title,
                "description": event.description,
                "location": event.location,
                "rewards": event.rewards,
                "capacity": event.capacity,
                "duration_minutes": max(int(duration.total_seconds() // 60), 1),
                "require_telegram": event.require_telegram,
                "require_twitter": event.require_twitter,
                "require_wallets": event.require_wallets,
            },
        )
        return TemplateSnapshot.from_template(template)


def list_templates(engine: Engine, guild_id: int) -> list[TemplateSnapshot]:
    with get_session(engine) as session:
        templates = session.scalars(
            select(EventTemplate)
            .where(EventTemplate.guild_id == guild_id, EventTemplate.active.is_(True))
            .order_by(EventTemplate.name)
        ).all()
        return [TemplateSnapshot.from_template(t) for t in templates]


def get_template(engine: Engine, guild_id: int, name: str) -> TemplateSnapshot:
    with get_session(engine) as session:
        template = _find(session, guild_id, name.strip())
        if template is None or not template.active:
            raise TemplateNotFound(name)
        return TemplateSnapshot.from_template(template)


def delete_template(engine: Engine, guild_id: int, name: str, *, actor_id: int) -> None:
    """Soft-delete a template; events created from it are untouched."""
    with get_session(engine) as session:
        template = _find(session, guild_id, name.strip())
        if template is None or not template.active:
            raise TemplateNotFound(name)
        before = admin_service.row_to_dict(template)
        template.active = False
        session.flush()
        admin_service.log_admin_action(
            session,
            actor_id=actor_id,
            action_type=AdminActionType.TEMPLATE_DELETE,
            target_table="event_templates",
            target_id=str(template.id),
            before=before,
            after=admin_service.row_to_dict(template),
        )
    logger.info("Template %r deleted in guild %d by %d", name, guild_id, actor_id)


def create_event_from_template(
    engine: Engine,
    *,
    actor_id: int,
    guild_id: int,
    name: str,
    start_date: datetime,
    end_date: datetime | None = None,
    title: str | None = None,
    description: str | None = None,
    location: str | None = None,
    rewards: str | None = None,
    capacity: int | None = None,
    access_keys: Iterable[str] = (),
    recurrence: RecurrenceRule | None = None,
    require_telegram: bool | None = None,
    require_twitter: bool | None = None,
    require_wallets: bool | None = None,
) -> EventSnapshot:
    """Create an event from template *name*.

    Every argument left as ``None`` takes the template's value; a missing
    *end_date* is ``start_date`` plus the template duration.
    """
    template = get_template(engine, guild_id, name)
    return admin_service.create_event(
        engine,
        actor_id=actor_id,
        guild_id=guild_id,
        title=title or template.title,
        start_date=start_date,
        end_date=end_date or start_date + template.duration,
        capacity=template.capacity if capacity is None else capacity,
        description=template.description if description is None else description,
        location=location or template.location,
        rewards=template.rewards if rewards is None else rewards,
        access_keys=access_keys,
        require_telegram=_pick(require_telegram, template.require_telegram),
        require_twitter=_pick(require_twitter, template.require_twitter),
        require_wallets=_pick(require_wallets, template.require_wallets),
        recurrence=recurrence,
        template_id=template.id,
    )
