"""
synergy.engine.errors — Typed Domain Errors
============================================

Every error the registration engine raises derives from
:class:`SynergyError` and carries a short ``user_message`` that command
handlers can show as-is.  Anything that is *not* a ``SynergyError`` is
unexpected and gets the generic "try again later" reply.
"""

from __future__ import annotations

__all__ = [
    "SynergyError",
    "EventNotFound",
    "EventInactive",
    "InvalidEvent",
    "AlreadyRegistered",
    "AlreadyConfirmed",
    "AlreadyWaitlisted",
    "DuplicateRegistration",
    "NotRegistered",
    "MissingProfileFields",
    "CapacityExceeded",
    "ConcurrentModification",
    "AnnouncementNotFound",
    "TemplateNotFound",
    "DuplicateTemplate",
]

PROFILE_FIELD_LABELS = {"telegram": "Telegram", "twitter": "Twitter", "wallets": "Wallets"}


class SynergyError(Exception):
    """Base class for engine-level errors."""

    user_message = "Something went wrong. Please try again later."

    def __init__(self, message: str | None = None, **context: object) -> None:
        self.context = context
        super().__init__(message or self.user_message)


class EventNotFound(SynergyError):
    user_message = "That event does not exist."

    def __init__(self, event_id: int) -> None:
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found", event_id=event_id)


class EventInactive(SynergyError):
    user_message = "Registration for this event is closed."

    def __init__(self, event_id: int) -> None:
        self.event_id = event_id
        super().__init__(f"Event {event_id} is closed", event_id=event_id)


class InvalidEvent(SynergyError):
    user_message = "The event details are invalid."

    def __init__(self, message: str) -> None:
        self.user_message = message
        super().__init__(message)


class _RegistrationError(SynergyError):
    def __init__(self, user_id: int, event_id: int) -> None:
        self.user_id = user_id
        self.event_id = event_id
        super().__init__(
            f"{type(self).__name__}: user {user_id} / event {event_id}",
            user_id=user_id,
            event_id=event_id,
        )


class AlreadyRegistered(_RegistrationError):
    user_message = "You are already registered for this event."


class AlreadyConfirmed(AlreadyRegistered):
    user_message = "You already have a confirmed spot for this event."


class AlreadyWaitlisted(AlreadyRegistered):
    user_message = "You are already on the waitlist for this event."


class DuplicateRegistration(_RegistrationError):
    user_message = "You already have an active registration for this event."


class NotRegistered(_RegistrationError):
    user_message = "You are not registered for this event."


class MissingProfileFields(SynergyError):
    """The event requires profile fields the member has not filled in."""

    def __init__(self, user_id: int, event_id: int, fields: list[str]) -> None:
        self.user_id = user_id
        self.event_id = event_id
        self.fields = fields
        labels = ", ".join(PROFILE_FIELD_LABELS.get(name, name) for name in fields)
        self.user_message = (
            f"This event requires these profile fields: {labels}. "
            "Add them with /profile-update first."
        )
        super().__init__(
            f"User {user_id} lacks {fields} for event {event_id}",
            user_id=user_id,
            event_id=event_id,
        )


class CapacityExceeded(SynergyError):
    user_message = "This event just filled up. Try joining the waitlist."

    def __init__(self, event_id: int) -> None:
        self.event_id = event_id
        super().__init__(f"Event {event_id} is at capacity", event_id=event_id)


class ConcurrentModification(SynergyError):
    user_message = "The event is busy right now. Please try again in a moment."

    def __init__(self, event_id: int) -> None:
        self.event_id = event_id
        super().__init__(
            f"Event {event_id} kept changing underneath the operation",
            event_id=event_id,
        )


class AnnouncementNotFound(SynergyError):
    user_message = "No pending announcement with that id."

    def __init__(self, announcement_id: int) -> None:
        self.announcement_id = announcement_id
        super().__init__(
            f"Announcement {announcement_id} not found",
            announcement_id=announcement_id,
        )


class TemplateNotFound(SynergyError):
    user_message = "No event template with that name."

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Template {name!r} not found", name=name)


class DuplicateTemplate(SynergyError):
    user_message = "A template with that name already exists."

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Template {name!r} already exists", name=name)
