"""
Synergy — Event & Community Management for Discord
===================================================
Member profiles, event registration with capacity-limited waitlists and
single-use access keys, lifecycle reminders, scheduled announcements and
admin tooling for a Discord guild.

Package layout::

    synergy/
    ├── config.py          # YAML → typed Python config
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (events, registrations, keys, …)
    ├── engine/
    │   ├── errors.py      # Typed domain errors with user-facing messages
    │   ├── outcomes.py    # Result records returned by the waitlist engine
    │   └── lifecycle.py   # Pure time-based transition rules
    ├── services/
    │   ├── event_store.py          # Event records + access-key pool
    │   ├── registration_store.py   # Registration rows + waitlist ordering
    │   ├── waitlist_service.py     # register / cancel / promote engine
    │   ├── lifecycle_service.py    # Reminder / start / closure sweeps
    │   ├── notification_service.py # Notifier protocol + Discord DMs
    │   ├── announcement_service.py # Scheduled channel announcements
    │   ├── admin_service.py        # Audited admin mutations
    │   ├── profile_service.py      # Member profiles & preferences
    │   ├── analytics_service.py    # Event / community summaries
    │   ├── reconciliation_service.py # Counter drift repair
    │   └── embeds.py               # Discord embed builders
    └── bot/
        ├── core.py        # Bot subclass, cog loader
        └── cogs/
            ├── events.py  # /events, /register, waitlist, cancel
            ├── profile.py # /profile, /profile-update, /notifications
            ├── admin.py   # admin event + announcement commands
            └── tasks.py   # scheduler loops
"""

__version__ = "0.1.0"
