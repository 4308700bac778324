"""
Habitat — Habit Engagement & Scoring Engine
============================================
Decides when a habit may be completed, turns completions into shareable
"atoms", keeps atom vote tallies consistent, and ranks users by karma.

Package layout::

    habitat/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Scoring defaults + caption fallback
    ├── errors.py          # Domain error taxonomy (codes + HTTP status)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # ORM models (users, habits, completions, atoms, votes)
    │   └── seed.py        # Default scoring settings
    ├── engine/
    │   ├── occurrence.py  # Occurrence window resolver (pure)
    │   ├── votes.py       # Vote state machine (pure)
    │   ├── karma.py       # Streak / daily karma / ranking math (pure)
    │   ├── events.py      # EngagementEvent envelope
    │   └── cache.py       # Settings cache, PG LISTEN/NOTIFY, event relay
    ├── services/
    │   ├── completion_service.py  # Completion ledger
    │   ├── vote_service.py        # Atom & vote ledger
    │   ├── karma_service.py       # Karma totals + leaderboards
    │   ├── feed_service.py        # Trending atoms
    │   ├── tracker_service.py     # Today's habits + completion stats
    │   ├── caption_service.py     # External caption generator + fallback
    │   ├── settings_service.py    # Scoring settings reads/upserts
    │   └── event_bus.py           # Real-time fan-out + cross-process relay
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Dependency injection
        └── routes/        # REST, admin settings + realtime socket adapters
"""

__version__ = "0.1.0"
