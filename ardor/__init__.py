"""
Ardor — Contribution Scoring & Rank Reward Engine
===================================================
Turns settled transfer activity between a user and a tenant (creator)
into two independent axis scores, a blended composite, a discrete rank,
and exactly-once rank rewards (badge + optional bonus artifact).

Package layout::

    ardor/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Tier tables, tag lookup, default thresholds
    ├── errors.py          # Exception taxonomy
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default settings seeder
    ├── engine/
    │   ├── activity.py    # ActivityEvent + aggregation into counters
    │   ├── tiers.py       # Shared tiered lookup algorithm
    │   ├── scoring.py     # Economic / resonance / composite scorers
    │   ├── thresholds.py  # Rank resolver over tenant threshold tables
    │   ├── transitions.py # Rank-up detection state machine
    │   └── cache.py       # In-memory config cache + PG LISTEN/NOTIFY
    ├── services/
    │   ├── activity_source.py      # Settled activity reads
    │   ├── threshold_service.py    # Audited threshold table edits
    │   ├── transition_store.py     # Durable previous-rank state
    │   ├── issuance.py             # Badge / artifact HTTP clients
    │   ├── distribution_service.py # Claim-then-act reward issuance
    │   ├── evaluation_service.py   # Full pipeline for one subject
    │   └── refresh_coordinator.py  # Poll + notify driven refresh loops
    ├── worker/
    │   └── __main__.py    # ``python -m ardor.worker``
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # Engine / JWT dependencies
        └── routes/        # Score read model + operator endpoints
"""

__version__ = "0.1.0"
