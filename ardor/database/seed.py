"""
ardor.database.seed — Default Settings Seeder
==============================================

Baseline scoring settings inserted on startup.  Idempotent — only inserts
keys that don't already exist, so operator edits are never overwritten.
"""

from __future__ import annotations

import json
import logging

from sqlalchemy import Engine
from sqlalchemy.orm import Session

from ardor.constants import DEFAULT_ECONOMIC_CAP
from ardor.database.models import Setting

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default settings catalogue
# ---------------------------------------------------------------------------
DEFAULT_SETTINGS: dict[str, tuple[object, str, str]] = {
    "scoring.economic_cap": (
        DEFAULT_ECONOMIC_CAP, "scoring",
        "Economic total that normalizes to 1000 in the composite score",
    ),
    "distribution.stale_pending_minutes": (
        30, "distribution",
        "Minutes after which a pending distribution is shown to operators",
    ),
}
"""Each entry maps ``key`` → ``(default_value, category, description)``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_default_settings(engine: Engine) -> int:
    """Insert default settings that don't yet exist.

    Safe to call on every startup.  Returns the number of rows inserted.
    """
    session = Session(engine)
    inserted = 0
    try:
        for key, (value, category, desc) in DEFAULT_SETTINGS.items():
            if session.get(Setting, key) is None:
                session.add(Setting(
                    key=key,
                    value_json=json.dumps(value),
                    category=category,
                    description=desc,
                ))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d default settings.", inserted)
    return inserted
