"""
tests/test_seed.py — Default Settings Seeder
==============================================
"""

from __future__ import annotations

import json

from sqlalchemy.orm import Session

from ardor.database.models import Setting
from ardor.database.seed import DEFAULT_SETTINGS, seed_default_settings


def test_seeds_every_default_once(db_engine):
    assert seed_default_settings(db_engine) == len(DEFAULT_SETTINGS)
    assert seed_default_settings(db_engine) == 0


def test_operator_edits_preserved(db_engine):
    with Session(db_engine) as session:
        session.add(Setting(key="scoring.economic_cap", value_json=json.dumps(5000)))
        session.commit()

    seed_default_settings(db_engine)

    with Session(db_engine) as session:
        assert json.loads(session.get(Setting, "scoring.economic_cap").value_json) == 5000
        assert session.get(Setting, "distribution.stale_pending_minutes") is not None
