"""
tests/test_cache.py — ConfigCache Unit Tests
==============================================

Tests NOTIFY payload routing (without a real PG connection), the
NOTIFY table allowlist, event dispatch, and loading from SQLite.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import Session

from ardor.constants import DEFAULT_RANK_THRESHOLDS
from ardor.database.models import RankReward, RankThreshold, Setting
from ardor.engine.cache import (
    ALLOWED_NOTIFY_TABLES,
    EVENT_NOTIFY_CHANNEL,
    NOTIFY_CHANNEL,
    ConfigCache,
    notify_before_commit,
    send_event_notify,
)


class TestNotifyRouting:
    """Test that NOTIFY payloads route to the correct reload method."""

    @pytest.fixture
    def cache(self):
        """Build a ConfigCache with a mock engine (no DB needed)."""
        return ConfigCache(MagicMock())

    @pytest.mark.parametrize(
        "table_name, expected_method",
        [
            ("rank_thresholds", "_load_thresholds"),
            ("rank_rewards", "_load_rank_rewards"),
            ("settings", "_load_settings"),
        ],
    )
    def test_notify_routes_to_correct_reload(self, cache, table_name, expected_method):
        with patch.object(cache, expected_method) as mock_method:
            cache.handle_notify(table_name)
            mock_method.assert_called_once()

    def test_unknown_notify_ignored(self, cache):
        with (
            patch.object(cache, "_load_thresholds") as mock_th,
            patch.object(cache, "_load_rank_rewards") as mock_rr,
            patch.object(cache, "_load_settings") as mock_st,
        ):
            cache.handle_notify("unknown_table")
            mock_th.assert_not_called()
            mock_rr.assert_not_called()
            mock_st.assert_not_called()

    def test_route_config_channel(self, cache):
        with patch.object(cache, "_load_settings") as mock_st:
            cache._route(NOTIFY_CHANNEL, "settings")
            mock_st.assert_called_once()

    def test_route_swallows_reload_errors(self, cache):
        with patch.object(cache, "_load_thresholds", side_effect=RuntimeError("db gone")):
            cache._route(NOTIFY_CHANNEL, "rank_thresholds")  # must not raise


class TestNotifyAllowlist:
    """Verify notify_before_commit() rejects table names not in the allowlist."""

    def test_allowed_tables_accepted(self):
        for table in ALLOWED_NOTIFY_TABLES:
            notify_before_commit(MagicMock(), table)

    def test_rejects_unknown_table(self):
        with pytest.raises(ValueError, match="Invalid table name"):
            notify_before_commit(MagicMock(), "activity_records")

    def test_rejects_sql_injection_attempt(self):
        with pytest.raises(ValueError, match="Invalid table name"):
            notify_before_commit(MagicMock(), "settings'; DROP TABLE admin_log; --")

    def test_allowlist_matches_handle_notify_branches(self):
        assert ALLOWED_NOTIFY_TABLES == {"rank_thresholds", "rank_rewards", "settings"}

    def test_event_notify_requires_type(self):
        with pytest.raises(ValueError, match="type"):
            send_event_notify(MagicMock(), {"tenant_id": "creator-1"})


class TestEventDispatch:
    def test_dispatches_to_registered_callback(self):
        received = []

        async def on_change(payload):
            received.append(payload)

        async def scenario():
            cache = ConfigCache(MagicMock())
            cache.register_event_callback(
                "activity_changed", on_change, loop=asyncio.get_running_loop(),
            )
            payload = {"type": "activity_changed", "tenant_id": "creator-1", "user_id": "alice"}
            # the listener thread calls _route from outside the loop
            await asyncio.to_thread(cache._route, EVENT_NOTIFY_CHANNEL, json.dumps(payload))
            await asyncio.sleep(0.01)

        asyncio.run(scenario())
        assert received == [
            {"type": "activity_changed", "tenant_id": "creator-1", "user_id": "alice"},
        ]

    @pytest.mark.parametrize("raw", ["not json", json.dumps({"no_type": 1}), json.dumps([1])])
    def test_bad_payloads_ignored(self, raw):
        cache = ConfigCache(MagicMock())
        cache._dispatch_event(raw)  # must not raise

    def test_without_loop_is_dropped(self):
        cache = ConfigCache(MagicMock())
        callback = MagicMock()
        cache.register_event_callback("activity_changed", callback)
        cache._dispatch_event(json.dumps({"type": "activity_changed"}))
        callback.assert_not_called()


class TestLoading:
    def test_defaults_when_empty(self, config_cache):
        assert config_cache.get_thresholds("creator-1") == DEFAULT_RANK_THRESHOLDS
        assert not config_cache.has_custom_thresholds("creator-1")
        assert config_cache.get_rank_reward("creator-1", 1) is None
        assert config_cache.get_float("scoring.economic_cap", 7000.0) == 7000.0

    def test_loads_rows(self, db_engine):
        with Session(db_engine) as session:
            session.add_all([
                RankThreshold(tenant_id="creator-1", axis="composite", rank_level=1, min_score=50),
                RankThreshold(tenant_id="creator-1", axis="composite", rank_level=2, min_score=80),
                RankThreshold(tenant_id="creator-1", axis="economic", rank_level=1, min_score=9),
                RankReward(tenant_id="creator-1", rank_level=2, artifact_id="art-2", label="Two"),
                Setting(key="scoring.economic_cap", value_json="5000"),
                Setting(key="broken", value_json="{not json"),
            ])
            session.commit()

        cache = ConfigCache(db_engine)
        cache.load_all()
        assert cache.get_thresholds("creator-1") == {1: 50.0, 2: 80.0}
        assert cache.get_thresholds("creator-1", "economic") == {1: 9.0}
        assert cache.has_custom_thresholds("creator-1")
        assert cache.get_rank_reward("creator-1", 2).artifact_id == "art-2"
        assert cache.get_float("scoring.economic_cap") == 5000.0
        assert cache.get_setting("broken") == "{not json"
        assert cache.get_int("broken", 7) == 7

    def test_returned_table_is_a_copy(self, config_cache):
        table = config_cache.get_thresholds("creator-1")
        table[1] = -1
        assert config_cache.get_thresholds("creator-1")[1] == DEFAULT_RANK_THRESHOLDS[1]

    def test_notify_reload_picks_up_change(self, db_engine, config_cache):
        with Session(db_engine) as session:
            session.add(RankThreshold(
                tenant_id="creator-1", axis="composite", rank_level=1, min_score=10,
            ))
            session.commit()
        assert not config_cache.has_custom_thresholds("creator-1")
        config_cache.handle_notify("rank_thresholds")
        assert config_cache.get_thresholds("creator-1") == {1: 10.0}


class TestListenerHealth:
    def test_initially_unhealthy(self):
        cache = ConfigCache(MagicMock())
        assert cache.listener_healthy is False
        assert cache.listener_failed is False
