"""
tests/test_deps — API Dependency Wiring
=========================================
JWT secret validation, the admin guard, and the cached cache/evaluator
singletons the routes depend on.
"""

from __future__ import annotations

import jwt
import pytest
from fastapi import HTTPException

from ardor.api import deps
from ardor.config import ArdorConfig
from ardor.services.activity_source import SqlActivitySource
from ardor.services.distribution_service import RewardDistributor
from ardor.services.transition_store import SqlTransitionStore


class TestJWTSecret:
    @pytest.mark.parametrize(
        "secret, message",
        [
            ("", "not set"),
            ("change-me", "known weak default"),
            ("replace-with-a-long-random-secret-at-least-32-chars", "known weak default"),
            ("tooshort", "too short"),
        ],
    )
    def test_rejected(self, monkeypatch, secret, message):
        monkeypatch.setenv("JWT_SECRET", secret)
        with pytest.raises(RuntimeError, match=message):
            deps._load_jwt_secret()

    def test_unset_rejected(self, monkeypatch):
        monkeypatch.delenv("JWT_SECRET", raising=False)
        with pytest.raises(RuntimeError, match="not set"):
            deps._load_jwt_secret()

    def test_strong_secret_accepted(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", "k" * 48)
        assert deps._load_jwt_secret() == "k" * 48


def _bearer(claims: dict, secret: str | None = None) -> str:
    return "Bearer " + jwt.encode(claims, secret or deps.JWT_SECRET, algorithm=deps.JWT_ALGORITHM)


class TestCurrentAdmin:
    def test_admin_payload_returned(self):
        payload = deps.get_current_admin(_bearer({"sub": "1", "is_admin": True}))
        assert payload["sub"] == "1"

    @pytest.mark.parametrize("header", [None, "", "Token abc", "Bearer not.a.jwt"])
    def test_missing_or_malformed_is_401(self, header):
        with pytest.raises(HTTPException) as exc:
            deps.get_current_admin(header)
        assert exc.value.status_code == 401

    def test_wrong_signature_is_401(self):
        with pytest.raises(HTTPException) as exc:
            deps.get_current_admin(_bearer({"is_admin": True}, secret="z" * 40))
        assert exc.value.status_code == 401

    def test_non_admin_is_403(self):
        with pytest.raises(HTTPException) as exc:
            deps.get_current_admin(_bearer({"sub": "2", "is_admin": False}))
        assert exc.value.status_code == 403


@pytest.fixture
def wired(monkeypatch, db_engine):
    cfg = ArdorConfig(
        service_name="Ardor Test",
        api_port=8100,
        badge_service_url="http://badges.local",
        artifact_service_url="http://artifacts.local",
        evaluation_timeout_seconds=3.0,
        issuance_timeout_seconds=4.0,
    )
    monkeypatch.setattr(deps, "get_engine", lambda: db_engine)
    monkeypatch.setattr(deps, "get_config", lambda: cfg)
    deps.get_cache.cache_clear()
    deps.get_evaluator.cache_clear()
    yield cfg
    deps.get_cache.cache_clear()
    deps.get_evaluator.cache_clear()


class TestSingletons:
    def test_cache_loaded_once(self, wired):
        cache = deps.get_cache()
        assert cache is deps.get_cache()
        assert cache.get_thresholds("creator-1")[1] == 100.0

    def test_evaluator_shares_cache_and_config(self, wired, db_engine):
        evaluator = deps.get_evaluator()
        assert evaluator is deps.get_evaluator()
        assert evaluator._cache is deps.get_cache()
        assert evaluator._timeout == 3.0
        assert isinstance(evaluator._source, SqlActivitySource)
        assert isinstance(evaluator._detector.store, SqlTransitionStore)
        assert isinstance(evaluator._distributor, RewardDistributor)
        assert evaluator._distributor._issuance_timeout == 4.0
