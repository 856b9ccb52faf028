"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Integration tests for the score read model and the operator routes,
using the FastAPI TestClient with dependencies overridden to run
against in-memory SQLite and fake issuers.

These tests verify:
- Auth guards on admin endpoints
- Threshold table read/replace with audit
- Distribution history, stats, attention list, and re-issue
- Score read and refresh
- Health endpoint availability
"""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import patch

import jwt
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from ardor.api.deps import (
    JWT_ALGORITHM,
    get_cache,
    get_config,
    get_engine,
    get_evaluator,
)
from ardor.api.main import app
from ardor.api.routes.distributions import get_distributor
from ardor.config import ArdorConfig
from ardor.database.models import AdminLog, DistributionStatus, RewardDistribution
from ardor.engine.activity import ActivityEvent
from ardor.engine.transitions import InMemoryTransitionStore, RankTransitionDetector
from ardor.services.distribution_service import RewardDistributor
from ardor.services.evaluation_service import SubjectEvaluator
from conftest import FakeArtifactIssuer, FakeBadgeIssuer, make_admin_token


class StaticSource:
    def __init__(self, events=()):
        self.events = list(events)

    def list_activity(self, tenant_id, user_id, since=None):
        return [e for e in self.events if (e.tenant_id, e.sender_id) == (tenant_id, user_id)]


def _tip(amount: float, user: str = "alice") -> ActivityEvent:
    return ActivityEvent(
        tenant_id="creator-1", sender_id=user, recipient_id="creator-1",
        amount=amount, currency_tag="JPYC", created_at=datetime.now(UTC),
    )


@pytest.fixture
def source():
    return StaticSource()


@pytest.fixture
def overridden(db_engine, config_cache, source):
    """Point every dependency at SQLite, the loaded cache, and fake issuers."""
    badge = FakeBadgeIssuer()
    distributor = RewardDistributor(db_engine, badge, FakeArtifactIssuer())
    evaluator = SubjectEvaluator(
        source,
        config_cache,
        RankTransitionDetector(InMemoryTransitionStore()),
        distributor,
    )
    cfg = ArdorConfig(
        service_name="Ardor Test",
        api_port=8000,
        badge_service_url="http://badges.invalid",
        artifact_service_url="http://artifacts.invalid",
    )
    app.dependency_overrides[get_engine] = lambda: db_engine
    app.dependency_overrides[get_cache] = lambda: config_cache
    app.dependency_overrides[get_config] = lambda: cfg
    app.dependency_overrides[get_evaluator] = lambda: evaluator
    app.dependency_overrides[get_distributor] = lambda: distributor
    yield badge
    app.dependency_overrides.clear()


@pytest.fixture
def non_admin_token():
    from ardor.api.deps import JWT_SECRET

    return jwt.encode(
        {"sub": "67890", "username": "RegularUser", "is_admin": False},
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _add_distribution(engine, **fields) -> int:
    defaults = dict(
        tenant_id="creator-1",
        user_id="alice",
        rank_level=2,
        status=DistributionStatus.FAILED.value,
        score_value=305.0,
        failure_reason="badge: badge service unavailable",
        claimed_at=datetime.now(UTC),
    )
    defaults.update(fields)
    with Session(engine) as session:
        row = RewardDistribution(**defaults)
        session.add(row)
        session.commit()
        return row.id


# ===========================================================================
# Health endpoint
# ===========================================================================
class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


# ===========================================================================
# Auth guards — admin endpoints should reject unauthenticated/non-admin users
# ===========================================================================
class TestAdminAuthGuards:
    """All admin endpoints must return 401/403 for missing/invalid/non-admin tokens."""

    ADMIN_GET_ENDPOINTS = [
        "/api/admin/thresholds/creator-1/composite",
        "/api/admin/distributions",
        "/api/admin/distributions/stats",
        "/api/admin/distributions/attention",
    ]

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_no_token_returns_401(self, client, overridden, endpoint):
        resp = client.get(endpoint)
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_invalid_token_returns_401(self, client, overridden, endpoint):
        resp = client.get(endpoint, headers=_auth("not.a.valid.jwt"))
        assert resp.status_code == 401

    @pytest.mark.parametrize("endpoint", ADMIN_GET_ENDPOINTS)
    def test_get_non_admin_returns_403(self, client, overridden, non_admin_token, endpoint):
        resp = client.get(endpoint, headers=_auth(non_admin_token))
        assert resp.status_code == 403

    def test_reissue_requires_admin(self, client, overridden):
        resp = client.post("/api/admin/distributions/1/reissue")
        assert resp.status_code == 401

    def test_put_thresholds_requires_admin(self, client, overridden):
        resp = client.put(
            "/api/admin/thresholds/creator-1/composite",
            json={"thresholds": {"1": 10}},
        )
        assert resp.status_code == 401


# ===========================================================================
# Threshold tables
# ===========================================================================
class TestThresholdRoutes:
    URL = "/api/admin/thresholds/creator-1/composite"

    def test_get_default_table(self, client, overridden, admin_token):
        resp = client.get(self.URL, headers=_auth(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        assert body["is_default"] is True
        assert body["thresholds"]["1"] == 100

    def test_unknown_axis_404(self, client, overridden, admin_token):
        resp = client.get("/api/admin/thresholds/creator-1/karma", headers=_auth(admin_token))
        assert resp.status_code == 404

    @patch("ardor.services.threshold_service.notify_before_commit")
    def test_put_replaces_and_audits(self, mock_notify, client, overridden, admin_token, db_engine):
        resp = client.put(
            "/api/admin/thresholds/Creator-1/composite",
            json={"thresholds": {"1": 50, "2": 150}, "reason": "launch tuning"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        assert resp.json()["thresholds"] == {"1": 50.0, "2": 150.0}
        mock_notify.assert_called_once()

        follow = client.get(self.URL, headers=_auth(admin_token)).json()
        assert follow["is_default"] is False
        assert follow["thresholds"] == {"1": 50.0, "2": 150.0}

        with Session(db_engine) as session:
            log = session.scalars(select(AdminLog)).one()
        assert log.actor_id == "99999"
        assert log.target_id == "creator-1:composite"
        assert log.reason == "launch tuning"

    @patch("ardor.services.threshold_service.notify_before_commit")
    def test_put_non_increasing_422(self, mock_notify, client, overridden, admin_token):
        resp = client.put(
            self.URL,
            json={"thresholds": {"1": 300, "2": 100}},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 422
        mock_notify.assert_not_called()

    def test_put_empty_table_rejected(self, client, overridden, admin_token):
        resp = client.put(self.URL, json={"thresholds": {}}, headers=_auth(admin_token))
        assert resp.status_code == 422


# ===========================================================================
# Distributions
# ===========================================================================
class TestDistributionRoutes:
    def test_list_and_stats(self, client, overridden, admin_token, db_engine):
        _add_distribution(db_engine)
        _add_distribution(
            db_engine, rank_level=1, status=DistributionStatus.COMPLETED.value,
            badge_minted=True, failure_reason=None,
        )

        listing = client.get("/api/admin/distributions", headers=_auth(admin_token))
        assert listing.status_code == 200
        assert len(listing.json()["distributions"]) == 2

        stats = client.get("/api/admin/distributions/stats", headers=_auth(admin_token)).json()
        assert stats["total"] == 2
        assert stats["failed"] == 1
        assert stats["completed"] == 1

    def test_attention_lists_failed(self, client, overridden, admin_token, db_engine):
        failed_id = _add_distribution(db_engine)
        _add_distribution(
            db_engine, rank_level=1, status=DistributionStatus.COMPLETED.value,
            badge_minted=True, failure_reason=None,
        )
        resp = client.get("/api/admin/distributions/attention", headers=_auth(admin_token))
        assert [d["id"] for d in resp.json()["distributions"]] == [failed_id]

    def test_reissue_failed(self, client, overridden, admin_token, db_engine):
        record_id = _add_distribution(db_engine)
        resp = client.post(
            f"/api/admin/distributions/{record_id}/reissue",
            json={"reason": "badge service back"},
            headers=_auth(admin_token),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == DistributionStatus.COMPLETED.value
        assert body["badge_reference_id"] == "badge-alice-2"
        assert body["reissue_count"] == 1
        assert overridden.calls == [("alice", 2)]

    def test_reissue_unknown_404(self, client, overridden, admin_token):
        resp = client.post("/api/admin/distributions/999/reissue", headers=_auth(admin_token))
        assert resp.status_code == 404

    def test_reissue_completed_409(self, client, overridden, admin_token, db_engine):
        record_id = _add_distribution(
            db_engine, status=DistributionStatus.COMPLETED.value,
            badge_minted=True, failure_reason=None,
        )
        resp = client.post(
            f"/api/admin/distributions/{record_id}/reissue", headers=_auth(admin_token),
        )
        assert resp.status_code == 409


# ===========================================================================
# Scores
# ===========================================================================
class TestScoreRoutes:
    def test_get_scores_is_side_effect_free(self, client, overridden, source):
        source.events.append(_tip(1400))
        resp = client.get("/api/scores/Creator-1/ALICE")
        assert resp.status_code == 200
        body = resp.json()
        assert body["tenant_id"] == "creator-1"
        assert body["user_id"] == "alice"
        assert body["rank"]["level"] == 1
        assert overridden.calls == []

    def test_refresh_reports_rank_up(self, client, overridden, source):
        source.events.append(_tip(1400))
        first = client.post("/api/scores/creator-1/alice/refresh").json()
        assert first["rank_up"] is None  # first observation seeds state

        source.events.append(_tip(2800))
        second = client.post("/api/scores/creator-1/alice/refresh").json()
        assert second["snapshot"]["composite"]["value"] == 305
        assert second["rank_up"]["level"] == 2
        assert second["rank_up"]["badge_reference_id"] == "badge-alice-2"

    def test_token_factory_subject(self):
        token = make_admin_token(sub="42")
        from ardor.api.deps import JWT_SECRET

        assert jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])["sub"] == "42"
