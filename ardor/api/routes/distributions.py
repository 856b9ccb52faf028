"""
ardor.api.routes.distributions — Operator view of reward issuance (JWT‑protected)
===================================================================================

History and stats, the attention list (failed, partial, and stale
pending rows), and operator-triggered re-issuance of failed legs.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ardor.api.deps import AdminUser, get_cache, get_config, get_engine
from ardor.config import ArdorConfig
from ardor.engine.cache import ConfigCache
from ardor.services import distribution_service
from ardor.services.distribution_service import (
    DEFAULT_STALE_PENDING_MINUTES,
    RewardDistributor,
    distribution_to_dict,
)
from ardor.services.issuance import HttpArtifactIssuer, HttpBadgeIssuer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin/distributions", tags=["admin"])


class ReissueRequest(BaseModel):
    reason: str | None = None


def _stale_after(cache: ConfigCache) -> timedelta:
    minutes = cache.get_int("distribution.stale_pending_minutes", DEFAULT_STALE_PENDING_MINUTES)
    return timedelta(minutes=max(1, minutes))


def get_distributor(
    engine=Depends(get_engine),
    cfg: ArdorConfig = Depends(get_config),
) -> RewardDistributor:
    return RewardDistributor(
        engine,
        HttpBadgeIssuer(cfg.badge_service_url, timeout=cfg.issuance_timeout_seconds),
        HttpArtifactIssuer(cfg.artifact_service_url, timeout=cfg.issuance_timeout_seconds),
        issuance_timeout=cfg.issuance_timeout_seconds,
    )


@router.get("")
def list_distributions(
    admin: AdminUser,
    tenant_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    engine=Depends(get_engine),
):
    tenant = tenant_id.lower() if tenant_id else None
    return {
        "distributions": distribution_service.get_distribution_history(engine, tenant, limit),
    }


@router.get("/stats")
def distribution_stats(
    admin: AdminUser,
    tenant_id: str | None = Query(None),
    engine=Depends(get_engine),
):
    tenant = tenant_id.lower() if tenant_id else None
    return distribution_service.get_distribution_stats(engine, tenant)


@router.get("/attention")
def distributions_needing_attention(
    admin: AdminUser,
    tenant_id: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    engine=Depends(get_engine),
    cache: ConfigCache = Depends(get_cache),
):
    tenant = tenant_id.lower() if tenant_id else None
    return {
        "distributions": distribution_service.list_attention_records(
            engine, stale_after=_stale_after(cache), tenant_id=tenant, limit=limit,
        ),
    }


@router.post("/{distribution_id}/reissue")
async def reissue_distribution(
    distribution_id: int,
    admin: AdminUser,
    body: ReissueRequest | None = None,
    distributor: RewardDistributor = Depends(get_distributor),
    cache: ConfigCache = Depends(get_cache),
):
    try:
        outcome = await distributor.reissue(
            distribution_id,
            actor_id=str(admin["sub"]),
            reason=body.reason if body else None,
            stale_after=_stale_after(cache),
        )
    except LookupError:
        raise HTTPException(404, "Distribution not found")
    except ValueError as exc:
        raise HTTPException(409, str(exc))
    return distribution_to_dict(outcome.record)
