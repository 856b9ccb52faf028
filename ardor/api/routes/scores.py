"""
ardor.api.routes.scores — Score read model
============================================

``GET`` scores a subject without side effects.  ``POST …/refresh`` runs
the full pipeline, including rank-up detection and reward issuance, and
returns the rank-up notification payload when one fired.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ardor.api.deps import get_evaluator
from ardor.engine.transitions import Subject
from ardor.services.evaluation_service import SubjectEvaluator

router = APIRouter(prefix="/scores", tags=["scores"])


@router.get("/{tenant_id}/{user_id}")
async def get_scores(
    tenant_id: str,
    user_id: str,
    evaluator: SubjectEvaluator = Depends(get_evaluator),
):
    snapshot = await evaluator.peek(Subject.of(tenant_id, user_id))
    return snapshot.to_dict()


@router.post("/{tenant_id}/{user_id}/refresh")
async def refresh_scores(
    tenant_id: str,
    user_id: str,
    evaluator: SubjectEvaluator = Depends(get_evaluator),
):
    result = await evaluator.evaluate(Subject.of(tenant_id, user_id))
    return {
        "snapshot": result.snapshot.to_dict(),
        "rank_up": result.rank_up.to_dict() if result.rank_up else None,
    }
