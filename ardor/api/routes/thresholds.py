"""
ardor.api.routes.thresholds — Operator threshold tables (JWT‑protected)
=========================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ardor.api.deps import AdminUser, get_engine
from ardor.database.models import ScoreAxis
from ardor.errors import ThresholdConfigError
from ardor.services import threshold_service

router = APIRouter(prefix="/admin/thresholds", tags=["admin"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class ThresholdTableUpdate(BaseModel):
    thresholds: dict[int, float] = Field(..., min_length=1)  # {"1": 100, "2": 300}
    reason: str | None = None


def _axis_or_404(axis: str) -> str:
    try:
        return ScoreAxis(axis.lower()).value
    except ValueError:
        raise HTTPException(404, f"Unknown axis '{axis}'")


def _table_json(table: dict[int, float]) -> dict[str, float]:
    return {str(level): minimum for level, minimum in sorted(table.items())}


@router.get("/{tenant_id}/{axis}")
def get_thresholds(
    tenant_id: str,
    axis: str,
    admin: AdminUser,
    engine=Depends(get_engine),
):
    axis = _axis_or_404(axis)
    table, is_default = threshold_service.get_threshold_table(engine, tenant_id.lower(), axis)
    return {
        "tenant_id": tenant_id.lower(),
        "axis": axis,
        "thresholds": _table_json(table),
        "is_default": is_default,
    }


@router.put("/{tenant_id}/{axis}")
def put_thresholds(
    tenant_id: str,
    axis: str,
    body: ThresholdTableUpdate,
    admin: AdminUser,
    engine=Depends(get_engine),
):
    axis = _axis_or_404(axis)
    try:
        table = threshold_service.replace_threshold_table(
            engine,
            tenant_id.lower(),
            axis,
            body.thresholds,
            actor_id=str(admin["sub"]),
            reason=body.reason,
        )
    except ThresholdConfigError as exc:
        raise HTTPException(422, str(exc))
    return {
        "tenant_id": tenant_id.lower(),
        "axis": axis,
        "thresholds": _table_json(table),
        "is_default": False,
    }
