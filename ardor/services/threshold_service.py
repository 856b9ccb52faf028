"""
ardor.services.threshold_service — Audited Threshold Table Edits
=================================================================

Every write follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Validate and replace the table
  4. Write admin_log with before/after JSONB
  5. NOTIFY config_changed, 'rank_thresholds'
  6. Commit
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from ardor.constants import DEFAULT_RANK_THRESHOLDS
from ardor.database.models import AdminActionType, AdminLog, RankThreshold
from ardor.engine.cache import notify_before_commit
from ardor.engine.thresholds import validate_thresholds

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def _read_table(session: Session, tenant_id: str, axis: str) -> dict[int, float]:
    rows = session.scalars(
        select(RankThreshold).where(
            RankThreshold.tenant_id == tenant_id,
            RankThreshold.axis == axis,
        )
    ).all()
    return {row.rank_level: float(row.min_score) for row in rows}


def _as_json(table: Mapping[int, float]) -> dict[str, float]:
    return {str(level): minimum for level, minimum in sorted(table.items())}


def get_threshold_table(engine: Engine, tenant_id: str, axis: str) -> tuple[dict[int, float], bool]:
    """Return ``(table, is_default)`` for one tenant and axis."""
    with Session(engine) as session:
        table = _read_table(session, tenant_id, axis)
    if not table:
        return dict(DEFAULT_RANK_THRESHOLDS), True
    return table, False


def replace_threshold_table(
    engine: Engine,
    tenant_id: str,
    axis: str,
    table: Mapping[int, float],
    *,
    actor_id: str,
    reason: str | None = None,
) -> dict[int, float]:
    """Validate *table* and make it the tenant's table for *axis*.

    Raises :class:`~ardor.errors.ThresholdConfigError` before touching
    the database if the table is invalid.
    """
    new_table = {int(level): float(minimum) for level, minimum in table.items()}
    validate_thresholds(new_table, tenant_id=tenant_id, axis=axis)

    with Session(engine) as session:
        before = _read_table(session, tenant_id, axis)
        session.execute(
            delete(RankThreshold).where(
                RankThreshold.tenant_id == tenant_id,
                RankThreshold.axis == axis,
            )
        )
        for level, minimum in sorted(new_table.items()):
            session.add(RankThreshold(
                tenant_id=tenant_id, axis=axis, rank_level=level, min_score=minimum,
            ))
        session.flush()
        session.add(AdminLog(
            actor_id=str(actor_id),
            action_type=AdminActionType.UPDATE.value,
            target_table="rank_thresholds",
            target_id=f"{tenant_id}:{axis}",
            before_snapshot=_as_json(before) if before else None,
            after_snapshot=_as_json(new_table),
            reason=reason,
        ))
        notify_before_commit(session, "rank_thresholds")
        session.commit()

    logger.info(
        "Threshold table for %s/%s replaced by %s (%d levels)",
        tenant_id, axis, actor_id, len(new_table),
    )
    return new_table
