"""
ardor.services.activity_source — Settled Activity Reads
========================================================

The engine's only view of the ledger.  Rows with any status other than
``settled`` are never returned.  Identities are stored lowercased, so
lookups lowercase their arguments.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ardor.database.models import ActivityRecord
from ardor.engine.activity import ActivityEvent
from ardor.engine.transitions import Subject
from ardor.errors import DataSourceError

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

SETTLED = "settled"


class SqlActivitySource:
    """Reads ``activity_records`` through a SQLAlchemy engine."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def list_activity(
        self,
        tenant_id: str,
        user_id: str,
        since: datetime | None = None,
    ) -> list[ActivityEvent]:
        """Settled transfers sent by *user_id* within *tenant_id*.

        Order is unspecified.  Database failures surface as
        :class:`DataSourceError`.
        """
        stmt = select(ActivityRecord).where(
            ActivityRecord.tenant_id == tenant_id.lower(),
            ActivityRecord.sender_id == user_id.lower(),
            ActivityRecord.status == SETTLED,
        )
        if since is not None:
            stmt = stmt.where(ActivityRecord.created_at >= since)

        try:
            with Session(self._engine) as session:
                rows = session.scalars(stmt).all()
                return [ActivityEvent.from_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise DataSourceError(
                f"Failed to list activity for {tenant_id}/{user_id}: {exc}"
            ) from exc

    def list_recent_subjects(self, within: timedelta) -> list[Subject]:
        """Distinct (tenant, sender) pairs with settled activity in *within*."""
        cutoff = datetime.now(UTC) - within
        stmt = (
            select(ActivityRecord.tenant_id, ActivityRecord.sender_id)
            .where(
                ActivityRecord.status == SETTLED,
                ActivityRecord.created_at >= cutoff,
            )
            .distinct()
        )
        try:
            with Session(self._engine) as session:
                rows = session.execute(stmt).all()
        except SQLAlchemyError as exc:
            raise DataSourceError(f"Failed to list recent subjects: {exc}") from exc
        return [Subject.of(row.tenant_id, row.sender_id) for row in rows]
