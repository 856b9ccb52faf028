"""
ardor.services.distribution_service — Claim-then-Act Reward Issuance
=====================================================================

At most one :class:`RewardDistribution` row exists per
(user, tenant, rank level).  The row is claimed as ``pending`` and
committed *before* any external call, then finalized once:

1. existing row for the key → no-op success
2. insert ``pending`` inside a SAVEPOINT; ``IntegrityError`` means another
   evaluator holds the claim → return its row
3. mint the rank badge (failure recorded, does not stop step 4)
4. distribute the bonus artifact when one is configured
5. ``completed`` if at least one leg succeeded, else ``failed``

A crash between 2 and 5 leaves a ``pending`` row, which under-issues
rather than double-issues; such rows surface in the operator view once
they are older than ``distribution.stale_pending_minutes``.  Terminal
rows are never retried automatically.  :meth:`RewardDistributor.reissue`
is the operator path for failed legs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ardor.database.engine import run_db
from ardor.database.models import (
    AdminActionType,
    AdminLog,
    DistributionStatus,
    RewardDistribution,
)
from ardor.errors import DuplicateMintError, IssuanceError

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from ardor.engine.transitions import RankUpEvent
    from ardor.services.issuance import ArtifactIssuer, BadgeIssuer

logger = logging.getLogger(__name__)

DEFAULT_STALE_PENDING_MINUTES = 30


# ---------------------------------------------------------------------------
# Record store
# ---------------------------------------------------------------------------
def find_record(
    session: Session, user_id: str, tenant_id: str, rank_level: int,
) -> RewardDistribution | None:
    return session.scalar(
        select(RewardDistribution).where(
            RewardDistribution.user_id == user_id,
            RewardDistribution.tenant_id == tenant_id,
            RewardDistribution.rank_level == rank_level,
        )
    )


def insert_record(
    session: Session, record: RewardDistribution,
) -> tuple[RewardDistribution, bool]:
    """Insert *record* unless its key already exists.

    Returns ``(row, created)``.  On a key collision the SAVEPOINT is
    rolled back and the existing row is returned with ``created=False``.
    """
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(record)
            session.flush()
    except IntegrityError:
        existing = find_record(session, record.user_id, record.tenant_id, record.rank_level)
        if existing is None:
            raise
        return existing, False
    return record, True


def _partial_clause():
    return and_(
        RewardDistribution.status == DistributionStatus.COMPLETED.value,
        or_(
            RewardDistribution.badge_minted.is_(False),
            and_(
                RewardDistribution.artifact_id.isnot(None),
                RewardDistribution.artifact_distributed.is_(False),
            ),
        ),
    )


def _reissuable_clause(stale_cutoff: datetime):
    return or_(
        RewardDistribution.status == DistributionStatus.FAILED.value,
        _partial_clause(),
        and_(
            RewardDistribution.status == DistributionStatus.PENDING.value,
            RewardDistribution.claimed_at < stale_cutoff,
        ),
    )


def _claim(
    engine: Engine,
    *,
    tenant_id: str,
    user_id: str,
    rank_level: int,
    score: float,
    threshold: float | None,
    artifact_id: str | None,
) -> tuple[RewardDistribution, bool]:
    with Session(engine, expire_on_commit=False) as session:
        existing = find_record(session, user_id, tenant_id, rank_level)
        if existing is not None:
            return existing, False

        record, created = insert_record(session, RewardDistribution(
            tenant_id=tenant_id,
            user_id=user_id,
            rank_level=rank_level,
            artifact_id=artifact_id,
            status=DistributionStatus.PENDING.value,
            score_value=score,
            threshold_value=threshold,
            claimed_at=datetime.now(UTC),
        ))
        session.commit()
        return record, created


def _finalize(
    engine: Engine,
    record_id: int,
    *,
    badge_ref: str | None,
    artifact_ref: str | None,
    failures: list[str],
) -> RewardDistribution:
    with Session(engine, expire_on_commit=False) as session:
        record = session.get(RewardDistribution, record_id)
        if badge_ref is not None:
            record.badge_minted = True
            record.badge_reference_id = badge_ref
        if artifact_ref is not None:
            record.artifact_distributed = True
            record.artifact_reference_id = artifact_ref

        succeeded = record.badge_minted or record.artifact_distributed
        record.status = (
            DistributionStatus.COMPLETED.value if succeeded else DistributionStatus.FAILED.value
        )
        record.failure_reason = "; ".join(failures) or None
        record.completed_at = datetime.now(UTC)
        session.commit()
        return record


def _claim_reissue(
    engine: Engine,
    record_id: int,
    *,
    stale_cutoff: datetime,
    actor_id: str,
    reason: str | None,
) -> RewardDistribution:
    """Move an eligible row back to ``pending`` and audit the action.

    The conditional UPDATE is the claim: of two concurrent re-issues only
    one sees a matching row.
    """
    with Session(engine, expire_on_commit=False) as session:
        record = session.get(RewardDistribution, record_id)
        if record is None:
            raise LookupError(f"Distribution {record_id} not found")
        before = distribution_to_dict(record)

        result = session.execute(
            update(RewardDistribution)
            .where(RewardDistribution.id == record_id, _reissuable_clause(stale_cutoff))
            .values(
                status=DistributionStatus.PENDING.value,
                claimed_at=datetime.now(UTC),
                completed_at=None,
                reissue_count=RewardDistribution.reissue_count + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            raise ValueError(
                f"Distribution {record_id} is not eligible for re-issuance "
                f"(status={before['status']})"
            )

        session.add(AdminLog(
            actor_id=str(actor_id),
            action_type=AdminActionType.REISSUE.value,
            target_table="reward_distributions",
            target_id=str(record_id),
            before_snapshot=before,
            after_snapshot=None,
            reason=reason,
        ))
        session.commit()
        session.refresh(record)
        return record


# ---------------------------------------------------------------------------
# Distributor
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class DistributionOutcome:
    """Result of one ``distribute`` call.

    ``created`` is False when the key was already claimed, in which case
    ``record`` is the existing row, unchanged.
    """

    record: RewardDistribution
    created: bool

    @property
    def rank_level(self) -> int:
        return self.record.rank_level

    @property
    def status(self) -> str:
        return self.record.status

    @property
    def badge_reference_id(self) -> str | None:
        return self.record.badge_reference_id

    @property
    def artifact_reference_id(self) -> str | None:
        return self.record.artifact_reference_id


class RewardDistributor:
    """At-most-once rank reward issuance over the distribution table."""

    def __init__(
        self,
        engine: Engine,
        badge_issuer: BadgeIssuer,
        artifact_issuer: ArtifactIssuer | None = None,
        *,
        issuance_timeout: float = 15.0,
    ) -> None:
        self._engine = engine
        self._badge_issuer = badge_issuer
        self._artifact_issuer = artifact_issuer
        self._issuance_timeout = issuance_timeout

    async def distribute(
        self,
        tenant_id: str,
        user_id: str,
        rank_level: int,
        score: float,
        *,
        threshold: float | None = None,
        artifact_id: str | None = None,
    ) -> DistributionOutcome:
        record, created = await run_db(
            _claim,
            self._engine,
            tenant_id=tenant_id,
            user_id=user_id,
            rank_level=rank_level,
            score=score,
            threshold=threshold,
            artifact_id=artifact_id,
        )
        if not created:
            logger.debug(
                "Distribution for %s/%s level %d already claimed (id=%s, status=%s)",
                tenant_id, user_id, rank_level, record.id, record.status,
            )
            return DistributionOutcome(record=record, created=False)

        record = await self._issue(record, mint_badge=True, send_artifact=artifact_id is not None)
        return DistributionOutcome(record=record, created=True)

    async def distribute_crossed(
        self,
        event: RankUpEvent,
        *,
        artifact_for: Callable[[int], str | None] | None = None,
    ) -> list[DistributionOutcome]:
        """One idempotent ``distribute`` per crossed level, lowest first."""
        outcomes = []
        for level in event.crossed_levels:
            outcomes.append(await self.distribute(
                event.subject.tenant_id,
                event.subject.user_id,
                level,
                event.score,
                threshold=event.threshold_for(level),
                artifact_id=artifact_for(level) if artifact_for else None,
            ))
        return outcomes

    async def reissue(
        self,
        record_id: int,
        *,
        actor_id: str,
        reason: str | None = None,
        stale_after: timedelta = timedelta(minutes=DEFAULT_STALE_PENDING_MINUTES),
    ) -> DistributionOutcome:
        """Operator re-issuance of the legs that have not succeeded.

        Accepts ``failed`` rows, partial ``completed`` rows, and ``pending``
        rows claimed longer ago than *stale_after*.  Raises
        ``LookupError`` for an unknown id and ``ValueError`` when the row
        is not eligible.
        """
        cutoff = datetime.now(UTC) - stale_after
        record = await run_db(
            _claim_reissue,
            self._engine,
            record_id,
            stale_cutoff=cutoff,
            actor_id=actor_id,
            reason=reason,
        )
        logger.info(
            "Re-issuing distribution %d for %s/%s level %d (actor=%s)",
            record.id, record.tenant_id, record.user_id, record.rank_level, actor_id,
        )
        record = await self._issue(
            record,
            mint_badge=not record.badge_minted,
            send_artifact=record.artifact_id is not None and not record.artifact_distributed,
        )
        return DistributionOutcome(record=record, created=False)

    # -------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------
    async def _issue(
        self, record: RewardDistribution, *, mint_badge: bool, send_artifact: bool,
    ) -> RewardDistribution:
        failures: list[str] = []
        badge_ref: str | None = None
        artifact_ref: str | None = None

        if mint_badge:
            badge_ref, error = await self._leg(
                "badge", self._badge_issuer.mint_badge, record.user_id, record.rank_level,
            )
            if error:
                failures.append(error)

        if send_artifact:
            if self._artifact_issuer is None:
                failures.append("artifact: no artifact issuer configured")
            else:
                artifact_ref, error = await self._leg(
                    "artifact",
                    self._artifact_issuer.distribute_artifact,
                    record.user_id,
                    record.artifact_id,
                )
                if error:
                    failures.append(error)

        record = await run_db(
            _finalize,
            self._engine,
            record.id,
            badge_ref=badge_ref,
            artifact_ref=artifact_ref,
            failures=failures,
        )
        if failures:
            logger.warning(
                "Distribution %d for %s/%s level %d finished %s: %s",
                record.id, record.tenant_id, record.user_id, record.rank_level,
                record.status, record.failure_reason,
            )
        else:
            logger.info(
                "Distribution %d for %s/%s level %d completed",
                record.id, record.tenant_id, record.user_id, record.rank_level,
            )
        return record

    async def _leg(
        self, name: str, call: Callable[..., Awaitable[str]], *args: Any,
    ) -> tuple[str | None, str | None]:
        """Run one issuance call; return ``(reference_id, error)``."""
        try:
            ref = await asyncio.wait_for(call(*args), timeout=self._issuance_timeout)
        except TimeoutError:
            return None, f"{name}: timed out after {self._issuance_timeout}s"
        except DuplicateMintError as exc:
            return None, f"{name}: duplicate reported by service ({exc})"
        except IssuanceError as exc:
            return None, f"{name}: {exc}"
        except Exception as exc:
            logger.exception("Unexpected %s issuance error", name)
            return None, f"{name}: unexpected error ({exc})"
        return ref, None


# ---------------------------------------------------------------------------
# Operator read model
# ---------------------------------------------------------------------------
def distribution_to_dict(record: RewardDistribution) -> dict[str, Any]:
    def _iso(ts: datetime | None) -> str | None:
        return ts.isoformat() if ts is not None else None

    return {
        "id": record.id,
        "tenant_id": record.tenant_id,
        "user_id": record.user_id,
        "rank_level": record.rank_level,
        "status": record.status,
        "partial": record.is_partial,
        "badge_minted": bool(record.badge_minted),
        "badge_reference_id": record.badge_reference_id,
        "artifact_id": record.artifact_id,
        "artifact_distributed": bool(record.artifact_distributed),
        "artifact_reference_id": record.artifact_reference_id,
        "score_value": record.score_value,
        "threshold_value": record.threshold_value,
        "failure_reason": record.failure_reason,
        "reissue_count": record.reissue_count,
        "created_at": _iso(record.created_at),
        "claimed_at": _iso(record.claimed_at),
        "completed_at": _iso(record.completed_at),
    }


def get_distribution_history(
    engine: Engine, tenant_id: str | None = None, limit: int = 50,
) -> list[dict[str, Any]]:
    """Most recent distributions first, optionally for one tenant."""
    stmt = select(RewardDistribution)
    if tenant_id is not None:
        stmt = stmt.where(RewardDistribution.tenant_id == tenant_id)
    stmt = stmt.order_by(
        RewardDistribution.created_at.desc(), RewardDistribution.id.desc(),
    ).limit(limit)
    with Session(engine) as session:
        return [distribution_to_dict(r) for r in session.scalars(stmt).all()]


def get_distribution_stats(engine: Engine, tenant_id: str | None = None) -> dict[str, int]:
    """Counts for the operator dashboard."""
    def _count(*conditions) -> int:
        stmt = select(func.count()).select_from(RewardDistribution)
        if tenant_id is not None:
            stmt = stmt.where(RewardDistribution.tenant_id == tenant_id)
        if conditions:
            stmt = stmt.where(*conditions)
        return int(session.scalar(stmt) or 0)

    with Session(engine) as session:
        return {
            "total": _count(),
            "completed": _count(
                RewardDistribution.status == DistributionStatus.COMPLETED.value,
            ),
            "badges_minted": _count(RewardDistribution.badge_minted.is_(True)),
            "artifacts_distributed": _count(
                RewardDistribution.artifact_distributed.is_(True),
            ),
            "failed": _count(RewardDistribution.status == DistributionStatus.FAILED.value),
            "pending": _count(RewardDistribution.status == DistributionStatus.PENDING.value),
            "partial": _count(_partial_clause()),
        }


def list_attention_records(
    engine: Engine,
    *,
    stale_after: timedelta = timedelta(minutes=DEFAULT_STALE_PENDING_MINUTES),
    tenant_id: str | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    """Failed, partial, and stale pending rows, oldest first."""
    cutoff = datetime.now(UTC) - stale_after
    stmt = select(RewardDistribution).where(_reissuable_clause(cutoff))
    if tenant_id is not None:
        stmt = stmt.where(RewardDistribution.tenant_id == tenant_id)
    stmt = stmt.order_by(RewardDistribution.claimed_at.asc(), RewardDistribution.id.asc())
    with Session(engine) as session:
        return [distribution_to_dict(r) for r in session.scalars(stmt.limit(limit)).all()]
