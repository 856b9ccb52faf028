"""
ardor.services.evaluation_service — One Subject, Full Pipeline
================================================================

Aggregator → Axis Scorers → Rank Resolver → Transition Detector →
Reward Distributor, for a single (tenant, user) subject.

:func:`compute_snapshot` is the pure part.  :class:`SubjectEvaluator`
wraps it with I/O, timeouts, and the error taxonomy:

* data-source errors and timeouts keep the last-known snapshot with
  ``error`` set; the next refresh retries
* an invalid threshold table is logged at CRITICAL and surfaced as
  ``configuration error: …``; nothing is detected or distributed for
  that tenant
* issuance errors never reach here; they are recorded on the
  distribution row
* a failure to record the distribution itself restores the previous
  rank state, so the next refresh detects the same rank-up again
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from ardor.constants import DEFAULT_RANK_ICON, default_rank_label, economic_cap
from ardor.database.engine import run_db
from ardor.database.models import ScoreAxis
from ardor.engine.activity import AggregatedCounters, collect_counters
from ardor.engine.scoring import CompositeScore, EconomicScore, ResonanceScore, score_all
from ardor.engine.thresholds import RankResolution, resolve_rank, validate_thresholds
from ardor.engine.transitions import RankTransitionDetector, RankUpEvent, Subject
from ardor.errors import DataSourceError, ThresholdConfigError

if TYPE_CHECKING:
    from ardor.engine.cache import ConfigCache
    from ardor.services.distribution_service import DistributionOutcome, RewardDistributor

logger = logging.getLogger(__name__)

CONFIG_ERROR_PREFIX = "configuration error: "


# ---------------------------------------------------------------------------
# Read model
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ScoreSnapshot:
    """What presentation layers see for one subject."""

    subject: Subject
    economic: EconomicScore | None = None
    resonance: ResonanceScore | None = None
    composite: CompositeScore | None = None
    rank: RankResolution | None = None
    counters: AggregatedCounters | None = None
    loading: bool = False
    error: str | None = None
    evaluated_at: datetime | None = None

    @classmethod
    def pending(cls, subject: Subject) -> ScoreSnapshot:
        return cls(subject=subject, loading=True)

    @property
    def is_config_error(self) -> bool:
        return bool(self.error and self.error.startswith(CONFIG_ERROR_PREFIX))

    def with_error(self, error: str) -> ScoreSnapshot:
        return replace(self, loading=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.subject.tenant_id,
            "user_id": self.subject.user_id,
            "economic": self.economic.to_dict() if self.economic else None,
            "resonance": self.resonance.to_dict() if self.resonance else None,
            "composite": self.composite.to_dict() if self.composite else None,
            "rank": self.rank.to_dict() if self.rank else None,
            "loading": self.loading,
            "error": self.error,
            "evaluated_at": self.evaluated_at.isoformat() if self.evaluated_at else None,
        }


@dataclass(frozen=True, slots=True)
class RankUpNotification:
    """Payload for presentation-layer rank-up triggers."""

    level: int
    label: str
    icon: str
    badge_reference_id: str | None = None
    artifact_reference_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "label": self.label,
            "icon": self.icon,
            "badge_reference_id": self.badge_reference_id,
            "artifact_reference_id": self.artifact_reference_id,
        }


@dataclass(frozen=True, slots=True)
class EvaluationResult:
    snapshot: ScoreSnapshot
    event: RankUpEvent | None = None
    rank_up: RankUpNotification | None = None
    distributions: tuple[DistributionOutcome, ...] = field(default=())


# ---------------------------------------------------------------------------
# Pure pipeline
# ---------------------------------------------------------------------------
def compute_snapshot(
    subject: Subject,
    counters: AggregatedCounters,
    thresholds: dict[int, float],
    *,
    cap: float,
    now: datetime | None = None,
) -> ScoreSnapshot:
    """Score *counters* and resolve the composite rank.

    Raises :class:`ThresholdConfigError` for an invalid *thresholds* table.
    """
    validate_thresholds(thresholds, tenant_id=subject.tenant_id, axis=ScoreAxis.COMPOSITE)
    scores = score_all(counters, economic_cap=cap)
    return ScoreSnapshot(
        subject=subject,
        economic=scores.economic,
        resonance=scores.resonance,
        composite=scores.composite,
        rank=resolve_rank(scores.composite.value, thresholds),
        counters=counters,
        evaluated_at=now or datetime.now(UTC),
    )


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------
class SubjectEvaluator:
    """Runs the pipeline for one subject at a time.

    Safe to share between subjects; per-subject serialization is the
    caller's job (see :class:`~ardor.services.refresh_coordinator.RefreshCoordinator`).
    """

    def __init__(
        self,
        source: Any,
        cache: ConfigCache,
        detector: RankTransitionDetector,
        distributor: RewardDistributor | None = None,
        *,
        evaluation_timeout: float = 10.0,
    ) -> None:
        self._source = source
        self._cache = cache
        self._detector = detector
        self._distributor = distributor
        self._timeout = evaluation_timeout
        self._last: dict[Subject, ScoreSnapshot] = {}

    def last_snapshot(self, subject: Subject) -> ScoreSnapshot | None:
        return self._last.get(subject)

    async def peek(self, subject: Subject) -> ScoreSnapshot:
        """Score without touching transition state or issuing rewards."""
        snapshot, _ = await self._score(subject)
        return snapshot

    async def evaluate(self, subject: Subject) -> EvaluationResult:
        snapshot, thresholds = await self._score(subject)
        if thresholds is None:
            return EvaluationResult(snapshot=snapshot)

        try:
            event = await run_db(
                self._detector.observe,
                subject,
                snapshot.rank.level,
                score=snapshot.composite.value,
                thresholds=thresholds,
            )
        except SQLAlchemyError as exc:
            logger.exception("Transition state unavailable for %s", subject)
            snapshot = snapshot.with_error(f"transition state unavailable: {exc}")
            self._last[subject] = snapshot
            return EvaluationResult(snapshot=snapshot)

        if event is None:
            return EvaluationResult(snapshot=snapshot)

        outcomes: tuple[DistributionOutcome, ...] = ()
        if self._distributor is not None:
            try:
                outcomes = tuple(await self._distributor.distribute_crossed(
                    event, artifact_for=lambda level: self._artifact_for(subject, level),
                ))
            except Exception as exc:
                logger.exception("Reward distribution failed for %s", subject)
                snapshot = snapshot.with_error(f"reward distribution failed: {exc}")
                self._last[subject] = snapshot
                try:
                    await run_db(self._detector.restore, event)
                except Exception:
                    logger.exception(
                        "Could not restore rank state for %s; rank-up to %d needs "
                        "operator attention", subject, event.new_level,
                    )
                return EvaluationResult(snapshot=snapshot)

        return EvaluationResult(
            snapshot=snapshot,
            event=event,
            rank_up=self._notification(subject, event, outcomes),
            distributions=outcomes,
        )

    async def _score(
        self, subject: Subject,
    ) -> tuple[ScoreSnapshot, dict[int, float] | None]:
        """Return ``(snapshot, thresholds)``; thresholds is None on any
        recovered error."""
        previous = self._last.get(subject) or ScoreSnapshot(subject=subject)

        try:
            counters = await asyncio.wait_for(
                run_db(collect_counters, self._source, subject.tenant_id, subject.user_id),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.warning("Activity source timed out for %s after %.1fs", subject, self._timeout)
            snapshot = previous.with_error(f"activity source timed out after {self._timeout}s")
            self._last[subject] = snapshot
            return snapshot, None
        except DataSourceError as exc:
            logger.warning("Activity source failed for %s: %s", subject, exc)
            snapshot = previous.with_error(str(exc))
            self._last[subject] = snapshot
            return snapshot, None

        thresholds = self._cache.get_thresholds(subject.tenant_id, ScoreAxis.COMPOSITE)
        try:
            snapshot = compute_snapshot(
                subject, counters, thresholds, cap=economic_cap(self._cache),
            )
        except ThresholdConfigError as exc:
            logger.critical(
                "Invalid threshold table for tenant %s; rank evaluation halted: %s",
                subject.tenant_id, exc,
            )
            snapshot = previous.with_error(f"{CONFIG_ERROR_PREFIX}{exc}")
            self._last[subject] = snapshot
            return snapshot, None

        self._last[subject] = snapshot
        return snapshot, thresholds

    def _artifact_for(self, subject: Subject, level: int) -> str | None:
        reward = self._cache.get_rank_reward(subject.tenant_id, level)
        return reward.artifact_id if reward else None

    def _notification(
        self,
        subject: Subject,
        event: RankUpEvent,
        outcomes: tuple[DistributionOutcome, ...],
    ) -> RankUpNotification:
        reward = self._cache.get_rank_reward(subject.tenant_id, event.new_level)
        final = next((o for o in outcomes if o.rank_level == event.new_level), None)
        return RankUpNotification(
            level=event.new_level,
            label=(reward.label if reward and reward.label else default_rank_label(event.new_level)),
            icon=(reward.icon if reward and reward.icon else DEFAULT_RANK_ICON),
            badge_reference_id=final.badge_reference_id if final else None,
            artifact_reference_id=final.artifact_reference_id if final else None,
        )


def build_evaluator(engine, cache: ConfigCache, cfg) -> SubjectEvaluator:
    """Wire the SQL-backed pipeline from an :class:`~ardor.config.ArdorConfig`."""
    from ardor.services.activity_source import SqlActivitySource
    from ardor.services.distribution_service import RewardDistributor
    from ardor.services.issuance import HttpArtifactIssuer, HttpBadgeIssuer
    from ardor.services.transition_store import SqlTransitionStore

    distributor = RewardDistributor(
        engine,
        HttpBadgeIssuer(cfg.badge_service_url, timeout=cfg.issuance_timeout_seconds),
        HttpArtifactIssuer(cfg.artifact_service_url, timeout=cfg.issuance_timeout_seconds),
        issuance_timeout=cfg.issuance_timeout_seconds,
    )
    return SubjectEvaluator(
        SqlActivitySource(engine),
        cache,
        RankTransitionDetector(SqlTransitionStore(engine)),
        distributor,
        evaluation_timeout=cfg.evaluation_timeout_seconds,
    )
