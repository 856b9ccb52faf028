"""
ardor.engine.scoring — Axis Scorers
====================================

Pure functions that turn :class:`AggregatedCounters` into three scores:

* **economic** — the economic-bearing total, no transform.
* **resonance** — an engagement score built only from support count,
  streak, and message quality.  It never reads an amount.
* **composite** — both axes normalized to 0–1000 and blended 50/50.

Each score is resolved against its own tier table with the shared
:func:`~ardor.engine.tiers.resolve_tier` lookup.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from ardor.constants import (
    COMPOSITE_ECONOMIC_WEIGHT,
    COMPOSITE_NORMALIZED_CAP,
    COMPOSITE_RESONANCE_WEIGHT,
    COMPOSITE_TIERS,
    DEFAULT_ECONOMIC_CAP,
    ECONOMIC_TIERS,
    RESONANCE_SCORE_CAP,
    RESONANCE_TIERS,
    STREAK_DAY_WEIGHT,
    SUPPORT_WEIGHT,
)
from ardor.engine.activity import AggregatedCounters
from ardor.engine.quality import _round_half_up, calculate_streak
from ardor.engine.tiers import Tier, TierResolution, resolve_tier

__all__ = [
    "AxisScore",
    "CompositeScore",
    "EconomicScore",
    "ResonanceScore",
    "ScoreSet",
    "engagement_score",
    "score_all",
    "score_composite",
    "score_economic",
    "score_resonance",
]


# ---------------------------------------------------------------------------
# Score types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AxisScore:
    """A value plus its tier resolution."""

    value: float
    rank: str
    color: str
    progress: float
    level: int

    @classmethod
    def _resolved(cls, value: float, tier: TierResolution, **extra: Any):
        return cls(
            value=value,
            rank=tier.name,
            color=tier.color,
            progress=tier.progress,
            level=tier.level,
            **extra,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "value": self.value,
            "rank": self.rank,
            "color": self.color,
            "progress": round(self.progress, 2),
            "level": self.level,
        }


@dataclass(frozen=True, slots=True)
class EconomicScore(AxisScore):
    tip_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {**AxisScore.to_dict(self), "tip_count": self.tip_count}


@dataclass(frozen=True, slots=True)
class ResonanceScore(AxisScore):
    support_count: int = 0
    streak_days: int = 0
    message_quality: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            **AxisScore.to_dict(self),
            "support_count": self.support_count,
            "streak_days": self.streak_days,
            "message_quality": self.message_quality,
        }


@dataclass(frozen=True, slots=True)
class CompositeScore(AxisScore):
    normalized_economic: float = 0.0
    normalized_resonance: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            **AxisScore.to_dict(self),
            "normalized_economic": round(self.normalized_economic, 2),
            "normalized_resonance": round(self.normalized_resonance, 2),
        }


@dataclass(frozen=True, slots=True)
class ScoreSet:
    """All three scores for one evaluation."""

    economic: EconomicScore
    resonance: ResonanceScore
    composite: CompositeScore


# ---------------------------------------------------------------------------
# Economic axis
# ---------------------------------------------------------------------------
def score_economic(
    counters: AggregatedCounters,
    tiers: Sequence[Tier] = ECONOMIC_TIERS,
) -> EconomicScore:
    value = counters.economic_total
    return EconomicScore._resolved(
        value, resolve_tier(value, tiers), tip_count=counters.economic_count,
    )


# ---------------------------------------------------------------------------
# Resonance axis
# ---------------------------------------------------------------------------
def engagement_score(support_count: int, streak_days: int, message_quality: int) -> int:
    """``support*2 + streak*10 + quality``, capped at 1000."""
    raw = (
        support_count * SUPPORT_WEIGHT
        + streak_days * STREAK_DAY_WEIGHT
        + message_quality
    )
    return min(RESONANCE_SCORE_CAP, raw)


def score_resonance(
    counters: AggregatedCounters,
    tiers: Sequence[Tier] = RESONANCE_TIERS,
) -> ResonanceScore:
    streak = calculate_streak(counters.active_dates)
    value = engagement_score(counters.resonance_count, streak, counters.message_quality)
    return ResonanceScore._resolved(
        value,
        resolve_tier(value, tiers),
        support_count=counters.resonance_count,
        streak_days=streak,
        message_quality=counters.message_quality,
    )


# ---------------------------------------------------------------------------
# Composite
# ---------------------------------------------------------------------------
def score_composite(
    economic_value: float,
    engagement: float,
    *,
    economic_cap: float = DEFAULT_ECONOMIC_CAP,
    tiers: Sequence[Tier] = COMPOSITE_TIERS,
) -> CompositeScore:
    """Blend both axes on a common 0–1000 scale.

    Example: economic 3500 with cap 7000 → 500; engagement 600 → 600;
    composite ``round(500*0.5 + 600*0.5) = 550``.
    """
    if economic_cap <= 0:
        raise ValueError(f"economic_cap must be > 0 (got {economic_cap})")

    norm_economic = min(
        COMPOSITE_NORMALIZED_CAP,
        economic_value / economic_cap * COMPOSITE_NORMALIZED_CAP,
    )
    norm_resonance = min(COMPOSITE_NORMALIZED_CAP, engagement)
    value = _round_half_up(
        norm_economic * COMPOSITE_ECONOMIC_WEIGHT
        + norm_resonance * COMPOSITE_RESONANCE_WEIGHT
    )
    return CompositeScore._resolved(
        value,
        resolve_tier(value, tiers),
        normalized_economic=norm_economic,
        normalized_resonance=norm_resonance,
    )


def score_all(
    counters: AggregatedCounters,
    *,
    economic_cap: float = DEFAULT_ECONOMIC_CAP,
) -> ScoreSet:
    """Run all three scorers over one set of counters."""
    economic = score_economic(counters)
    resonance = score_resonance(counters)
    composite = score_composite(
        economic.value, resonance.value, economic_cap=economic_cap,
    )
    return ScoreSet(economic=economic, resonance=resonance, composite=composite)
