"""
ardor.engine.tiers — Shared tiered lookup
==========================================

One algorithm, three tables (economic, resonance, composite).  Each axis
is a separate pure pipeline that only shares this lookup, so the
resonance axis never sees a monetary figure.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

__all__ = ["Tier", "TierResolution", "resolve_tier", "validate_tiers"]


@dataclass(frozen=True, slots=True)
class Tier:
    """One rank band: ``lower <= score < upper``."""

    name: str
    lower: float
    upper: float
    color: str


@dataclass(frozen=True, slots=True)
class TierResolution:
    """Result of a tiered lookup."""

    name: str
    color: str
    progress: float  # 0–100 toward the next tier
    level: int       # 1-based ordinal


def validate_tiers(tiers: Sequence[Tier]) -> None:
    """Raise ``ValueError`` unless *tiers* is non-empty and ascending."""
    if not tiers:
        raise ValueError("Tier table must contain at least one tier")
    for prev, cur in zip(tiers, tiers[1:]):
        if cur.lower < prev.lower:
            raise ValueError(
                f"Tier {cur.name!r} starts below {prev.name!r} ({cur.lower} < {prev.lower})"
            )
    for tier in tiers[:-1]:
        if not tier.upper > tier.lower:
            raise ValueError(f"Tier {tier.name!r} has an empty range")


def resolve_tier(score: float, tiers: Sequence[Tier]) -> TierResolution:
    """Resolve *score* against ascending *tiers*.

    The first non-final tier whose upper bound strictly exceeds the score
    is current.  The final tier's upper bound is treated as unbounded, so
    a score that passes every other tier lands there with progress 100.
    """
    if not tiers:
        raise ValueError("Tier table must contain at least one tier")

    for index, tier in enumerate(tiers[:-1]):
        if score < tier.upper:
            span = tier.upper - tier.lower
            progress = (score - tier.lower) / span * 100 if span > 0 else 0.0
            return TierResolution(
                name=tier.name,
                color=tier.color,
                progress=_clamp(progress),
                level=index + 1,
            )

    final = tiers[-1]
    return TierResolution(
        name=final.name,
        color=final.color,
        progress=100.0,
        level=len(tiers),
    )


def _clamp(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(100.0, value))
