"""
ardor.engine.thresholds — Rank Resolver
========================================

Maps a score onto a tenant's rank threshold table (level → minimum
score).  Levels may be sparse; the table is ordered by threshold.  A
score below the lowest threshold resolves to level 0 (unranked).

Threshold tables are operator configuration, so a table that is not
strictly increasing is rejected with :class:`ThresholdConfigError`
rather than silently replaced by the default.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from ardor.errors import ThresholdConfigError

__all__ = ["RankResolution", "levels_crossed", "resolve_rank", "validate_thresholds"]


@dataclass(frozen=True, slots=True)
class RankResolution:
    """Where a score sits in a threshold table."""

    level: int
    threshold: float                 # minimum of the current level (0 when unranked)
    next_level: int | None
    next_threshold: float | None
    remaining: float                 # score still needed for next_level
    progress: float                  # 0–100 toward next_level

    @property
    def is_max(self) -> bool:
        return self.next_level is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "threshold": self.threshold,
            "next_level": self.next_level,
            "next_threshold": self.next_threshold,
            "remaining": self.remaining,
            "progress": round(self.progress, 2),
        }


def validate_thresholds(
    thresholds: Mapping[int, float],
    *,
    tenant_id: str | None = None,
    axis: str | None = None,
) -> None:
    """Raise :class:`ThresholdConfigError` unless *thresholds* is usable.

    A usable table is non-empty, has positive integer levels and finite
    non-negative minimums, and is strictly increasing when ordered by
    level.
    """
    where = _describe(tenant_id, axis)
    if not thresholds:
        raise ThresholdConfigError(
            f"Threshold table{where} is empty", tenant_id=tenant_id, axis=axis,
        )

    for level, minimum in thresholds.items():
        if not isinstance(level, int) or isinstance(level, bool) or level <= 0:
            raise ThresholdConfigError(
                f"Rank level {level!r}{where} must be a positive integer",
                tenant_id=tenant_id, axis=axis,
            )
        if minimum is None or not math.isfinite(minimum) or minimum < 0:
            raise ThresholdConfigError(
                f"Threshold for level {level}{where} must be a finite non-negative number "
                f"(got {minimum!r})",
                tenant_id=tenant_id, axis=axis,
            )

    ordered = sorted(thresholds.items())
    for (prev_level, prev_min), (level, minimum) in zip(ordered, ordered[1:]):
        if minimum <= prev_min:
            raise ThresholdConfigError(
                f"Threshold table{where} is not strictly increasing: "
                f"level {level} ({minimum}) <= level {prev_level} ({prev_min})",
                tenant_id=tenant_id, axis=axis,
            )


def resolve_rank(score: float, thresholds: Mapping[int, float]) -> RankResolution:
    """Resolve *score* to a rank level.

    The current level is the highest one whose threshold is ``<= score``.
    At or above every threshold, ``next_level`` and ``next_threshold`` are
    None, ``remaining`` is 0 and ``progress`` is 100.
    """
    ordered = sorted(thresholds.items(), key=lambda item: item[1])
    if not ordered:
        raise ThresholdConfigError("Threshold table is empty")

    level = 0
    floor = 0.0
    next_level: int | None = None
    next_threshold: float | None = None

    for candidate, minimum in ordered:
        if score >= minimum:
            level = candidate
            floor = float(minimum)
        else:
            next_level = candidate
            next_threshold = float(minimum)
            break

    if next_threshold is None:
        return RankResolution(
            level=level,
            threshold=floor,
            next_level=None,
            next_threshold=None,
            remaining=0.0,
            progress=100.0,
        )

    span = next_threshold - floor
    progress = (score - floor) / span * 100 if span > 0 else 0.0
    return RankResolution(
        level=level,
        threshold=floor,
        next_level=next_level,
        next_threshold=next_threshold,
        remaining=max(0.0, next_threshold - score),
        progress=max(0.0, min(100.0, progress)),
    )


def levels_crossed(
    previous_level: int,
    current_level: int,
    thresholds: Mapping[int, float],
) -> list[int]:
    """Defined levels in ``(previous_level, current_level]``, ascending."""
    return sorted(
        level for level in thresholds
        if previous_level < level <= current_level
    )


def _describe(tenant_id: str | None, axis: str | None) -> str:
    if tenant_id is None and axis is None:
        return ""
    parts = [p for p in (tenant_id, axis) if p]
    return f" ({'/'.join(parts)})"
