"""
ardor.constants — Shared Constants & Helpers
=============================================

Single source of truth for tier tables, the currency tag lookup, and the
scoring weights.  Import from here instead of duplicating in the engine,
services, and API.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from ardor.database.models import CurrencyClass
from ardor.engine.tiers import Tier, validate_tiers

if TYPE_CHECKING:
    from ardor.engine.cache import ConfigCache

# ---------------------------------------------------------------------------
# Currency tag lookup (case-insensitive; keys are lowercase)
# ---------------------------------------------------------------------------
CURRENCY_TAG_CLASS: dict[str, CurrencyClass] = {
    "jpyc": CurrencyClass.ECONOMIC,
    "nht": CurrencyClass.RESONANCE,
    "tnht": CurrencyClass.RESONANCE,
}


def classify_tag(tag: str | None) -> CurrencyClass | None:
    """Map a currency tag to its class, or None when unrecognized."""
    if not tag:
        return None
    return CURRENCY_TAG_CLASS.get(tag.strip().lower())


# ---------------------------------------------------------------------------
# Tier tables — ascending; the last upper bound is treated as unbounded
# ---------------------------------------------------------------------------
ECONOMIC_TIERS: tuple[Tier, ...] = (
    Tier("Bronze", 0, 100, "#cd7f32"),
    Tier("Silver", 100, 500, "#c0c0c0"),
    Tier("Gold", 500, 1000, "#ffd700"),
    Tier("Platinum", 1000, 5000, "#e5e4e2"),
    Tier("Diamond", 5000, math.inf, "#b9f2ff"),
)

RESONANCE_TIERS: tuple[Tier, ...] = (
    Tier("Spark", 0, 100, "#ffa500"),
    Tier("Flame", 100, 300, "#ff6b35"),
    Tier("Blaze", 300, 600, "#ff4500"),
    Tier("Inferno", 600, 1000, "#dc143c"),
    Tier("Phoenix", 1000, math.inf, "#ff00ff"),
)

COMPOSITE_TIERS: tuple[Tier, ...] = (
    Tier("Seed", 0, 200, "#8bc34a"),
    Tier("Sprout", 200, 400, "#4caf50"),
    Tier("Bloom", 400, 600, "#00bcd4"),
    Tier("Radiant", 600, 800, "#3f51b5"),
    Tier("Legend", 800, math.inf, "#9c27b0"),
)

for _tiers in (ECONOMIC_TIERS, RESONANCE_TIERS, COMPOSITE_TIERS):
    validate_tiers(_tiers)


# ---------------------------------------------------------------------------
# Scoring weights
# ---------------------------------------------------------------------------
RESONANCE_SCORE_CAP = 1000
SUPPORT_WEIGHT = 2        # per resonance-only transfer
STREAK_DAY_WEIGHT = 10    # per day of the longest streak

MESSAGE_RATIO_WEIGHT = 70
MESSAGE_LENGTH_BONUS_CAP = 30

COMPOSITE_NORMALIZED_CAP = 1000
COMPOSITE_ECONOMIC_WEIGHT = 0.5
COMPOSITE_RESONANCE_WEIGHT = 0.5

DEFAULT_ECONOMIC_CAP = 7000.0


def economic_cap(cache: ConfigCache | None = None) -> float:
    """Economic total that normalizes to the composite ceiling (1000).

    Read from the ``scoring.economic_cap`` setting via *cache*; falls back
    to :data:`DEFAULT_ECONOMIC_CAP` when unset or not positive.
    """
    if cache is None:
        return DEFAULT_ECONOMIC_CAP
    cap = cache.get_float("scoring.economic_cap", DEFAULT_ECONOMIC_CAP)
    return cap if cap > 0 else DEFAULT_ECONOMIC_CAP


# ---------------------------------------------------------------------------
# Rank thresholds (level → minimum score) used for rank-up detection
# ---------------------------------------------------------------------------
DEFAULT_RANK_THRESHOLDS: dict[int, float] = {
    1: 100,
    2: 300,
    3: 600,
    4: 1000,
    5: 1500,
}

DEFAULT_RANK_ICON = "\u2b50"  # ⭐


def default_rank_label(level: int) -> str:
    return f"Rank {level}"
