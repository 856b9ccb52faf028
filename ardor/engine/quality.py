"""
ardor.engine.quality — Engagement quality signals
==================================================

Two signals feed the resonance axis: the longest streak of consecutive
active days, and a 0–100 message-quality score derived from how often
and how richly transfers are annotated.  Neither looks at amounts.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import date

from ardor.constants import MESSAGE_LENGTH_BONUS_CAP, MESSAGE_RATIO_WEIGHT


def calculate_streak(dates: Iterable[date]) -> int:
    """Longest run of consecutive calendar days in *dates*.

    Duplicates are ignored and order does not matter.  A gap of exactly
    one day extends the running streak; any larger gap resets it to 1
    without erasing the maximum already reached.  Empty input → 0.
    """
    ordered = sorted(set(dates))
    if not ordered:
        return 0

    current = 1
    longest = 1
    for prev, cur in zip(ordered, ordered[1:]):
        if (cur - prev).days == 1:
            current += 1
            longest = max(longest, current)
        else:
            current = 1
    return longest


def calculate_message_quality(annotations: list[str | None]) -> int:
    """Message-quality score (0–100) over one entry per activity record.

    ``messageRatio`` is the share of records with non-blank annotation
    text; ``lengthBonus`` is half the average annotation length over the
    annotated records only, capped at 30::

        quality = min(100, round(messageRatio * 70 + lengthBonus))
    """
    if not annotations:
        return 0

    annotated = [text for text in annotations if text and text.strip()]
    if not annotated:
        return 0

    ratio = len(annotated) / len(annotations)
    avg_length = sum(len(text) for text in annotated) / len(annotated)
    length_bonus = min(MESSAGE_LENGTH_BONUS_CAP, avg_length / 2)

    return min(100, _round_half_up(ratio * MESSAGE_RATIO_WEIGHT + length_bonus))


def _round_half_up(value: float) -> int:
    # Python's round() is banker's rounding; scores round .5 upward.
    return int(math.floor(value + 0.5))
