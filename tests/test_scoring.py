"""
tests/test_scoring.py — Axis Scorers
======================================
"""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from ardor.engine.activity import AggregatedCounters
from ardor.engine.scoring import (
    engagement_score,
    score_all,
    score_composite,
    score_economic,
    score_resonance,
)


def _days(n: int) -> frozenset[date]:
    start = date(2024, 1, 1)
    return frozenset(start + timedelta(days=i) for i in range(n))


class TestEconomic:
    def test_value_is_raw_total(self):
        score = score_economic(AggregatedCounters(economic_total=750.0, economic_count=3))
        assert score.value == 750.0
        assert score.rank == "Gold"
        assert score.tip_count == 3

    def test_to_dict(self):
        data = score_economic(AggregatedCounters(economic_total=0.0)).to_dict()
        assert data["rank"] == "Bronze"
        assert data["tip_count"] == 0


class TestResonance:
    def test_engagement_formula(self):
        assert engagement_score(10, 3, 45) == 10 * 2 + 3 * 10 + 45

    def test_engagement_capped(self):
        assert engagement_score(10_000, 0, 0) == 1000

    def test_score_uses_streak_from_dates(self):
        counters = AggregatedCounters(
            resonance_count=5, active_dates=_days(4), message_quality=20,
        )
        score = score_resonance(counters)
        assert score.streak_days == 4
        assert score.value == 5 * 2 + 4 * 10 + 20
        assert score.support_count == 5

    def test_economic_amount_has_no_effect(self):
        base = AggregatedCounters(resonance_count=3, active_dates=_days(1))
        rich = AggregatedCounters(
            economic_total=1_000_000, economic_count=99,
            resonance_count=3, active_dates=_days(1),
        )
        assert score_resonance(base).value == score_resonance(rich).value


class TestComposite:
    def test_worked_example(self):
        score = score_composite(3500, 600, economic_cap=7000)
        assert score.normalized_economic == pytest.approx(500)
        assert score.normalized_resonance == 600
        assert score.value == 550

    def test_economic_normalization_capped(self):
        score = score_composite(70_000, 0, economic_cap=7000)
        assert score.normalized_economic == 1000
        assert score.value == 500

    def test_rounds_half_up(self):
        # 1 * 0.5 = 0.5 → 1
        assert score_composite(0, 1).value == 1

    def test_custom_cap(self):
        assert score_composite(1000, 0, economic_cap=1000).value == 500

    @pytest.mark.parametrize("cap", [0, -1])
    def test_rejects_non_positive_cap(self, cap):
        with pytest.raises(ValueError, match="economic_cap"):
            score_composite(100, 100, economic_cap=cap)


def test_score_all_wires_axes_together():
    counters = AggregatedCounters(
        economic_total=3500, economic_count=7,
        resonance_count=100, active_dates=_days(30), message_quality=100,
    )
    scores = score_all(counters)
    # engagement = 200 + 300 + 100 = 600
    assert scores.resonance.value == 600
    assert scores.composite.value == 550
    assert scores.composite.to_dict()["normalized_economic"] == 500
