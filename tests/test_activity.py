"""
tests/test_activity.py — Activity Aggregator
==============================================
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

from ardor.constants import classify_tag
from ardor.database.models import CurrencyClass
from ardor.engine.activity import ActivityEvent, aggregate_activity, collect_counters

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _event(tag: str, amount: float = 0.0, *, days: int = 0, note: str | None = None):
    return ActivityEvent(
        tenant_id="creator-1",
        sender_id="alice",
        recipient_id="creator-1",
        amount=amount,
        currency_tag=tag,
        created_at=T0 + timedelta(days=days),
        annotation=note,
    )


class TestClassifyTag:
    def test_case_insensitive(self):
        assert classify_tag("JPYC") is CurrencyClass.ECONOMIC
        assert classify_tag("nht") is CurrencyClass.RESONANCE
        assert classify_tag(" tNHT ") is CurrencyClass.RESONANCE

    def test_unknown_and_empty(self):
        assert classify_tag("usdc") is None
        assert classify_tag("") is None
        assert classify_tag(None) is None


class TestAggregate:
    def test_classes_are_mutually_exclusive(self):
        counters = aggregate_activity([
            _event("JPYC", 1000),
            _event("jpyc", 500, days=1),
            _event("NHT", 999_999, days=2),
        ])
        assert counters.economic_total == 1500
        assert counters.economic_count == 2
        # the resonance amount never leaks into the economic total
        assert counters.resonance_count == 1

    def test_unrecognized_tag_counts_date_and_quality_only(self):
        counters = aggregate_activity([_event("USDC", 100, days=3, note="hello there")])
        assert counters.economic_total == 0
        assert counters.economic_count == 0
        assert counters.resonance_count == 0
        assert counters.active_dates == frozenset({date(2024, 1, 4)})
        assert counters.record_count == 1
        assert counters.message_quality > 0

    def test_empty(self):
        counters = aggregate_activity([])
        assert counters.economic_total == 0
        assert counters.active_dates == frozenset()
        assert counters.message_quality == 0

    def test_window_bounds(self):
        events = [_event("nht", days=d) for d in range(5)]
        counters = aggregate_activity(
            events, since=T0 + timedelta(days=1), until=T0 + timedelta(days=3),
        )
        # since inclusive, until exclusive → days 1 and 2
        assert counters.resonance_count == 2

    def test_naive_timestamp_treated_as_utc(self):
        naive = ActivityEvent(
            tenant_id="t", sender_id="u", recipient_id="t", amount=0,
            currency_tag="nht", created_at=datetime(2024, 1, 5, 23, 30),
        )
        counters = aggregate_activity([naive], since=T0)
        assert counters.active_dates == frozenset({date(2024, 1, 5)})

    def test_date_uses_utc(self):
        from datetime import timezone

        jst = timezone(timedelta(hours=9))
        event = ActivityEvent(
            tenant_id="t", sender_id="u", recipient_id="t", amount=0,
            currency_tag="nht", created_at=datetime(2024, 1, 2, 3, 0, tzinfo=jst),
        )
        assert event.activity_date == date(2024, 1, 1)

    def test_counters_to_dict(self):
        counters = aggregate_activity([_event("jpyc", 10), _event("nht", days=1)])
        data = counters.to_dict()
        assert data["economic_total"] == 10
        assert data["resonance_count"] == 1
        assert data["active_days"] == 2


def test_collect_counters_reads_source():
    class Source:
        def __init__(self):
            self.calls = []

        def list_activity(self, tenant_id, user_id, since=None):
            self.calls.append((tenant_id, user_id, since))
            return [_event("jpyc", 42)]

    source = Source()
    counters = collect_counters(source, "creator-1", "alice")
    assert counters.economic_total == 42
    assert source.calls == [("creator-1", "alice", None)]
