"""
ardor.engine.activity — ActivityEvent and the Activity Aggregator
==================================================================

Every settled transfer is normalized into an :class:`ActivityEvent`
before aggregation.  :func:`aggregate_activity` reduces a subject's
events into :class:`AggregatedCounters`, the transient projection every
axis scorer reads from.  Pure calculation — no DB I/O.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, Any

from ardor.constants import classify_tag
from ardor.database.models import CurrencyClass
from ardor.engine.quality import calculate_message_quality

if TYPE_CHECKING:
    from ardor.database.models import ActivityRecord

logger = logging.getLogger(__name__)

__all__ = ["ActivityEvent", "AggregatedCounters", "aggregate_activity", "collect_counters"]


# ---------------------------------------------------------------------------
# ActivityEvent — normalized settled transfer
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ActivityEvent:
    """One settled transfer, detached from the ORM session."""

    tenant_id: str
    sender_id: str
    recipient_id: str
    amount: float
    currency_tag: str
    created_at: datetime
    annotation: str | None = None

    @classmethod
    def from_record(cls, record: ActivityRecord) -> ActivityEvent:
        return cls(
            tenant_id=record.tenant_id,
            sender_id=record.sender_id,
            recipient_id=record.recipient_id,
            amount=float(record.amount or 0),
            currency_tag=record.currency_tag,
            created_at=record.created_at,
            annotation=record.annotation,
        )

    @property
    def currency_class(self) -> CurrencyClass | None:
        return classify_tag(self.currency_tag)

    @property
    def activity_date(self) -> date:
        """UTC calendar date of the transfer (naive timestamps are UTC)."""
        ts = self.created_at
        if ts.tzinfo is None:
            return ts.date()
        return ts.astimezone(UTC).date()


# ---------------------------------------------------------------------------
# AggregatedCounters — transient per-subject projection
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class AggregatedCounters:
    """Raw counters for one (user, tenant) pair.  Never persisted."""

    economic_total: float = 0.0
    economic_count: int = 0
    resonance_count: int = 0
    active_dates: frozenset[date] = field(default_factory=frozenset)
    message_quality: int = 0
    record_count: int = 0
    annotated_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "economic_total": self.economic_total,
            "economic_count": self.economic_count,
            "resonance_count": self.resonance_count,
            "active_days": len(self.active_dates),
            "message_quality": self.message_quality,
            "record_count": self.record_count,
        }


def aggregate_activity(
    events: Iterable[ActivityEvent],
    *,
    since: datetime | None = None,
    until: datetime | None = None,
) -> AggregatedCounters:
    """Reduce *events* into counters.

    Every event is classified into exactly one currency class by a
    case-insensitive tag lookup.  Events with an unrecognized tag count
    toward neither class but still add their date to ``active_dates`` and
    still take part in message quality.  The optional window is
    ``since <= created_at < until``.
    """
    economic_total = 0.0
    economic_count = 0
    resonance_count = 0
    dates: set[date] = set()
    annotations: list[str | None] = []
    unrecognized = 0

    for event in events:
        if since is not None and _before(event.created_at, since):
            continue
        if until is not None and not _before(event.created_at, until):
            continue

        currency_class = event.currency_class
        if currency_class is CurrencyClass.ECONOMIC:
            economic_total += event.amount
            economic_count += 1
        elif currency_class is CurrencyClass.RESONANCE:
            resonance_count += 1
        else:
            unrecognized += 1

        dates.add(event.activity_date)
        annotations.append(event.annotation)

    if unrecognized:
        logger.debug("Skipped %d transfers with unrecognized currency tags", unrecognized)

    return AggregatedCounters(
        economic_total=economic_total,
        economic_count=economic_count,
        resonance_count=resonance_count,
        active_dates=frozenset(dates),
        message_quality=calculate_message_quality(annotations),
        record_count=len(annotations),
        annotated_count=sum(1 for a in annotations if a and a.strip()),
    )


def collect_counters(
    source: Any,
    tenant_id: str,
    user_id: str,
    *,
    since: datetime | None = None,
) -> AggregatedCounters:
    """Read a subject's settled activity from *source* and aggregate it.

    *source* is anything with ``list_activity(tenant_id, user_id, since)``
    returning :class:`ActivityEvent` objects.
    """
    events = source.list_activity(tenant_id, user_id, since)
    return aggregate_activity(events, since=since)


def _before(ts: datetime, bound: datetime) -> bool:
    """``ts < bound`` tolerating a naive/aware mix (naive means UTC)."""
    if ts.tzinfo is None and bound.tzinfo is not None:
        ts = ts.replace(tzinfo=UTC)
    elif ts.tzinfo is not None and bound.tzinfo is None:
        bound = bound.replace(tzinfo=UTC)
    return ts < bound
