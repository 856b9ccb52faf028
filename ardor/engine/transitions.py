"""
ardor.engine.transitions — Rank Transition Detector
====================================================

A per-subject state machine over rank levels ``0..N`` (0 = unranked).
The previous level lives in an injected store keyed by (tenant, user);
the detector never keeps module-level state.

A rank-up fires only when ``resolved > previous and previous > 0``, so
the first observation of a subject seeds the store without an event.
The stored level is overwritten with the resolved level on every
observation, whether or not anything fired.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, NamedTuple, Protocol

from ardor.engine.thresholds import levels_crossed

logger = logging.getLogger(__name__)

__all__ = [
    "InMemoryTransitionStore",
    "RankTransitionDetector",
    "RankUpEvent",
    "Subject",
    "TransitionStore",
]


class Subject(NamedTuple):
    """A (tenant, user) pair.  Identities are compared lowercased."""

    tenant_id: str
    user_id: str

    @classmethod
    def of(cls, tenant_id: str, user_id: str) -> Subject:
        return cls(tenant_id.strip().lower(), user_id.strip().lower())

    def __str__(self) -> str:
        return f"{self.tenant_id}/{self.user_id}"


@dataclass(frozen=True, slots=True)
class RankUpEvent:
    """One detected boundary crossing.

    ``crossed_levels`` lists every defined level in
    ``(previous_level, new_level]``; the distributor issues one record per
    entry even though only this single event fires.
    """

    subject: Subject
    previous_level: int
    new_level: int
    score: float
    crossed_levels: tuple[int, ...] = field(default=())
    thresholds: Mapping[int, float] = field(default_factory=dict)

    def threshold_for(self, level: int) -> float | None:
        return self.thresholds.get(level)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": self.subject.tenant_id,
            "user_id": self.subject.user_id,
            "previous_level": self.previous_level,
            "new_level": self.new_level,
            "crossed_levels": list(self.crossed_levels),
            "score": self.score,
        }


class TransitionStore(Protocol):
    def exchange(self, subject: Subject, level: int) -> int:
        """Atomically store *level* for *subject* and return the old one."""
        ...


class InMemoryTransitionStore:
    """Process-local store; state is lost on restart."""

    def __init__(self) -> None:
        self._levels: dict[Subject, int] = {}
        self._lock = threading.Lock()

    def exchange(self, subject: Subject, level: int) -> int:
        with self._lock:
            previous = self._levels.get(subject, 0)
            self._levels[subject] = level
            return previous

    def get(self, subject: Subject) -> int:
        with self._lock:
            return self._levels.get(subject, 0)

    def clear(self) -> None:
        with self._lock:
            self._levels.clear()


class RankTransitionDetector:
    """Compares the stored level with a freshly resolved one."""

    def __init__(self, store: TransitionStore) -> None:
        self.store = store

    def observe(
        self,
        subject: Subject,
        resolved_level: int,
        *,
        score: float = 0.0,
        thresholds: Mapping[int, float] | None = None,
    ) -> RankUpEvent | None:
        """Record *resolved_level* and return a :class:`RankUpEvent` if it
        is a rank-up, else None.

        A multi-level jump yields one event for the final level, with
        every crossed level listed on it.
        """
        if resolved_level < 0:
            raise ValueError(f"resolved_level must be >= 0 (got {resolved_level})")

        previous = self.store.exchange(subject, resolved_level)

        if previous <= 0 or resolved_level <= previous:
            if previous == 0 and resolved_level > 0:
                logger.debug("Seeded rank state for %s at level %d", subject, resolved_level)
            return None

        table = dict(thresholds or {})
        crossed = levels_crossed(previous, resolved_level, table) if table else []
        if not crossed:
            crossed = list(range(previous + 1, resolved_level + 1))

        logger.info(
            "Rank up for %s: %d → %d (crossed %s)",
            subject, previous, resolved_level, crossed,
        )
        return RankUpEvent(
            subject=subject,
            previous_level=previous,
            new_level=resolved_level,
            score=score,
            crossed_levels=tuple(crossed),
            thresholds=table,
        )

    def restore(self, event: RankUpEvent) -> None:
        """Put back the level stored before *event* so the next observation
        detects the same crossing again.

        Used when the rewards for *event* could not be recorded; the
        distributor's per-level idempotency makes the repeat safe.
        """
        self.store.exchange(event.subject, event.previous_level)
        logger.warning(
            "Restored rank state for %s to level %d after failed distribution",
            event.subject, event.previous_level,
        )
