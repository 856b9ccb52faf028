"""
ardor.services.transition_store — Durable Rank Transition State
================================================================

Keeps each subject's previously observed rank level in
``rank_transition_states`` so rank-up detection survives restarts.

A subject with no row yet is reconstructed from the highest rank level
already present in ``reward_distributions``; with neither, the previous
level is 0 and the first observation only seeds the row.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ardor.database.models import RankTransitionState, RewardDistribution
from ardor.engine.transitions import Subject

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def reconstruct_level(session: Session, subject: Subject) -> int:
    """Highest rank level ever distributed to *subject*, or 0."""
    level = session.scalar(
        select(func.max(RewardDistribution.rank_level)).where(
            RewardDistribution.tenant_id == subject.tenant_id,
            RewardDistribution.user_id == subject.user_id,
        )
    )
    return int(level or 0)


class SqlTransitionStore:
    """``exchange`` backed by a row lock on the subject's state row.

    On PostgreSQL the ``SELECT … FOR UPDATE`` serializes concurrent
    exchanges for one subject across processes.  The coordinator's
    per-subject lock already serializes them within a process.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def exchange(self, subject: Subject, level: int) -> int:
        with Session(self._engine) as session:
            state = session.scalar(
                select(RankTransitionState)
                .where(
                    RankTransitionState.tenant_id == subject.tenant_id,
                    RankTransitionState.user_id == subject.user_id,
                )
                .with_for_update()
            )
            if state is not None:
                previous = state.previous_level
                state.previous_level = level
                session.commit()
                return previous

            previous = reconstruct_level(session, subject)
            if previous:
                logger.info(
                    "Reconstructed rank state for %s at level %d from distributions",
                    subject, previous,
                )
            try:
                with session.begin_nested():   # SAVEPOINT
                    session.add(RankTransitionState(
                        tenant_id=subject.tenant_id,
                        user_id=subject.user_id,
                        previous_level=level,
                    ))
                    session.flush()
            except IntegrityError:
                # Another process seeded the row first; take its value.
                session.rollback()
                return self.exchange(subject, level)
            session.commit()
            return previous

    def get(self, subject: Subject) -> int:
        with Session(self._engine) as session:
            state = session.get(RankTransitionState, (subject.tenant_id, subject.user_id))
            if state is not None:
                return state.previous_level
            return reconstruct_level(session, subject)
