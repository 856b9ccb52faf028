"""
ardor.database.models — SQLAlchemy 2.0 Data Models
====================================================

Tables:
- activity_records        — Settled transfers (owned by the ledger, read-only here)
- rank_thresholds         — Per-tenant, per-axis level → minimum score tables
- rank_rewards            — Per-tenant bonus artifact + label/icon per rank level
- rank_transition_states  — Last observed rank level per (tenant, user)
- reward_distributions    — One row per (user, tenant, rank level) issuance
- settings                — Admin-configurable key-value store
- admin_log               — Append-only audit trail
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Ardor ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class CurrencyClass(enum.StrEnum):
    """Mutually exclusive categories a transfer's currency tag maps to."""
    ECONOMIC = "economic"    # economic-bearing (counts money)
    RESONANCE = "resonance"  # resonance-only (counts support, never money)


class ScoreAxis(enum.StrEnum):
    """Scoring axes that can carry a tenant threshold table."""
    ECONOMIC = "economic"
    RESONANCE = "resonance"
    COMPOSITE = "composite"


class DistributionStatus(enum.StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AdminActionType(enum.StrEnum):
    """Categories of operator mutations recorded in admin_log."""
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    REISSUE = "REISSUE"


# ---------------------------------------------------------------------------
# ActivityRecord — one settled transfer, scoped to a tenant
# ---------------------------------------------------------------------------
class ActivityRecord(Base):
    """Transfer written by the ledger collaborator.

    Immutable once created.  The engine only reads rows whose ``status``
    is ``settled``.
    """
    __tablename__ = "activity_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(100), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[float] = mapped_column(
        Numeric(36, 6, asdecimal=False), nullable=False, default=0
    )
    currency_tag: Mapped[str] = mapped_column(String(20), nullable=False)
    annotation: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="settled")
    tx_hash: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_activity_records_subject_time", "tenant_id", "sender_id", "created_at"),
        Index("ix_activity_records_created_at", "created_at"),
        # Idempotent ingest: one row per ledger transaction
        Index(
            "ix_activity_records_tx_hash",
            "tx_hash",
            unique=True,
            postgresql_where=tx_hash.isnot(None),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ActivityRecord id={self.id} tenant={self.tenant_id!r} "
            f"sender={self.sender_id!r} tag={self.currency_tag!r}>"
        )


# ---------------------------------------------------------------------------
# RankThreshold — per-tenant, per-axis threshold table rows
# ---------------------------------------------------------------------------
class RankThreshold(Base):
    """Minimum score required to hold ``rank_level`` on ``axis``.

    Configured by the tenant operator.  Rows for one (tenant, axis) form a
    table that must be strictly increasing by level.
    """
    __tablename__ = "rank_thresholds"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    axis: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ScoreAxis.COMPOSITE.value
    )
    rank_level: Mapped[int] = mapped_column(Integer, nullable=False)
    min_score: Mapped[float] = mapped_column(Float, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "axis", "rank_level", name="uq_rank_thresholds_tenant_axis_level",
        ),
        Index("ix_rank_thresholds_tenant", "tenant_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<RankThreshold tenant={self.tenant_id!r} axis={self.axis!r} "
            f"level={self.rank_level} min={self.min_score}>"
        )


# ---------------------------------------------------------------------------
# RankReward — bonus artifact and presentation per rank level
# ---------------------------------------------------------------------------
class RankReward(Base):
    __tablename__ = "rank_rewards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rank_level: Mapped[int] = mapped_column(Integer, nullable=False)
    artifact_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    label: Mapped[str | None] = mapped_column(String(100), nullable=True)
    icon: Mapped[str | None] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "rank_level", name="uq_rank_rewards_tenant_level"),
    )

    def __repr__(self) -> str:
        return f"<RankReward tenant={self.tenant_id!r} level={self.rank_level}>"


# ---------------------------------------------------------------------------
# RankTransitionState — previously observed rank level per subject
# ---------------------------------------------------------------------------
class RankTransitionState(Base):
    __tablename__ = "rank_transition_states"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    previous_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return (
            f"<RankTransitionState tenant={self.tenant_id!r} "
            f"user={self.user_id!r} level={self.previous_level}>"
        )


# ---------------------------------------------------------------------------
# RewardDistribution — one issuance attempt per (user, tenant, rank level)
# ---------------------------------------------------------------------------
class RewardDistribution(Base):
    """Durable record of a rank reward issuance.

    The (user_id, tenant_id, rank_level) unique constraint is the
    idempotency key.  Rows are inserted as ``pending`` before any external
    call and finalized exactly once by the pipeline.
    """
    __tablename__ = "reward_distributions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    rank_level: Mapped[int] = mapped_column(Integer, nullable=False)

    badge_minted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    badge_reference_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    artifact_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    artifact_distributed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    artifact_reference_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DistributionStatus.PENDING.value
    )
    score_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    threshold_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Last time an issuer claimed this row (insert or operator re-issue);
    # a pending row older than the stale window is shown to operators.
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    reissue_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "tenant_id", "rank_level", name="uq_reward_distributions_key",
        ),
        Index("ix_reward_distributions_tenant_time", "tenant_id", "created_at"),
        Index("ix_reward_distributions_status", "status"),
    )

    @property
    def is_partial(self) -> bool:
        """Completed, but one configured side effect did not happen."""
        if self.status != DistributionStatus.COMPLETED:
            return False
        return not self.badge_minted or (
            self.artifact_id is not None and not self.artifact_distributed
        )

    def __repr__(self) -> str:
        return (
            f"<RewardDistribution id={self.id} user={self.user_id!r} "
            f"tenant={self.tenant_id!r} level={self.rank_level} status={self.status}>"
        )


# ---------------------------------------------------------------------------
# Setting — admin-configurable key-value store
# ---------------------------------------------------------------------------
class Setting(Base):
    """Key-value configuration store.

    Scoring tuning knobs live here so operators can adjust them without
    redeploying.  Values are stored as JSON strings; typed accessors live
    in :class:`~ardor.engine.cache.ConfigCache`.
    """
    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value_json: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    description: Mapped[str | None] = mapped_column(Text, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_settings_category", "category"),
    )

    def __repr__(self) -> str:
        return f"<Setting key={self.key!r} category={self.category!r}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id!r} action={self.action_type}>"
