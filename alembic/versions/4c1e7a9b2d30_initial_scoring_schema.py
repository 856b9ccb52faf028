"""Initial scoring schema and activity NOTIFY trigger

Revision ID: 4c1e7a9b2d30
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '4c1e7a9b2d30'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


ACTIVITY_NOTIFY_FUNCTION = """
CREATE OR REPLACE FUNCTION ardor_notify_activity_changed() RETURNS trigger AS $$
BEGIN
    IF NEW.status = 'settled' THEN
        PERFORM pg_notify(
            'ardor_events',
            json_build_object(
                'type', 'activity_changed',
                'tenant_id', NEW.tenant_id,
                'user_id', NEW.sender_id
            )::text
        );
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

ACTIVITY_NOTIFY_TRIGGER = """
CREATE TRIGGER trg_activity_records_notify
AFTER INSERT OR UPDATE OF status ON activity_records
FOR EACH ROW EXECUTE FUNCTION ardor_notify_activity_changed();
"""


def upgrade() -> None:
    """Create the scoring tables and the activity change trigger."""

    # --- activity_records ---
    op.create_table(
        "activity_records",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("sender_id", sa.String(100), nullable=False),
        sa.Column("recipient_id", sa.String(100), nullable=False),
        sa.Column("amount", sa.Numeric(36, 6), nullable=False, server_default="0"),
        sa.Column("currency_tag", sa.String(20), nullable=False),
        sa.Column("annotation", sa.Text, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="settled"),
        sa.Column("tx_hash", sa.String(100), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_activity_records_subject_time", "activity_records",
        ["tenant_id", "sender_id", "created_at"],
    )
    op.create_index("ix_activity_records_created_at", "activity_records", ["created_at"])
    op.create_index(
        "ix_activity_records_tx_hash", "activity_records",
        ["tx_hash"],
        unique=True,
        postgresql_where=sa.text("tx_hash IS NOT NULL"),
    )

    # --- rank_thresholds ---
    op.create_table(
        "rank_thresholds",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("axis", sa.String(20), nullable=False, server_default="composite"),
        sa.Column("rank_level", sa.Integer, nullable=False),
        sa.Column("min_score", sa.Float, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "tenant_id", "axis", "rank_level", name="uq_rank_thresholds_tenant_axis_level",
        ),
    )
    op.create_index("ix_rank_thresholds_tenant", "rank_thresholds", ["tenant_id"])

    # --- rank_rewards ---
    op.create_table(
        "rank_rewards",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("rank_level", sa.Integer, nullable=False),
        sa.Column("artifact_id", sa.String(100), nullable=True),
        sa.Column("label", sa.String(100), nullable=True),
        sa.Column("icon", sa.String(20), nullable=True),
        sa.UniqueConstraint("tenant_id", "rank_level", name="uq_rank_rewards_tenant_level"),
    )

    # --- rank_transition_states ---
    op.create_table(
        "rank_transition_states",
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("previous_level", sa.Integer, nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("tenant_id", "user_id"),
    )

    # --- reward_distributions ---
    op.create_table(
        "reward_distributions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(100), nullable=False),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("rank_level", sa.Integer, nullable=False),
        sa.Column("badge_minted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("badge_reference_id", sa.String(200), nullable=True),
        sa.Column("artifact_id", sa.String(100), nullable=True),
        sa.Column("artifact_distributed", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("artifact_reference_id", sa.String(200), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("score_value", sa.Float, nullable=False, server_default="0"),
        sa.Column("threshold_value", sa.Float, nullable=True),
        sa.Column("failure_reason", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "claimed_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("reissue_count", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint(
            "user_id", "tenant_id", "rank_level", name="uq_reward_distributions_key",
        ),
    )
    op.create_index(
        "ix_reward_distributions_tenant_time", "reward_distributions",
        ["tenant_id", "created_at"],
    )
    op.create_index("ix_reward_distributions_status", "reward_distributions", ["status"])

    # --- settings ---
    op.create_table(
        "settings",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value_json", sa.Text, nullable=False),
        sa.Column("category", sa.String(50), nullable=False, server_default="general"),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_settings_category", "settings", ["category"])

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.String(100), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(200), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )

    # --- activity change notifications on the ardor_events channel ---
    op.execute(ACTIVITY_NOTIFY_FUNCTION)
    op.execute(ACTIVITY_NOTIFY_TRIGGER)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_activity_records_notify ON activity_records")
    op.execute("DROP FUNCTION IF EXISTS ardor_notify_activity_changed()")
    op.drop_table("admin_log")
    op.drop_table("settings")
    op.drop_table("reward_distributions")
    op.drop_table("rank_transition_states")
    op.drop_table("rank_rewards")
    op.drop_table("rank_thresholds")
    op.drop_table("activity_records")
