"""Create audit events, daily snapshots and chain heads.

Revision ID: 0001
Revises:
"""

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        sa.Column("user_id", sa.String(64), nullable=True),
        sa.Column("user_email", sa.String(255), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("entity_type", sa.String(64), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("created_at_iso", sa.String(32), nullable=False),
        sa.Column("prev_hash", sa.String(64), nullable=True),
        sa.Column("row_hash", sa.String(64), nullable=False),
        sqlite_autoincrement=True,
    )
    op.create_index(
        "ix_audit_events_tenant_id_id", "audit_events", ["tenant_id", "id"]
    )
    op.create_index(
        "ix_audit_events_tenant_created_iso",
        "audit_events",
        ["tenant_id", "created_at_iso"],
    )

    op.create_table(
        "audit_daily_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("snapshot_date", sa.String(10), nullable=False),
        sa.Column("start_id", sa.Integer(), nullable=True),
        sa.Column("end_id", sa.Integer(), nullable=True),
        sa.Column("end_row_hash", sa.String(64), nullable=True),
        sa.Column("events_count", sa.Integer(), nullable=False),
        sa.Column("last_created_at_iso", sa.String(32), nullable=True),
        sa.Column("snapshot_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "tenant_id", "snapshot_date", name="uq_audit_snapshot_tenant_date"
        ),
    )
    op.create_index(
        "ix_audit_daily_snapshots_tenant_id", "audit_daily_snapshots", ["tenant_id"]
    )

    op.create_table(
        "audit_chain_heads",
        sa.Column("scope", sa.String(32), primary_key=True),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        sa.Column("last_event_id", sa.Integer(), nullable=True),
        sa.Column("last_row_hash", sa.String(64), nullable=True),
        sa.Column("purged_before", sa.String(10), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_audit_chain_heads_tenant_id", "audit_chain_heads", ["tenant_id"]
    )


def downgrade() -> None:
    op.drop_table("audit_chain_heads")
    op.drop_table("audit_daily_snapshots")
    op.drop_table("audit_events")
