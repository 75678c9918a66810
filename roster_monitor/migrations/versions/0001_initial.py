"""Initial leave roster schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

leave_request_status = postgresql.ENUM(
    "APPROVED",
    "PENDING",
    "REJECTED",
    name="leave_request_status",
    create_type=False,
)

entitlement_tier = postgresql.ENUM(
    "TIER_70",
    "TIER_35",
    name="entitlement_tier",
    create_type=False,
)

monitoring_status = postgresql.ENUM(
    "UNSCHEDULED",
    "ACTIVE",
    "DUE",
    "OVERDUE",
    "ON_LEAVE",
    name="monitoring_status",
    create_type=False,
)

audit_actor_type = postgresql.ENUM(
    "ADMIN",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    leave_request_status.create(bind, checkfirst=True)
    entitlement_tier.create(bind, checkfirst=True)
    monitoring_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "workers",
        sa.Column("id", sa.String(length=64), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("phone", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _created_at(),
    )

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("worker_id", sa.String(length=64), nullable=False),
        sa.Column("worker_name", sa.String(length=255), nullable=False),
        sa.Column("phone_number", sa.String(length=32), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("leave_type", sa.String(length=100), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("attachment_path", sa.String(length=1000), nullable=True),
        sa.Column(
            "status",
            leave_request_status,
            nullable=False,
            server_default=sa.text("'PENDING'"),
        ),
        sa.Column("monitoring_id", sa.Integer(), nullable=True),
        _created_at(),
    )
    op.create_index("ix_leave_requests_worker_id", "leave_requests", ["worker_id"], unique=False)
    op.create_index("ix_leave_requests_start_date", "leave_requests", ["start_date"], unique=False)
    op.create_index("ix_leave_requests_status", "leave_requests", ["status"], unique=False)
    op.create_index("ix_leave_requests_monitoring_id", "leave_requests", ["monitoring_id"], unique=False)

    op.create_table(
        "leave_roster_monitoring",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("worker_id", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=False),
        sa.Column("unit_tag", sa.String(length=100), nullable=True),
        sa.Column("reporting_period", sa.String(length=7), nullable=False),
        sa.Column("group_tag", sa.String(length=255), nullable=False),
        sa.Column("anchor_date", sa.Date(), nullable=True),
        sa.Column("entitlement_tier", entitlement_tier, nullable=False),
        sa.Column("next_eligible_date", sa.Date(), nullable=True),
        sa.Column("days_remaining", sa.Integer(), nullable=True),
        sa.Column("status", monitoring_status, nullable=False),
        sa.Column("on_site_tag", sa.String(length=255), nullable=True),
        sa.Column("leave_request_id", sa.Integer(), nullable=True),
        sa.Column("leave_end_date", sa.Date(), nullable=True),
        sa.Column("rejected_anchor_date", sa.Date(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["leave_request_id"], ["leave_requests.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("worker_id", "reporting_period", name="uq_leave_roster_monitoring_worker_period"),
    )
    op.create_index("ix_leave_roster_monitoring_worker_id", "leave_roster_monitoring", ["worker_id"], unique=False)
    op.create_index(
        "ix_leave_roster_monitoring_reporting_period",
        "leave_roster_monitoring",
        ["reporting_period"],
        unique=False,
    )
    op.create_index("ix_leave_roster_monitoring_status", "leave_roster_monitoring", ["status"], unique=False)

    op.create_table(
        "leave_reminder_dedup",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("leave_request_id", sa.Integer(), nullable=False),
        sa.Column("tier_days", sa.Integer(), nullable=False),
        _created_at(),
        sa.ForeignKeyConstraint(["leave_request_id"], ["leave_requests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("leave_request_id", "tier_days", name="uq_leave_reminder_dedup_request_tier"),
    )
    op.create_index(
        "ix_leave_reminder_dedup_leave_request_id",
        "leave_reminder_dedup",
        ["leave_request_id"],
        unique=False,
    )

    op.create_table(
        "leave_reminder_history",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("leave_request_id", sa.Integer(), nullable=False),
        sa.Column("worker_id", sa.String(length=64), nullable=False),
        sa.Column("tier_days", sa.Integer(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("destination", sa.String(length=64), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
    )
    op.create_index(
        "ix_leave_reminder_history_leave_request_id",
        "leave_reminder_history",
        ["leave_request_id"],
        unique=False,
    )
    op.create_index("ix_leave_reminder_history_worker_id", "leave_reminder_history", ["worker_id"], unique=False)
    op.create_index("ix_leave_reminder_history_sent_at", "leave_reminder_history", ["sent_at"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_leave_reminder_history_sent_at", table_name="leave_reminder_history")
    op.drop_index("ix_leave_reminder_history_worker_id", table_name="leave_reminder_history")
    op.drop_index("ix_leave_reminder_history_leave_request_id", table_name="leave_reminder_history")
    op.drop_table("leave_reminder_history")
    op.drop_index("ix_leave_reminder_dedup_leave_request_id", table_name="leave_reminder_dedup")
    op.drop_table("leave_reminder_dedup")
    op.drop_index("ix_leave_roster_monitoring_status", table_name="leave_roster_monitoring")
    op.drop_index("ix_leave_roster_monitoring_reporting_period", table_name="leave_roster_monitoring")
    op.drop_index("ix_leave_roster_monitoring_worker_id", table_name="leave_roster_monitoring")
    op.drop_table("leave_roster_monitoring")
    op.drop_index("ix_leave_requests_monitoring_id", table_name="leave_requests")
    op.drop_index("ix_leave_requests_status", table_name="leave_requests")
    op.drop_index("ix_leave_requests_start_date", table_name="leave_requests")
    op.drop_index("ix_leave_requests_worker_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_table("workers")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    monitoring_status.drop(bind, checkfirst=True)
    entitlement_tier.drop(bind, checkfirst=True)
    leave_request_status.drop(bind, checkfirst=True)
