from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roster_monitor.db import Base

JSON_DOCUMENT = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MonitoringStatus(str, enum.Enum):
    UNSCHEDULED = "UNSCHEDULED"
    ACTIVE = "ACTIVE"
    DUE = "DUE"
    OVERDUE = "OVERDUE"
    ON_LEAVE = "ON_LEAVE"


class EntitlementTier(str, enum.Enum):
    TIER_70 = "70"
    TIER_35 = "35"

    @property
    def days(self) -> int:
        return int(self.value)


class LeaveStatus(str, enum.Enum):
    APPROVED = "APPROVED"
    PENDING = "PENDING"
    REJECTED = "REJECTED"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    worker_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    leave_type: Mapped[str] = mapped_column(String(100), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_path: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    status: Mapped[LeaveStatus] = mapped_column(
        Enum(LeaveStatus, name="leave_request_status"),
        nullable=False,
        default=LeaveStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    monitoring_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    reminders: Mapped[list[ReminderDedupRecord]] = relationship(back_populates="leave_request")


class MonitoringRecord(Base):
    __tablename__ = "leave_roster_monitoring"
    __table_args__ = (
        UniqueConstraint("worker_id", "reporting_period", name="uq_leave_roster_monitoring_worker_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_tag: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reporting_period: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    group_tag: Mapped[str] = mapped_column(String(255), nullable=False)
    anchor_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    entitlement_tier: Mapped[EntitlementTier] = mapped_column(
        Enum(EntitlementTier, name="entitlement_tier"),
        nullable=False,
        default=EntitlementTier.TIER_70,
    )
    next_eligible_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    days_remaining: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[MonitoringStatus] = mapped_column(
        Enum(MonitoringStatus, name="monitoring_status"),
        nullable=False,
        default=MonitoringStatus.UNSCHEDULED,
        index=True,
    )
    on_site_tag: Mapped[str | None] = mapped_column(String(255), nullable=True)
    leave_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("leave_requests.id", ondelete="SET NULL"),
        nullable=True,
    )
    leave_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    rejected_anchor_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    leave_request: Mapped[LeaveRequest | None] = relationship()

    __mapper_args__ = {"version_id_col": version}

    @property
    def tier_days(self) -> int:
        return self.entitlement_tier.days


class ReminderDedupRecord(Base):
    __tablename__ = "leave_reminder_dedup"
    __table_args__ = (
        UniqueConstraint("leave_request_id", "tier_days", name="uq_leave_reminder_dedup_request_tier"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    leave_request_id: Mapped[int] = mapped_column(
        ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tier_days: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    leave_request: Mapped[LeaveRequest] = relationship(back_populates="reminders")


class ReminderHistoryEntry(Base):
    __tablename__ = "leave_reminder_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    leave_request_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    tier_days: Mapped[int] = mapped_column(Integer, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    destination: Mapped[str] = mapped_column(String(64), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSON_DOCUMENT,
        nullable=False,
        default=dict,
        server_default=text("'{}'"),
    )
