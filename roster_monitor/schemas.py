from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from roster_monitor.models import EntitlementTier, LeaveStatus, MonitoringStatus
from roster_monitor.services.date_normalizer import DateParseError, normalize_date, normalize_period


def _anchor_cell(value: Any) -> Any:
    if value is None or value == "":
        return None
    resolved = normalize_date(value)
    if isinstance(resolved, DateParseError):
        raise ValueError(resolved.describe())
    return resolved


def _tier_cell(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class MonitoringRead(BaseModel):
    id: int
    worker_id: str
    display_name: str
    unit_tag: str | None
    reporting_period: str
    group_tag: str
    anchor_date: date | None
    entitlement_tier: EntitlementTier
    next_eligible_date: date | None
    days_remaining: int | None
    status: MonitoringStatus
    on_site_tag: str | None
    leave_request_id: int | None
    leave_end_date: date | None
    rejected_anchor_date: date | None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MonitoringUpdate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=255)
    unit_tag: str | None = Field(default=None, max_length=100)
    group_tag: str | None = Field(default=None, min_length=1, max_length=255)
    anchor_date: date | None = None
    entitlement_tier: EntitlementTier | None = None
    on_site_tag: str | None = Field(default=None, max_length=255)

    @field_validator("anchor_date", mode="before")
    @classmethod
    def _normalize_anchor(cls, value: Any) -> Any:
        return _anchor_cell(value)

    @field_validator("entitlement_tier", mode="before")
    @classmethod
    def _normalize_tier(cls, value: Any) -> Any:
        return _tier_cell(value)


class MonitoringCreate(BaseModel):
    worker_id: str = Field(min_length=1, max_length=64)
    display_name: str = Field(min_length=1, max_length=255)
    reporting_period: str
    unit_tag: str | None = Field(default=None, max_length=100)
    group_tag: str | None = Field(default=None, max_length=255)
    anchor_date: date | None = None
    entitlement_tier: EntitlementTier = EntitlementTier.TIER_70
    on_site_tag: str | None = Field(default=None, max_length=255)

    @field_validator("anchor_date", mode="before")
    @classmethod
    def _normalize_anchor(cls, value: Any) -> Any:
        return _anchor_cell(value)

    @field_validator("entitlement_tier", mode="before")
    @classmethod
    def _normalize_tier(cls, value: Any) -> Any:
        return _tier_cell(value)

    @field_validator("reporting_period", mode="before")
    @classmethod
    def _normalize_period(cls, value: Any) -> str:
        resolved = normalize_period(value)
        if isinstance(resolved, DateParseError):
            raise ValueError(resolved.describe())
        return resolved


class BulkRowsRequest(BaseModel):
    rows: list[dict[str, Any] | list[Any]]


class RowErrorRead(BaseModel):
    row_number: int
    reason: str
    worker_id: str | None = None

    model_config = ConfigDict(from_attributes=True)


class IngestSummaryRead(BaseModel):
    accepted: int
    created: int
    updated: int
    skipped_blank: int
    rejected: list[RowErrorRead]
    warnings: list[RowErrorRead]
    message: str

    model_config = ConfigDict(from_attributes=True)


class RecomputeSummaryRead(BaseModel):
    scanned: int
    updated: int
    unchanged: int
    pinned: int
    leave_completed: int
    failed: int

    model_config = ConfigDict(from_attributes=True)


class ClearAllResponse(BaseModel):
    deleted: int


class ResolveRequest(BaseModel):
    decision: Literal["approve", "reject"]
    start_date: date | None = None
    end_date: date | None = None
    leave_type: str | None = Field(default=None, max_length=100)
    reason: str | None = Field(default=None, max_length=2000)
    attachment_path: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def validate_date_range(self) -> "ResolveRequest":
        if self.start_date is not None and self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        return self


class ResolutionRead(BaseModel):
    monitoring_id: int
    outcome: str
    status: MonitoringStatus
    leave_request_id: int | None = None
    applied: bool

    model_config = ConfigDict(from_attributes=True)


class LeaveDraftRead(BaseModel):
    worker_id: str
    worker_name: str
    phone_number: str | None
    start_date: date
    end_date: date
    leave_type: str
    reason: str | None
    monitoring_id: int | None

    model_config = ConfigDict(from_attributes=True)


class PendingApprovalRead(BaseModel):
    monitoring: MonitoringRead
    proposed_leave: LeaveDraftRead


class LeaveRequestRead(BaseModel):
    id: int
    worker_id: str
    worker_name: str
    phone_number: str | None
    start_date: date
    end_date: date
    leave_type: str
    reason: str | None
    attachment_path: str | None
    status: LeaveStatus
    monitoring_id: int | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReminderRunRead(BaseModel):
    sent: int
    failed: int
    skipped: int

    model_config = ConfigDict(from_attributes=True)


class UpcomingReminderRead(BaseModel):
    leave_request_id: int
    worker_id: str
    worker_name: str
    destination: str
    start_date: date
    end_date: date
    tier_days: int

    model_config = ConfigDict(from_attributes=True)


class ReminderHistoryRead(BaseModel):
    id: int
    leave_request_id: int
    worker_id: str
    tier_days: int
    sent_at: datetime
    destination: str
    message: str

    model_config = ConfigDict(from_attributes=True)
