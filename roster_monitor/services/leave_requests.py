from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from roster_monitor.errors import ValidationError
from roster_monitor.models import LeaveRequest, LeaveStatus


@dataclass(frozen=True, slots=True)
class LeaveRequestDraft:
    worker_id: str
    worker_name: str
    phone_number: str | None
    start_date: date
    end_date: date
    leave_type: str
    reason: str | None = None
    attachment_path: str | None = None
    status: LeaveStatus = LeaveStatus.APPROVED
    monitoring_id: int | None = None


class LeaveRequestStore:
    """Where approved leave lives; the reminder pipeline reads from here."""

    def create_leave_request(self, draft: LeaveRequestDraft) -> LeaveRequest:
        raise NotImplementedError

    def list_approved_upcoming(self, today: date) -> list[LeaveRequest]:
        raise NotImplementedError


class SqlLeaveRequestStore(LeaveRequestStore):
    """Leave requests in the engine's own database.

    ``create_leave_request`` only flushes: the caller owns the transaction, so
    the request commits or rolls back together with the monitoring change.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def create_leave_request(self, draft: LeaveRequestDraft) -> LeaveRequest:
        if draft.end_date < draft.start_date:
            raise ValidationError("end_date must be greater than or equal to start_date")

        leave = LeaveRequest(
            worker_id=draft.worker_id,
            worker_name=draft.worker_name,
            phone_number=draft.phone_number,
            start_date=draft.start_date,
            end_date=draft.end_date,
            leave_type=draft.leave_type,
            reason=draft.reason,
            attachment_path=draft.attachment_path,
            status=draft.status,
            monitoring_id=draft.monitoring_id,
        )
        self.db.add(leave)
        self.db.flush()
        return leave

    def list_approved_upcoming(self, today: date) -> list[LeaveRequest]:
        stmt = (
            select(LeaveRequest)
            .where(
                LeaveRequest.status == LeaveStatus.APPROVED,
                LeaveRequest.start_date > today,
            )
            .order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
        )
        return list(self.db.scalars(stmt).all())


def list_leave_requests(
    db: Session,
    *,
    worker_id: str | None,
    year: int | None,
    month: int | None,
) -> list[LeaveRequest]:
    if (year is None) != (month is None):
        raise ValidationError("year and month must be provided together")

    stmt = select(LeaveRequest).order_by(LeaveRequest.start_date.asc(), LeaveRequest.id.asc())
    if worker_id is not None:
        stmt = stmt.where(LeaveRequest.worker_id == worker_id)

    if year is not None and month is not None:
        days_in_month = monthrange(year, month)[1]
        start = date(year, month, 1)
        end = date(year, month, days_in_month)
        stmt = stmt.where(
            LeaveRequest.start_date <= end,
            LeaveRequest.end_date >= start,
        )

    return list(db.scalars(stmt).all())
