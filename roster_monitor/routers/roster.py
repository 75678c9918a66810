from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, File, Query, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from roster_monitor.audit import log_audit
from roster_monitor.db import get_db
from roster_monitor.errors import ValidationError
from roster_monitor.models import AuditActorType, MonitoringRecord, MonitoringStatus
from roster_monitor.schemas import (
    BulkRowsRequest,
    ClearAllResponse,
    IngestSummaryRead,
    LeaveDraftRead,
    LeaveRequestRead,
    MonitoringCreate,
    MonitoringRead,
    MonitoringUpdate,
    PendingApprovalRead,
    RecomputeSummaryRead,
    ReminderHistoryRead,
    ReminderRunRead,
    ResolutionRead,
    ResolveRequest,
    RowErrorRead,
    UpcomingReminderRead,
)
from roster_monitor.services.approvals import (
    ApprovalOverrides,
    Decision,
    list_pending_approvals,
    resolve_monitoring,
)
from roster_monitor.services.bulk_ingest import IngestSummary, ingest_roster, read_roster_workbook
from roster_monitor.services.leave_requests import list_leave_requests
from roster_monitor.services.monitoring_store import (
    clear_all_monitoring,
    create_monitoring,
    delete_monitoring,
    get_monitoring,
    list_monitoring,
    update_monitoring,
)
from roster_monitor.services.recompute import recompute_all
from roster_monitor.services.reminders import (
    NotificationGateway,
    build_notification_gateway,
    check_upcoming_reminders,
    get_reminder_history,
    send_due_reminders,
)
from roster_monitor.services.status_engine import local_today

router = APIRouter(tags=["leave-roster"])

ALLOWED_UPLOAD_SUFFIXES = (".xlsx", ".xlsm")


def get_notification_gateway() -> NotificationGateway:
    return build_notification_gateway()


def _actor_id(request: Request) -> str:
    actor_id = getattr(request.state, "actor_id", None)
    if not actor_id or actor_id == "system":
        return "admin"
    return str(actor_id)


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _to_ingest_read(summary: IngestSummary) -> IngestSummaryRead:
    return IngestSummaryRead(
        accepted=summary.accepted,
        created=summary.created,
        updated=summary.updated,
        skipped_blank=summary.skipped_blank,
        rejected=[RowErrorRead(**asdict(item)) for item in summary.rejected],
        warnings=[RowErrorRead(**asdict(item)) for item in summary.warnings],
        message=summary.describe(),
    )


def _audit_ingest(db: Session, request: Request, summary: IngestSummary, *, source: str) -> None:
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(request),
        action="MONITORING_BULK_INGEST",
        success=True,
        entity_type="leave_roster_monitoring",
        details={
            "source": source,
            "accepted": summary.accepted,
            "rejected": len(summary.rejected),
            "warnings": len(summary.warnings),
        },
        request_id=_request_id(request),
    )


@router.get("/api/leave-roster-monitoring", response_model=list[MonitoringRead])
def list_monitoring_endpoint(
    status_filter: MonitoringStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[MonitoringRecord]:
    return list_monitoring(db, status=status_filter)


@router.post(
    "/api/leave-roster-monitoring",
    response_model=MonitoringRead,
    status_code=status.HTTP_201_CREATED,
)
def create_monitoring_endpoint(
    payload: MonitoringCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> MonitoringRecord:
    record = create_monitoring(db, payload.model_dump(), today=local_today())
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(request),
        action="MONITORING_CREATED",
        success=True,
        entity_type="leave_roster_monitoring",
        entity_id=str(record.id),
        details={"worker_id": record.worker_id, "reporting_period": record.reporting_period},
        request_id=_request_id(request),
    )
    return record


@router.get("/api/leave-roster-monitoring/pending", response_model=list[PendingApprovalRead])
def list_pending_endpoint(db: Session = Depends(get_db)) -> list[PendingApprovalRead]:
    return [
        PendingApprovalRead(
            monitoring=MonitoringRead.model_validate(record),
            proposed_leave=LeaveDraftRead.model_validate(asdict(draft)),
        )
        for record, draft in list_pending_approvals(db)
    ]


@router.post("/api/leave-roster-monitoring/upload-excel", response_model=IngestSummaryRead)
def upload_roster_workbook(
    request: Request,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
) -> IngestSummaryRead:
    filename = (file.filename or "").lower()
    if not filename.endswith(ALLOWED_UPLOAD_SUFFIXES):
        raise ValidationError("Only .xlsx workbooks are accepted", code="INVALID_WORKBOOK")

    rows = read_roster_workbook(file.file.read())
    # Header occupies spreadsheet row 1.
    summary = ingest_roster(db, rows, row_offset=1)
    _audit_ingest(db, request, summary, source=file.filename or "upload")
    return _to_ingest_read(summary)


@router.post("/api/leave-roster-monitoring/bulk", response_model=IngestSummaryRead)
def bulk_ingest_endpoint(
    payload: BulkRowsRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> IngestSummaryRead:
    summary = ingest_roster(db, payload.rows)
    _audit_ingest(db, request, summary, source="json")
    return _to_ingest_read(summary)


@router.post("/api/leave-roster-monitoring/update-status", response_model=RecomputeSummaryRead)
def recompute_endpoint(db: Session = Depends(get_db)) -> RecomputeSummaryRead:
    return RecomputeSummaryRead(**recompute_all(db).to_dict())


@router.delete("/api/leave-roster-monitoring/clear-all", response_model=ClearAllResponse)
def clear_all_endpoint(request: Request, db: Session = Depends(get_db)) -> ClearAllResponse:
    deleted = clear_all_monitoring(db)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(request),
        action="MONITORING_CLEARED",
        success=True,
        entity_type="leave_roster_monitoring",
        details={"deleted": deleted},
        request_id=_request_id(request),
    )
    return ClearAllResponse(deleted=deleted)


@router.get("/api/leave-roster-monitoring/{monitoring_id}", response_model=MonitoringRead)
def get_monitoring_endpoint(monitoring_id: int, db: Session = Depends(get_db)) -> MonitoringRecord:
    return get_monitoring(db, monitoring_id)


@router.put("/api/leave-roster-monitoring/{monitoring_id}", response_model=MonitoringRead)
def update_monitoring_endpoint(
    monitoring_id: int,
    payload: MonitoringUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> MonitoringRecord:
    changes: dict[str, Any] = payload.model_dump(exclude_unset=True)
    record = update_monitoring(db, monitoring_id, changes, today=local_today())
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(request),
        action="MONITORING_UPDATED",
        success=True,
        entity_type="leave_roster_monitoring",
        entity_id=str(monitoring_id),
        details=jsonable_encoder(changes),
        request_id=_request_id(request),
    )
    return record


@router.delete("/api/leave-roster-monitoring/{monitoring_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_monitoring_endpoint(monitoring_id: int, request: Request, db: Session = Depends(get_db)) -> None:
    delete_monitoring(db, monitoring_id)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(request),
        action="MONITORING_DELETED",
        success=True,
        entity_type="leave_roster_monitoring",
        entity_id=str(monitoring_id),
        request_id=_request_id(request),
    )


@router.post("/api/leave-roster-monitoring/{monitoring_id}/resolve", response_model=ResolutionRead)
def resolve_monitoring_endpoint(
    monitoring_id: int,
    payload: ResolveRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ResolutionRead:
    result = resolve_monitoring(
        db,
        monitoring_id,
        Decision(payload.decision),
        ApprovalOverrides(
            start_date=payload.start_date,
            end_date=payload.end_date,
            leave_type=payload.leave_type,
            reason=payload.reason,
            attachment_path=payload.attachment_path,
        ),
        actor_id=_actor_id(request),
        request_id=_request_id(request),
    )
    return ResolutionRead(
        monitoring_id=result.monitoring_id,
        outcome=result.outcome.value,
        status=result.status,
        leave_request_id=result.leave_request_id,
        applied=result.applied,
    )


@router.get("/api/leave-requests", response_model=list[LeaveRequestRead])
def list_leave_requests_endpoint(
    worker_id: str | None = Query(default=None),
    year: int | None = Query(default=None, ge=1900, le=9999),
    month: int | None = Query(default=None, ge=1, le=12),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    return list_leave_requests(db, worker_id=worker_id, year=year, month=month)


@router.post("/api/leave-reminders/send", response_model=ReminderRunRead)
def send_reminders_endpoint(
    db: Session = Depends(get_db),
    gateway: NotificationGateway = Depends(get_notification_gateway),
) -> ReminderRunRead:
    return ReminderRunRead(**send_due_reminders(db, gateway).to_dict())


@router.get("/api/leave-reminders/upcoming", response_model=list[UpcomingReminderRead])
def upcoming_reminders_endpoint(db: Session = Depends(get_db)) -> list[UpcomingReminderRead]:
    return [UpcomingReminderRead(**asdict(item)) for item in check_upcoming_reminders(db)]


@router.get("/api/leave-reminders/history", response_model=list[ReminderHistoryRead])
def reminder_history_endpoint(
    limit: int = Query(default=200, ge=1, le=1000),
    db: Session = Depends(get_db),
) -> list[ReminderHistoryRead]:
    return get_reminder_history(db, limit=limit)
