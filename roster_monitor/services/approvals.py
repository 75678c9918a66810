from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy.orm import Session

from roster_monitor.audit import log_audit
from roster_monitor.models import AuditActorType, EntitlementTier, MonitoringRecord, MonitoringStatus
from roster_monitor.services.leave_requests import LeaveRequestDraft, LeaveRequestStore, SqlLeaveRequestStore
from roster_monitor.services.monitoring_store import guarded_update, list_monitoring, rederive
from roster_monitor.services.status_engine import local_today
from roster_monitor.services.workers import SqlWorkerDirectory, WorkerContact, WorkerDirectory
from roster_monitor.settings import get_settings

logger = logging.getLogger("roster_monitor.approvals")

LEAVE_TYPE_BY_TIER: dict[EntitlementTier, str] = {
    EntitlementTier.TIER_70: "Cuti Tahunan",
    EntitlementTier.TIER_35: "Cuti Khusus",
}


class Decision(str, enum.Enum):
    APPROVE = "approve"
    REJECT = "reject"


class ResolutionOutcome(str, enum.Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ALREADY_RESOLVED = "ALREADY_RESOLVED"
    NOT_DUE = "NOT_DUE"


@dataclass(frozen=True, slots=True)
class ApprovalOverrides:
    start_date: date | None = None
    end_date: date | None = None
    leave_type: str | None = None
    reason: str | None = None
    attachment_path: str | None = None


@dataclass(frozen=True, slots=True)
class ResolutionResult:
    monitoring_id: int
    outcome: ResolutionOutcome
    status: MonitoringStatus
    leave_request_id: int | None = None

    @property
    def applied(self) -> bool:
        return self.outcome in (ResolutionOutcome.APPROVED, ResolutionOutcome.REJECTED)


def _default_end_date(start_date: date) -> date:
    return start_date + timedelta(days=max(1, int(get_settings().default_leave_days)) - 1)


def build_leave_draft(
    record: MonitoringRecord,
    *,
    worker: WorkerContact | None,
    overrides: ApprovalOverrides | None,
    today: date,
) -> LeaveRequestDraft:
    chosen = overrides or ApprovalOverrides()
    start_date = chosen.start_date or record.anchor_date or today
    end_date = chosen.end_date or _default_end_date(start_date)
    return LeaveRequestDraft(
        worker_id=record.worker_id,
        worker_name=worker.name if worker is not None else record.display_name,
        phone_number=worker.phone if worker is not None else None,
        start_date=start_date,
        end_date=end_date,
        leave_type=chosen.leave_type or LEAVE_TYPE_BY_TIER[record.entitlement_tier],
        reason=chosen.reason
        or f"Cuti otomatis berdasarkan monitoring {record.entitlement_tier.value} hari kerja",
        attachment_path=chosen.attachment_path,
        monitoring_id=record.id,
    )


def _already_resolved(record: MonitoringRecord) -> bool:
    if record.status == MonitoringStatus.ON_LEAVE:
        return True
    return record.anchor_date is not None and record.rejected_anchor_date == record.anchor_date


def resolve_monitoring(
    db: Session,
    monitoring_id: int,
    decision: Decision,
    overrides: ApprovalOverrides | None = None,
    *,
    leave_store: LeaveRequestStore | None = None,
    worker_directory: WorkerDirectory | None = None,
    today: date | None = None,
    actor_id: str = "admin",
    request_id: str | None = None,
) -> ResolutionResult:
    """Approve or reject a due monitoring record.

    Only a record that is ``DUE`` (after re-deriving it for ``today``) can be
    resolved. Any other state is answered with a no-op result so that a
    repeated submission is harmless. An unknown id raises ``NotFoundError``.
    """
    reference_day = today or local_today()
    store = leave_store or SqlLeaveRequestStore(db)
    directory = worker_directory or SqlWorkerDirectory(db)

    def _apply(record: MonitoringRecord) -> ResolutionResult:
        rederive(record, reference_day)
        if record.status != MonitoringStatus.DUE:
            outcome = ResolutionOutcome.ALREADY_RESOLVED if _already_resolved(record) else ResolutionOutcome.NOT_DUE
            return ResolutionResult(
                monitoring_id=record.id,
                outcome=outcome,
                status=record.status,
                leave_request_id=record.leave_request_id,
            )

        if decision == Decision.APPROVE:
            draft = build_leave_draft(
                record,
                worker=directory.get_worker(record.worker_id),
                overrides=overrides,
                today=reference_day,
            )
            leave = store.create_leave_request(draft)
            record.status = MonitoringStatus.ON_LEAVE
            record.leave_request_id = leave.id
            record.leave_end_date = draft.end_date
            action = "MONITORING_LEAVE_APPROVED"
            details = {
                "worker_id": record.worker_id,
                "leave_request_id": leave.id,
                "start_date": draft.start_date.isoformat(),
                "end_date": draft.end_date.isoformat(),
                "leave_type": draft.leave_type,
            }
            result = ResolutionResult(
                monitoring_id=record.id,
                outcome=ResolutionOutcome.APPROVED,
                status=record.status,
                leave_request_id=leave.id,
            )
        else:
            record.status = MonitoringStatus.ACTIVE
            record.rejected_anchor_date = record.anchor_date
            action = "MONITORING_LEAVE_REJECTED"
            details = {
                "worker_id": record.worker_id,
                "anchor_date": record.anchor_date.isoformat() if record.anchor_date else None,
            }
            result = ResolutionResult(
                monitoring_id=record.id,
                outcome=ResolutionOutcome.REJECTED,
                status=record.status,
            )

        log_audit(
            db,
            actor_type=AuditActorType.ADMIN,
            actor_id=actor_id,
            action=action,
            success=True,
            entity_type="leave_roster_monitoring",
            entity_id=str(record.id),
            details=details,
            request_id=request_id,
            commit=False,
        )
        return result

    result = guarded_update(db, monitoring_id, _apply)
    logger.info(
        "monitoring_resolution",
        extra={
            "request_id": request_id,
            "monitoring_id": monitoring_id,
            "decision": decision.value,
            "outcome": result.outcome.value,
            "leave_request_id": result.leave_request_id,
        },
    )
    return result


def list_pending_approvals(
    db: Session,
    *,
    worker_directory: WorkerDirectory | None = None,
    today: date | None = None,
) -> list[tuple[MonitoringRecord, LeaveRequestDraft]]:
    """Due records with the leave request an approval would create."""
    reference_day = today or local_today()
    directory = worker_directory or SqlWorkerDirectory(db)
    pending: list[tuple[MonitoringRecord, LeaveRequestDraft]] = []
    for record in list_monitoring(db, status=MonitoringStatus.DUE):
        draft = build_leave_draft(
            record,
            worker=directory.get_worker(record.worker_id),
            overrides=None,
            today=reference_day,
        )
        pending.append((record, draft))
    return pending
