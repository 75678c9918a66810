from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy.orm import Session

from roster_monitor.errors import NotFoundError
from roster_monitor.models import MonitoringRecord, MonitoringStatus
from roster_monitor.services.monitoring_store import guarded_update, list_monitoring_ids
from roster_monitor.services.status_engine import apply_evaluation, due_window_days, evaluate_record, local_today

logger = logging.getLogger("roster_monitor.recompute")

OUTCOME_UPDATED = "updated"
OUTCOME_UNCHANGED = "unchanged"
OUTCOME_PINNED = "pinned"
OUTCOME_LEAVE_COMPLETED = "leave_completed"


@dataclass(slots=True)
class RecomputeSummary:
    scanned: int = 0
    updated: int = 0
    unchanged: int = 0
    pinned: int = 0
    leave_completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "scanned": self.scanned,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "pinned": self.pinned,
            "leave_completed": self.leave_completed,
            "failed": self.failed,
        }


def recompute_record(record: MonitoringRecord, today: date) -> str:
    if record.status == MonitoringStatus.ON_LEAVE:
        if record.leave_end_date is None or record.leave_end_date >= today:
            return OUTCOME_PINNED
        # Leave finished: the next window counts from the day the leave ended.
        record.anchor_date = record.leave_end_date + timedelta(days=record.tier_days)
        record.leave_end_date = None
        record.leave_request_id = None
        record.rejected_anchor_date = None
        record.status = MonitoringStatus.ACTIVE
        apply_evaluation(record, evaluate_record(record, today, due_window=due_window_days()))
        return OUTCOME_LEAVE_COMPLETED

    changed = apply_evaluation(record, evaluate_record(record, today, due_window=due_window_days()))
    return OUTCOME_UPDATED if changed else OUTCOME_UNCHANGED


def recompute_all(db: Session, *, today: date | None = None) -> RecomputeSummary:
    reference_day = today or local_today()
    summary = RecomputeSummary()

    for monitoring_id in list_monitoring_ids(db):
        summary.scanned += 1
        try:
            outcome = guarded_update(db, monitoring_id, lambda record: recompute_record(record, reference_day))
        except NotFoundError:
            summary.scanned -= 1
            continue
        except Exception:
            db.rollback()
            summary.failed += 1
            logger.exception("monitoring_recompute_failed", extra={"monitoring_id": monitoring_id})
            continue

        if outcome == OUTCOME_UPDATED:
            summary.updated += 1
        elif outcome == OUTCOME_LEAVE_COMPLETED:
            summary.leave_completed += 1
        elif outcome == OUTCOME_PINNED:
            summary.pinned += 1
        else:
            summary.unchanged += 1

    logger.info("monitoring_recompute_completed", extra={"today": reference_day, **summary.to_dict()})
    return summary
