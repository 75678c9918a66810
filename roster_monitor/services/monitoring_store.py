from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any, TypeVar

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from roster_monitor.errors import ConflictError, NotFoundError, ValidationError
from roster_monitor.models import EntitlementTier, MonitoringRecord, MonitoringStatus
from roster_monitor.services.status_engine import apply_evaluation, due_window_days, evaluate_record
from roster_monitor.settings import get_settings

logger = logging.getLogger("roster_monitor.store")

MAX_GUARDED_ATTEMPTS = 3
EDITABLE_FIELDS = frozenset(
    {
        "display_name",
        "unit_tag",
        "group_tag",
        "anchor_date",
        "entitlement_tier",
        "on_site_tag",
    }
)
REQUIRED_FIELDS = frozenset({"display_name", "group_tag", "entitlement_tier"})
CREATE_FIELDS = EDITABLE_FIELDS | {"worker_id", "reporting_period"}

T = TypeVar("T")


def get_monitoring(db: Session, monitoring_id: int) -> MonitoringRecord:
    record = db.get(MonitoringRecord, monitoring_id)
    if record is None:
        raise NotFoundError(f"Monitoring record {monitoring_id} not found")
    return record


def find_monitoring(db: Session, *, worker_id: str, reporting_period: str) -> MonitoringRecord | None:
    return db.scalar(
        select(MonitoringRecord).where(
            MonitoringRecord.worker_id == worker_id,
            MonitoringRecord.reporting_period == reporting_period,
        )
    )


def list_monitoring(db: Session, *, status: MonitoringStatus | None = None) -> list[MonitoringRecord]:
    stmt = select(MonitoringRecord).order_by(
        MonitoringRecord.reporting_period.desc(),
        MonitoringRecord.worker_id.asc(),
        MonitoringRecord.id.asc(),
    )
    if status is not None:
        stmt = stmt.where(MonitoringRecord.status == status)
    return list(db.scalars(stmt).all())


def list_monitoring_ids(db: Session) -> list[int]:
    return list(db.scalars(select(MonitoringRecord.id).order_by(MonitoringRecord.id.asc())).all())


def guarded_update(
    db: Session,
    monitoring_id: int,
    mutate: Callable[[MonitoringRecord], T],
    *,
    max_attempts: int = MAX_GUARDED_ATTEMPTS,
) -> T:
    """Read-modify-write one record under its version counter.

    ``mutate`` receives a freshly loaded record and may also add related rows
    to the session. When another writer bumped the version in between, the
    whole unit is rolled back and ``mutate`` runs again against the new state.
    """
    for attempt in range(1, max_attempts + 1):
        record = db.get(MonitoringRecord, monitoring_id, populate_existing=True)
        if record is None:
            raise NotFoundError(f"Monitoring record {monitoring_id} not found")
        try:
            result = mutate(record)
            db.commit()
        except StaleDataError:
            db.rollback()
            logger.info(
                "monitoring_version_conflict",
                extra={"monitoring_id": monitoring_id, "attempt": attempt},
            )
            continue
        except Exception:
            db.rollback()
            raise
        return result

    raise ConflictError(
        f"Monitoring record {monitoring_id} kept changing; gave up after {max_attempts} attempts",
        code="MONITORING_VERSION_CONFLICT",
    )


def rederive(record: MonitoringRecord, today: date) -> bool:
    if record.status == MonitoringStatus.ON_LEAVE:
        return False
    return apply_evaluation(record, evaluate_record(record, today, due_window=due_window_days()))


def create_monitoring(db: Session, fields: dict[str, Any], *, today: date) -> MonitoringRecord:
    unknown = sorted(key for key in fields if key not in CREATE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown fields: {', '.join(unknown)}")
    worker_id = str(fields.get("worker_id") or "").strip()
    display_name = str(fields.get("display_name") or "").strip()
    reporting_period = str(fields.get("reporting_period") or "").strip()
    if not worker_id or not display_name:
        raise ValidationError("Worker id (NIK) and name are required")
    if not reporting_period:
        raise ValidationError("reporting_period is required")
    try:
        tier = EntitlementTier(fields.get("entitlement_tier") or EntitlementTier.TIER_70)
    except ValueError:
        raise ValidationError(f'Invalid leave option "{fields["entitlement_tier"]}" (expected 70 or 35)') from None

    if find_monitoring(db, worker_id=worker_id, reporting_period=reporting_period) is not None:
        raise ConflictError(
            f"Worker {worker_id} already has a record for {reporting_period}",
            code="MONITORING_EXISTS",
        )

    record = MonitoringRecord(
        worker_id=worker_id,
        display_name=display_name,
        reporting_period=reporting_period,
        unit_tag=fields.get("unit_tag"),
        group_tag=fields.get("group_tag") or get_settings().default_group_tag,
        anchor_date=fields.get("anchor_date"),
        entitlement_tier=tier,
        on_site_tag=fields.get("on_site_tag"),
    )
    rederive(record, today)
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(
            f"Worker {worker_id} already has a record for {reporting_period}",
            code="MONITORING_EXISTS",
        ) from None
    db.refresh(record)
    logger.info("monitoring_created", extra={"monitoring_id": record.id, "worker_id": worker_id})
    return record


def update_monitoring(db: Session, monitoring_id: int, changes: dict[str, Any], *, today: date) -> MonitoringRecord:
    unknown = sorted(key for key in changes if key not in EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited: {', '.join(unknown)}")
    if changes.get("display_name") is not None and not str(changes["display_name"]).strip():
        raise ValidationError("display_name must not be empty")
    if "entitlement_tier" in changes and changes["entitlement_tier"] is not None:
        changes = {**changes, "entitlement_tier": EntitlementTier(changes["entitlement_tier"])}

    def _apply(record: MonitoringRecord) -> MonitoringRecord:
        previous_anchor = record.anchor_date
        for key, value in changes.items():
            if key in REQUIRED_FIELDS and value is None:
                continue
            setattr(record, key, value)
        if record.anchor_date != previous_anchor:
            record.rejected_anchor_date = None
        rederive(record, today)
        return record

    return guarded_update(db, monitoring_id, _apply)


def delete_monitoring(db: Session, monitoring_id: int) -> None:
    record = get_monitoring(db, monitoring_id)
    db.delete(record)
    db.commit()


def clear_all_monitoring(db: Session) -> int:
    result = db.execute(delete(MonitoringRecord))
    db.commit()
    return int(result.rowcount or 0)
