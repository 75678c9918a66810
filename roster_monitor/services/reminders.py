from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any

import requests
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from roster_monitor.audit import log_audit
from roster_monitor.errors import TransportError
from roster_monitor.models import AuditActorType, ReminderDedupRecord, ReminderHistoryEntry
from roster_monitor.services.date_normalizer import format_indonesian_date
from roster_monitor.services.leave_requests import LeaveRequestStore, SqlLeaveRequestStore
from roster_monitor.services.status_engine import local_today
from roster_monitor.services.workers import SqlWorkerDirectory, WorkerDirectory
from roster_monitor.settings import get_settings, is_notification_gateway_configured

logger = logging.getLogger("roster_monitor.reminders")

REMINDER_TIERS: tuple[int, ...] = (7, 3, 1)
_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True, slots=True)
class DeliveryResult:
    success: bool
    detail: str | None = None


class NotificationGateway:
    configured: bool = False

    def send(self, destination: str, message: str) -> DeliveryResult:
        raise NotImplementedError


class LoggingNotificationGateway(NotificationGateway):
    """Stand-in used when no transport is configured; never claims delivery."""

    def send(self, destination: str, message: str) -> DeliveryResult:
        logger.info(
            "notification_gateway_placeholder_send",
            extra={"destination": destination, "body": message},
        )
        return DeliveryResult(success=False, detail="not_configured")


def format_phone_number(phone: str) -> str:
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        raise TransportError("Destination phone number is empty", code="INVALID_DESTINATION")
    if digits.startswith("0"):
        digits = "62" + digits[1:]
    if not digits.startswith("62"):
        digits = "62" + digits
    return digits


class HttpNotificationGateway(NotificationGateway):
    """WhatsApp delivery through a form-encoded HTTP send endpoint."""

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str | None,
        timeout_seconds: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = (api_key or "").strip()
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.configured = bool(self.api_url and self.api_key)

    def send(self, destination: str, message: str) -> DeliveryResult:
        if not self.configured:
            return DeliveryResult(success=False, detail="not_configured")

        number = format_phone_number(destination)
        try:
            response = self.session.post(
                self.api_url,
                data={
                    "apikey": self.api_key,
                    "number": number,
                    "text": message,
                    "action": "send",
                },
                timeout=self.timeout_seconds,
            )
        except requests.Timeout as exc:
            raise TransportError(f"Notification gateway timed out after {self.timeout_seconds}s") from exc
        except requests.RequestException as exc:
            raise TransportError(f"Notification gateway request failed: {exc}") from exc

        if response.status_code >= 400:
            raise TransportError(f"Notification gateway returned HTTP {response.status_code}")

        try:
            body: Any = response.json()
        except ValueError:
            return DeliveryResult(success=True, detail=response.text[:200] or None)

        if isinstance(body, dict) and body.get("status") in (False, "false", "error", "failed"):
            return DeliveryResult(success=False, detail=str(body.get("message") or body.get("status"))[:200])
        return DeliveryResult(success=True)


def build_notification_gateway() -> NotificationGateway:
    settings = get_settings()
    if not is_notification_gateway_configured():
        return LoggingNotificationGateway()
    return HttpNotificationGateway(
        api_url=settings.notification_api_url,
        api_key=settings.notification_api_key,
        timeout_seconds=float(settings.notification_timeout_seconds),
    )


@dataclass(frozen=True, slots=True)
class PendingReminder:
    leave_request_id: int
    worker_id: str
    worker_name: str
    destination: str
    start_date: date
    end_date: date
    tier_days: int


@dataclass(slots=True)
class ReminderRunSummary:
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"sent": self.sent, "failed": self.failed, "skipped": self.skipped}


def reminder_tier_for(days_until_start: int) -> int | None:
    if days_until_start in REMINDER_TIERS:
        return days_until_start
    return None


def render_reminder_message(reminder: PendingReminder) -> str:
    return (
        f"Pengingat Cuti: {reminder.worker_name}, cuti Anda akan dimulai {reminder.tier_days} hari lagi "
        f"({format_indonesian_date(reminder.start_date)} - {format_indonesian_date(reminder.end_date)})"
    )


def _reminder_already_handled(db: Session, *, leave_request_id: int, tier_days: int) -> bool:
    existing = db.scalar(
        select(ReminderDedupRecord.id).where(
            ReminderDedupRecord.leave_request_id == leave_request_id,
            ReminderDedupRecord.tier_days == tier_days,
        )
    )
    return existing is not None


def _collect_due_reminders(
    db: Session,
    *,
    today: date,
    leave_store: LeaveRequestStore,
    worker_directory: WorkerDirectory,
) -> tuple[list[PendingReminder], int]:
    pending: list[PendingReminder] = []
    skipped = 0
    for leave in leave_store.list_approved_upcoming(today):
        tier_days = reminder_tier_for((leave.start_date - today).days)
        if tier_days is None:
            continue
        if _reminder_already_handled(db, leave_request_id=leave.id, tier_days=tier_days):
            continue

        worker = worker_directory.get_worker(leave.worker_id)
        destination = (worker.phone if worker is not None else None) or leave.phone_number
        if not destination:
            skipped += 1
            logger.info(
                "reminder_skipped_no_destination",
                extra={"leave_request_id": leave.id, "worker_id": leave.worker_id, "tier_days": tier_days},
            )
            continue

        pending.append(
            PendingReminder(
                leave_request_id=leave.id,
                worker_id=leave.worker_id,
                worker_name=worker.name if worker is not None else leave.worker_name,
                destination=destination,
                start_date=leave.start_date,
                end_date=leave.end_date,
                tier_days=tier_days,
            )
        )
    return pending, skipped


def check_upcoming_reminders(
    db: Session,
    *,
    today: date | None = None,
    leave_store: LeaveRequestStore | None = None,
    worker_directory: WorkerDirectory | None = None,
) -> list[PendingReminder]:
    pending, _skipped = _collect_due_reminders(
        db,
        today=today or local_today(),
        leave_store=leave_store or SqlLeaveRequestStore(db),
        worker_directory=worker_directory or SqlWorkerDirectory(db),
    )
    return pending


def _safe_send(gateway: NotificationGateway, reminder: PendingReminder, message: str) -> DeliveryResult:
    try:
        return gateway.send(reminder.destination, message)
    except Exception as exc:
        logger.exception(
            "reminder_gateway_exception",
            extra={"leave_request_id": reminder.leave_request_id, "worker_id": reminder.worker_id},
        )
        return DeliveryResult(success=False, detail=str(exc)[:500])


def send_due_reminders(
    db: Session,
    gateway: NotificationGateway,
    *,
    today: date | None = None,
    leave_store: LeaveRequestStore | None = None,
    worker_directory: WorkerDirectory | None = None,
) -> ReminderRunSummary:
    """Send every reminder tier that falls due today exactly once.

    Each tier is claimed with its dedup row before the gateway is called, so
    overlapping runs cannot both deliver it. A failed send releases the claim
    and is picked up again by the next run instead of being retried inside
    this one.
    """
    reference_day = today or local_today()
    pending, skipped = _collect_due_reminders(
        db,
        today=reference_day,
        leave_store=leave_store or SqlLeaveRequestStore(db),
        worker_directory=worker_directory or SqlWorkerDirectory(db),
    )
    summary = ReminderRunSummary(skipped=skipped)

    for reminder in pending:
        message = render_reminder_message(reminder)
        claim = ReminderDedupRecord(leave_request_id=reminder.leave_request_id, tier_days=reminder.tier_days)
        db.add(claim)
        try:
            db.commit()
        except IntegrityError:
            # Another run claimed this tier after it was collected.
            db.rollback()
            summary.skipped += 1
            logger.warning(
                "reminder_already_claimed",
                extra={"leave_request_id": reminder.leave_request_id, "tier_days": reminder.tier_days},
            )
            continue

        result = _safe_send(gateway, reminder, message)
        if not result.success:
            db.delete(claim)
            db.commit()
            summary.failed += 1
            logger.warning(
                "reminder_send_failed",
                extra={
                    "leave_request_id": reminder.leave_request_id,
                    "worker_id": reminder.worker_id,
                    "tier_days": reminder.tier_days,
                    "detail": result.detail,
                },
            )
            continue

        db.add(
            ReminderHistoryEntry(
                leave_request_id=reminder.leave_request_id,
                worker_id=reminder.worker_id,
                tier_days=reminder.tier_days,
                sent_at=datetime.now(timezone.utc),
                destination=reminder.destination,
                message=message,
            )
        )
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id="leave_reminder_runner",
            action="LEAVE_REMINDER_SENT",
            success=True,
            entity_type="leave_request",
            entity_id=str(reminder.leave_request_id),
            details={"worker_id": reminder.worker_id, "tier_days": reminder.tier_days},
            commit=False,
        )
        db.commit()
        summary.sent += 1

    logger.info("leave_reminder_run_completed", extra={"today": reference_day, **summary.to_dict()})
    return summary


def get_reminder_history(db: Session, *, limit: int | None = None) -> list[ReminderHistoryEntry]:
    stmt = select(ReminderHistoryEntry).order_by(ReminderHistoryEntry.sent_at.desc(), ReminderHistoryEntry.id.desc())
    if limit is not None:
        stmt = stmt.limit(limit)
    return list(db.scalars(stmt).all())
