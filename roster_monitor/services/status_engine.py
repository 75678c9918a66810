from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from roster_monitor.models import EntitlementTier, MonitoringRecord, MonitoringStatus
from roster_monitor.settings import get_settings

DEFAULT_DUE_WINDOW_DAYS = 10
DEFAULT_TIMEZONE = "Asia/Jakarta"


@dataclass(frozen=True, slots=True)
class StatusEvaluation:
    days_remaining: int | None
    status: MonitoringStatus
    next_eligible_date: date | None


def roster_timezone() -> ZoneInfo:
    raw_name = (get_settings().roster_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except Exception:
        return ZoneInfo(DEFAULT_TIMEZONE)


def local_today(now_utc: datetime | None = None) -> date:
    reference = now_utc or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    return reference.astimezone(roster_timezone()).date()


def due_window_days() -> int:
    return max(0, int(get_settings().due_window_days))


def days_between(anchor_date: date, today: date) -> int:
    return (anchor_date - today).days


def next_eligible_date(anchor_date: date | None, tier_days: int) -> date | None:
    if anchor_date is None:
        return None
    return anchor_date + timedelta(days=tier_days)


def status_for_days(days_remaining: int | None, *, due_window: int = DEFAULT_DUE_WINDOW_DAYS) -> MonitoringStatus:
    if days_remaining is None:
        return MonitoringStatus.UNSCHEDULED
    if days_remaining > due_window:
        return MonitoringStatus.ACTIVE
    if days_remaining >= 0:
        return MonitoringStatus.DUE
    return MonitoringStatus.OVERDUE


def evaluate(
    anchor_date: date | None,
    tier_days: int,
    today: date,
    *,
    due_window: int = DEFAULT_DUE_WINDOW_DAYS,
) -> StatusEvaluation:
    if anchor_date is None:
        return StatusEvaluation(days_remaining=None, status=MonitoringStatus.UNSCHEDULED, next_eligible_date=None)
    remaining = days_between(anchor_date, today)
    return StatusEvaluation(
        days_remaining=remaining,
        status=status_for_days(remaining, due_window=due_window),
        next_eligible_date=next_eligible_date(anchor_date, tier_days),
    )


def evaluate_record(
    record: MonitoringRecord,
    today: date,
    *,
    due_window: int = DEFAULT_DUE_WINDOW_DAYS,
) -> StatusEvaluation:
    """Evaluate a stored record, honouring a rejection of its current window.

    A record whose due window was rejected stays ``ACTIVE`` for that anchor
    date; it can still turn ``OVERDUE`` once the anchor passes.
    """
    tier = record.entitlement_tier or EntitlementTier.TIER_70
    evaluation = evaluate(record.anchor_date, tier.days, today, due_window=due_window)
    if (
        evaluation.status == MonitoringStatus.DUE
        and record.rejected_anchor_date is not None
        and record.rejected_anchor_date == record.anchor_date
    ):
        return StatusEvaluation(
            days_remaining=evaluation.days_remaining,
            status=MonitoringStatus.ACTIVE,
            next_eligible_date=evaluation.next_eligible_date,
        )
    return evaluation


def apply_evaluation(record: MonitoringRecord, evaluation: StatusEvaluation) -> bool:
    """Copy derived fields onto ``record``; returns whether anything changed."""
    changed = False
    if record.days_remaining != evaluation.days_remaining:
        record.days_remaining = evaluation.days_remaining
        changed = True
    if record.status != evaluation.status:
        record.status = evaluation.status
        changed = True
    if record.next_eligible_date != evaluation.next_eligible_date:
        record.next_eligible_date = evaluation.next_eligible_date
        changed = True
    return changed
