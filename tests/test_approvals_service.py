from __future__ import annotations

import os
import tempfile
import unittest
from datetime import date, timedelta

from sqlalchemy import func, select

from db_support import add_record, add_worker, make_file_engine, make_memory_engine, make_session_factory
from roster_monitor.errors import NotFoundError
from roster_monitor.models import AuditLog, EntitlementTier, LeaveRequest, LeaveStatus, MonitoringStatus
from roster_monitor.services.approvals import (
    ApprovalOverrides,
    Decision,
    ResolutionOutcome,
    list_pending_approvals,
    resolve_monitoring,
)
from roster_monitor.services.leave_requests import LeaveRequestDraft, SqlLeaveRequestStore
from roster_monitor.services.monitoring_store import guarded_update
from roster_monitor.services.recompute import recompute_all

TODAY = date(2025, 3, 1)


class ResolveMonitoringTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_memory_engine()
        self.db = make_session_factory(self.engine)()
        add_worker(self.db, "W-001", "Budi Santoso", phone="0812-3456-7890")

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def _leave_count(self) -> int:
        return int(self.db.scalar(select(func.count()).select_from(LeaveRequest)) or 0)

    def test_approve_creates_leave_and_pins_record(self) -> None:
        record = add_record(self.db, anchor_date=TODAY + timedelta(days=5), today=TODAY)

        result = resolve_monitoring(self.db, record.id, Decision.APPROVE, today=TODAY)

        self.assertEqual(result.outcome, ResolutionOutcome.APPROVED)
        self.assertTrue(result.applied)
        self.db.refresh(record)
        self.assertEqual(record.status, MonitoringStatus.ON_LEAVE)
        self.assertEqual(record.leave_request_id, result.leave_request_id)
        self.assertEqual(record.leave_end_date, TODAY + timedelta(days=18))

        leave = self.db.get(LeaveRequest, result.leave_request_id)
        self.assertEqual(leave.status, LeaveStatus.APPROVED)
        self.assertEqual(leave.start_date, TODAY + timedelta(days=5))
        self.assertEqual(leave.end_date, TODAY + timedelta(days=18))
        self.assertEqual(leave.leave_type, "Cuti Tahunan")
        self.assertEqual(leave.phone_number, "0812-3456-7890")
        self.assertEqual(leave.monitoring_id, record.id)

        actions = list(self.db.scalars(select(AuditLog.action)).all())
        self.assertIn("MONITORING_LEAVE_APPROVED", actions)

    def test_second_approval_is_a_no_op(self) -> None:
        record = add_record(self.db, anchor_date=TODAY + timedelta(days=5), today=TODAY)

        first = resolve_monitoring(self.db, record.id, Decision.APPROVE, today=TODAY)
        second = resolve_monitoring(self.db, record.id, Decision.APPROVE, today=TODAY)

        self.assertEqual(first.outcome, ResolutionOutcome.APPROVED)
        self.assertEqual(second.outcome, ResolutionOutcome.ALREADY_RESOLVED)
        self.assertFalse(second.applied)
        self.assertEqual(self._leave_count(), 1)

    def test_overrides_replace_proposed_values(self) -> None:
        record = add_record(
            self.db,
            anchor_date=TODAY + timedelta(days=5),
            tier=EntitlementTier.TIER_35,
            today=TODAY,
        )
        overrides = ApprovalOverrides(
            start_date=TODAY + timedelta(days=7),
            end_date=TODAY + timedelta(days=9),
            reason="Pulang kampung",
        )

        result = resolve_monitoring(self.db, record.id, Decision.APPROVE, overrides, today=TODAY)

        leave = self.db.get(LeaveRequest, result.leave_request_id)
        self.assertEqual(leave.start_date, TODAY + timedelta(days=7))
        self.assertEqual(leave.end_date, TODAY + timedelta(days=9))
        self.assertEqual(leave.leave_type, "Cuti Khusus")
        self.assertEqual(leave.reason, "Pulang kampung")

    def test_reject_keeps_record_active_for_that_window(self) -> None:
        anchor = TODAY + timedelta(days=5)
        record = add_record(self.db, anchor_date=anchor, today=TODAY)

        result = resolve_monitoring(self.db, record.id, Decision.REJECT, today=TODAY)

        self.assertEqual(result.outcome, ResolutionOutcome.REJECTED)
        self.assertEqual(self._leave_count(), 0)
        recompute_all(self.db, today=TODAY + timedelta(days=1))
        self.db.refresh(record)
        self.assertEqual(record.status, MonitoringStatus.ACTIVE)
        self.assertEqual(record.rejected_anchor_date, anchor)

        again = resolve_monitoring(self.db, record.id, Decision.REJECT, today=TODAY + timedelta(days=1))
        self.assertEqual(again.outcome, ResolutionOutcome.ALREADY_RESOLVED)

    def test_record_outside_due_window_is_not_resolved(self) -> None:
        record = add_record(self.db, anchor_date=TODAY + timedelta(days=40), today=TODAY)

        result = resolve_monitoring(self.db, record.id, Decision.APPROVE, today=TODAY)

        self.assertEqual(result.outcome, ResolutionOutcome.NOT_DUE)
        self.assertEqual(result.status, MonitoringStatus.ACTIVE)
        self.assertEqual(self._leave_count(), 0)

    def test_unknown_record_raises_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            resolve_monitoring(self.db, 9999, Decision.APPROVE, today=TODAY)

    def test_pending_view_lists_due_records_with_proposal(self) -> None:
        due = add_record(self.db, worker_id="W-001", anchor_date=TODAY + timedelta(days=3), today=TODAY)
        add_record(self.db, worker_id="W-002", anchor_date=TODAY + timedelta(days=30), today=TODAY)

        pending = list_pending_approvals(self.db, today=TODAY)

        self.assertEqual(len(pending), 1)
        record, draft = pending[0]
        self.assertEqual(record.id, due.id)
        self.assertEqual(draft.worker_name, "Budi Santoso")
        self.assertEqual(draft.start_date, TODAY + timedelta(days=3))
        self.assertEqual(draft.end_date, TODAY + timedelta(days=16))
        self.assertIn("70 hari kerja", draft.reason or "")


class _InterferingLeaveStore(SqlLeaveRequestStore):
    """Lets a second session commit a change to the record mid-approval."""

    def __init__(self, db, interfere) -> None:  # type: ignore[no-untyped-def]
        super().__init__(db)
        self.interfere = interfere
        self.calls = 0

    def create_leave_request(self, draft: LeaveRequestDraft) -> LeaveRequest:
        self.calls += 1
        if self.calls == 1:
            self.interfere()
        return super().create_leave_request(draft)


class ConcurrentWriteTests(unittest.TestCase):
    def setUp(self) -> None:
        handle, self.path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(handle)
        self.engine = make_file_engine(self.path)
        self.factory = make_session_factory(self.engine)
        self.db = self.factory()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()
        os.remove(self.path)

    def test_approval_retries_after_concurrent_write(self) -> None:
        record = add_record(self.db, anchor_date=TODAY + timedelta(days=5), today=TODAY)

        def _concurrent_edit() -> None:
            other = self.factory()
            try:
                guarded_update(other, record.id, lambda item: setattr(item, "unit_tag", "LB-99"))
            finally:
                other.close()

        store = _InterferingLeaveStore(self.db, _concurrent_edit)
        result = resolve_monitoring(self.db, record.id, Decision.APPROVE, leave_store=store, today=TODAY)

        self.assertEqual(result.outcome, ResolutionOutcome.APPROVED)
        self.assertEqual(store.calls, 2)
        self.assertEqual(int(self.db.scalar(select(func.count()).select_from(LeaveRequest)) or 0), 1)

        check = self.factory()
        try:
            stored = check.get(type(record), record.id)
            self.assertEqual(stored.status, MonitoringStatus.ON_LEAVE)
            self.assertEqual(stored.unit_tag, "LB-99")
            self.assertEqual(stored.leave_request_id, result.leave_request_id)
        finally:
            check.close()


if __name__ == "__main__":
    unittest.main()
