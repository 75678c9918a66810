from __future__ import annotations

import os
import tempfile
import unittest
from datetime import date, timedelta

from sqlalchemy import event

from db_support import add_record, make_file_engine, make_memory_engine, make_session_factory
from roster_monitor.models import EntitlementTier, MonitoringRecord, MonitoringStatus
from roster_monitor.services.approvals import Decision, resolve_monitoring
from roster_monitor.services.monitoring_store import guarded_update
from roster_monitor.services.recompute import recompute_all, recompute_record

TODAY = date(2025, 3, 1)


class RecomputeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = make_memory_engine()
        self.db = make_session_factory(self.engine)()

    def tearDown(self) -> None:
        self.db.close()
        self.engine.dispose()

    def test_statuses_advance_with_the_calendar(self) -> None:
        record = add_record(self.db, anchor_date=TODAY + timedelta(days=12), today=TODAY)
        self.assertEqual(record.status, MonitoringStatus.ACTIVE)

        summary = recompute_all(self.db, today=TODAY + timedelta(days=3))
        self.assertEqual(summary.updated, 1)
        self.db.refresh(record)
        self.assertEqual(record.days_remaining, 9)
        self.assertEqual(record.status, MonitoringStatus.DUE)

        recompute_all(self.db, today=TODAY + timedelta(days=13))
        self.db.refresh(record)
        self.assertEqual(record.days_remaining, -1)
        self.assertEqual(record.status, MonitoringStatus.OVERDUE)

    def test_second_run_on_same_day_writes_nothing(self) -> None:
        add_record(self.db, worker_id="W-1", anchor_date=TODAY + timedelta(days=5), today=TODAY - timedelta(days=1))
        add_record(self.db, worker_id="W-2", anchor_date=None, today=TODAY)
        add_record(self.db, worker_id="W-3", anchor_date=TODAY + timedelta(days=50), today=TODAY - timedelta(days=2))

        first = recompute_all(self.db, today=TODAY)
        self.assertEqual(first.scanned, 3)
        self.assertEqual(first.updated, 2)

        updates: list[str] = []

        def _track(conn, cursor, statement, parameters, context, executemany):  # type: ignore[no-untyped-def]
            if statement.lstrip().upper().startswith("UPDATE"):
                updates.append(statement)

        event.listen(self.engine, "before_cursor_execute", _track)
        try:
            second = recompute_all(self.db, today=TODAY)
        finally:
            event.remove(self.engine, "before_cursor_execute", _track)

        self.assertEqual(second.updated, 0)
        self.assertEqual(second.unchanged, 3)
        self.assertEqual(updates, [])

    def test_on_leave_record_stays_pinned_until_leave_ends(self) -> None:
        record = add_record(self.db, anchor_date=TODAY + timedelta(days=2), today=TODAY)
        record.status = MonitoringStatus.ON_LEAVE
        record.leave_end_date = TODAY + timedelta(days=15)
        self.db.commit()

        summary = recompute_all(self.db, today=TODAY + timedelta(days=10))
        self.assertEqual(summary.pinned, 1)
        self.db.refresh(record)
        self.assertEqual(record.status, MonitoringStatus.ON_LEAVE)

    def test_finished_leave_starts_a_fresh_cycle(self) -> None:
        record = add_record(
            self.db,
            anchor_date=TODAY + timedelta(days=2),
            tier=EntitlementTier.TIER_35,
            today=TODAY,
        )
        leave_end = TODAY + timedelta(days=15)
        record.status = MonitoringStatus.ON_LEAVE
        record.leave_end_date = leave_end
        self.db.commit()

        summary = recompute_all(self.db, today=leave_end + timedelta(days=1))

        self.assertEqual(summary.leave_completed, 1)
        self.db.refresh(record)
        self.assertEqual(record.anchor_date, leave_end + timedelta(days=35))
        self.assertIsNone(record.leave_end_date)
        self.assertEqual(record.days_remaining, 34)
        self.assertEqual(record.status, MonitoringStatus.ACTIVE)

    def test_unscheduled_records_are_untouched(self) -> None:
        record = add_record(self.db, anchor_date=None, today=TODAY)
        recompute_all(self.db, today=TODAY + timedelta(days=30))
        self.db.refresh(record)
        self.assertIsNone(record.days_remaining)
        self.assertEqual(record.status, MonitoringStatus.UNSCHEDULED)
        self.assertIsInstance(record, MonitoringRecord)



class RecomputeApprovalRaceTests(unittest.TestCase):
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

    def test_recompute_write_loses_to_concurrent_approval(self) -> None:
        record = add_record(self.db, anchor_date=TODAY + timedelta(days=5), today=TODAY)
        calls: list[str] = []

        def _approve_elsewhere() -> None:
            other = self.factory()
            try:
                resolve_monitoring(other, record.id, Decision.APPROVE, today=TODAY)
            finally:
                other.close()

        def _recompute(item: MonitoringRecord) -> str:
            if not calls:
                _approve_elsewhere()
            outcome = recompute_record(item, TODAY + timedelta(days=1))
            calls.append(outcome)
            return outcome

        outcome = guarded_update(self.db, record.id, _recompute)

        self.assertEqual(len(calls), 2)
        self.assertEqual(outcome, "pinned")

        check = self.factory()
        try:
            stored = check.get(MonitoringRecord, record.id)
            self.assertEqual(stored.status, MonitoringStatus.ON_LEAVE)
            self.assertIsNotNone(stored.leave_request_id)
            self.assertEqual(stored.days_remaining, 5)
        finally:
            check.close()


if __name__ == "__main__":
    unittest.main()
