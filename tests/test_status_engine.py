from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

from roster_monitor.models import EntitlementTier, MonitoringRecord, MonitoringStatus
from roster_monitor.services.status_engine import (
    apply_evaluation,
    evaluate,
    evaluate_record,
    local_today,
    status_for_days,
)
from roster_monitor.settings import Settings

TODAY = date(2025, 3, 1)


class StatusForDaysTests(unittest.TestCase):
    def test_boundaries(self) -> None:
        self.assertEqual(status_for_days(None), MonitoringStatus.UNSCHEDULED)
        self.assertEqual(status_for_days(11), MonitoringStatus.ACTIVE)
        self.assertEqual(status_for_days(10), MonitoringStatus.DUE)
        self.assertEqual(status_for_days(0), MonitoringStatus.DUE)
        self.assertEqual(status_for_days(-1), MonitoringStatus.OVERDUE)

    def test_custom_window(self) -> None:
        self.assertEqual(status_for_days(10, due_window=5), MonitoringStatus.ACTIVE)
        self.assertEqual(status_for_days(5, due_window=5), MonitoringStatus.DUE)

    def test_status_only_moves_forward_as_days_pass(self) -> None:
        order = [MonitoringStatus.ACTIVE, MonitoringStatus.DUE, MonitoringStatus.OVERDUE]
        anchor = TODAY + timedelta(days=30)
        previous_rank = 0
        for offset in range(60):
            status = evaluate(anchor, 70, TODAY + timedelta(days=offset)).status
            rank = order.index(status)
            self.assertGreaterEqual(rank, previous_rank)
            previous_rank = rank


class EvaluateTests(unittest.TestCase):
    def test_anchor_in_five_days_is_due(self) -> None:
        result = evaluate(TODAY + timedelta(days=5), 70, TODAY)
        self.assertEqual(result.days_remaining, 5)
        self.assertEqual(result.status, MonitoringStatus.DUE)
        self.assertEqual(result.next_eligible_date, TODAY + timedelta(days=75))

    def test_anchor_far_ahead_is_active(self) -> None:
        result = evaluate(TODAY + timedelta(days=40), 35, TODAY)
        self.assertEqual(result.days_remaining, 40)
        self.assertEqual(result.status, MonitoringStatus.ACTIVE)
        self.assertEqual(result.next_eligible_date, TODAY + timedelta(days=75))

    def test_anchor_passed_is_overdue(self) -> None:
        result = evaluate(TODAY - timedelta(days=3), 70, TODAY)
        self.assertEqual(result.days_remaining, -3)
        self.assertEqual(result.status, MonitoringStatus.OVERDUE)

    def test_missing_anchor_is_unscheduled(self) -> None:
        result = evaluate(None, 70, TODAY)
        self.assertIsNone(result.days_remaining)
        self.assertIsNone(result.next_eligible_date)
        self.assertEqual(result.status, MonitoringStatus.UNSCHEDULED)


class EvaluateRecordTests(unittest.TestCase):
    def _record(self, anchor: date | None, rejected: date | None = None) -> MonitoringRecord:
        return MonitoringRecord(
            worker_id="W-1",
            display_name="Sari",
            reporting_period="2025-03",
            group_tag="Default Group",
            anchor_date=anchor,
            entitlement_tier=EntitlementTier.TIER_70,
            rejected_anchor_date=rejected,
        )

    def test_rejected_window_stays_active_until_overdue(self) -> None:
        anchor = TODAY + timedelta(days=4)
        record = self._record(anchor, rejected=anchor)
        self.assertEqual(evaluate_record(record, TODAY).status, MonitoringStatus.ACTIVE)
        self.assertEqual(evaluate_record(record, anchor + timedelta(days=1)).status, MonitoringStatus.OVERDUE)

    def test_rejection_of_an_older_anchor_does_not_pin(self) -> None:
        anchor = TODAY + timedelta(days=4)
        record = self._record(anchor, rejected=anchor - timedelta(days=70))
        self.assertEqual(evaluate_record(record, TODAY).status, MonitoringStatus.DUE)

    def test_apply_evaluation_reports_changes_only_once(self) -> None:
        record = self._record(TODAY + timedelta(days=5))
        evaluation = evaluate_record(record, TODAY)
        self.assertTrue(apply_evaluation(record, evaluation))
        self.assertFalse(apply_evaluation(record, evaluation))
        self.assertEqual(record.days_remaining, 5)
        self.assertEqual(record.status, MonitoringStatus.DUE)


class LocalTodayTests(unittest.TestCase):
    def test_uses_roster_timezone(self) -> None:
        # 20:00 UTC is already the next day in Jakarta (UTC+7).
        now_utc = datetime(2025, 3, 1, 20, 0, tzinfo=timezone.utc)
        with patch("roster_monitor.services.status_engine.get_settings", return_value=Settings(roster_timezone="Asia/Jakarta")):
            self.assertEqual(local_today(now_utc), date(2025, 3, 2))
        with patch("roster_monitor.services.status_engine.get_settings", return_value=Settings(roster_timezone="UTC")):
            self.assertEqual(local_today(now_utc), date(2025, 3, 1))


if __name__ == "__main__":
    unittest.main()
