from __future__ import annotations

import unittest
from unittest.mock import patch

from roster_monitor.services.schema_guard import REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


_FULL_ENUMS: list[dict[str, object]] = [
    {"name": "monitoring_status", "labels": ["UNSCHEDULED", "ACTIVE", "DUE", "OVERDUE", "ON_LEAVE"]},
    {"name": "entitlement_tier", "labels": ["TIER_70", "TIER_35"]},
]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={name: set(columns) | {"extra_column"} for name, columns in REQUIRED_TABLE_COLUMNS.items()},
            enums=_FULL_ENUMS,
        )

        with patch("roster_monitor.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])
        self.assertEqual(result.to_dict()["issue_count"], 0)

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        columns = {name: set(items) for name, items in REQUIRED_TABLE_COLUMNS.items()}
        columns["leave_roster_monitoring"] = columns["leave_roster_monitoring"] - {"version", "rejected_anchor_date"}
        columns["leave_reminder_dedup"] = {"id"}
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            enums=[{"name": "monitoring_status", "labels": ["ACTIVE", "DUE"]}],
        )

        with patch("roster_monitor.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(""))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:leave_roster_monitoring:rejected_anchor_date,version", result.issues)
        self.assertIn("MISSING_COLUMNS:leave_reminder_dedup:leave_request_id,tier_days", result.issues)
        self.assertTrue(any(item.startswith("MISSING_ENUM_VALUES:monitoring_status:") for item in result.issues))
        self.assertIn("ENUM_NOT_FOUND:entitlement_tier", result.warnings)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_unreadable_table_is_an_issue(self) -> None:
        columns = {name: set(items) for name, items in REQUIRED_TABLE_COLUMNS.items()}
        del columns["leave_reminder_history"]
        fake_inspector = _FakeInspector(columns_by_table=columns, enums=_FULL_ENUMS)

        with patch("roster_monitor.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertEqual(result.issues, ["TABLE_UNREADABLE:leave_reminder_history:KeyError"])


if __name__ == "__main__":
    unittest.main()
