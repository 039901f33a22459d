from __future__ import annotations

import unittest
from types import SimpleNamespace
from unittest.mock import patch

from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from attendance_engine.db import Base
from attendance_engine.services.schema_guard import (
    REQUIRED_TABLE_COLUMNS,
    REQUIRED_UNIQUE_KEYS,
    verify_runtime_schema,
)


def _engine():  # type: ignore[no-untyped-def]
    return create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)


def _stamp(engine, version: str | None) -> None:  # type: ignore[no-untyped-def]
    with engine.begin() as connection:
        connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
        if version is not None:
            connection.execute(text("INSERT INTO alembic_version (version_num) VALUES (:v)"), {"v": version})


class SchemaGuardTests(unittest.TestCase):
    def test_complete_schema_passes(self) -> None:
        engine = _engine()
        Base.metadata.create_all(engine)
        _stamp(engine, "0001_initial")

        result = verify_runtime_schema(engine)

        self.assertTrue(result.ok, result.issues)
        self.assertEqual(result.to_dict()["issue_count"], 0)

    def test_empty_database_reports_missing_tables(self) -> None:
        result = verify_runtime_schema(_engine())

        self.assertFalse(result.ok)
        self.assertIn("MISSING_TABLE:attendance_records", result.issues)
        self.assertIn("MISSING_TABLE:alembic_version", result.issues)

    def test_missing_column_and_empty_version_are_reported(self) -> None:
        engine = _engine()
        Base.metadata.create_all(engine)
        _stamp(engine, None)
        with engine.begin() as connection:
            connection.execute(text("ALTER TABLE leave_requests DROP COLUMN balance_year"))

        result = verify_runtime_schema(engine)

        self.assertFalse(result.ok)
        self.assertIn("MISSING_COLUMNS:leave_requests:balance_year", result.issues)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)


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


class _FakePostgresEngine:
    dialect = SimpleNamespace(name="postgresql")

    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, enums: list[dict[str, object]], *, with_unique_keys: bool = True):
        self._enums = enums
        self._with_unique_keys = with_unique_keys

    def get_table_names(self):  # type: ignore[no-untyped-def]
        return list(REQUIRED_TABLE_COLUMNS)

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        return [{"name": item} for item in REQUIRED_TABLE_COLUMNS[table_name]]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums

    def get_unique_constraints(self, table_name: str):  # type: ignore[no-untyped-def]
        if not self._with_unique_keys:
            return []
        return [{"name": f"uq_{table_name}", "column_names": sorted(REQUIRED_UNIQUE_KEYS.get(table_name, ()))}]

    def get_indexes(self, _table_name: str):  # type: ignore[no-untyped-def]
        return []


class PostgresEnumGuardTests(unittest.TestCase):
    def test_missing_enum_value_is_an_issue_and_missing_enum_a_warning(self) -> None:
        fake_inspector = _FakeInspector(
            enums=[
                {"name": "attendance_day_state", "labels": ["NOT_STARTED", "CHECKED_IN", "CHECKED_OUT"]},
                {"name": "leave_status", "labels": ["PENDING", "APPROVED"]},
            ]
        )

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakePostgresEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertEqual(result.issues, ["MISSING_ENUM_VALUES:leave_status:REJECTED"])
        self.assertEqual(result.warnings, ["ENUM_NOT_FOUND:admin_notification_type"])

    def test_missing_unique_keys_are_reported(self) -> None:
        fake_inspector = _FakeInspector(enums=[], with_unique_keys=False)

        with patch("attendance_engine.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakePostgresEngine("0001_initial"))  # type: ignore[arg-type]

        self.assertIn("MISSING_UNIQUE_KEY:attendance_records:employee_id,work_date", result.issues)
        self.assertIn("MISSING_UNIQUE_KEY:leave_balances:employee_id,year", result.issues)


if __name__ == "__main__":
    unittest.main()
