from __future__ import annotations

import os
import tempfile
import unittest

from sqlalchemy import create_engine, text

from attendance_engine.db import Base
from scripts.db_health_check import EXPECTED_HEAD, run


def _statuses(report: dict) -> dict[str, str]:
    return {check["name"]: check["status"] for check in report["checks"]}


class DbHealthCheckTests(unittest.TestCase):
    def setUp(self) -> None:
        handle, self.path = tempfile.mkstemp(suffix=".sqlite3")
        os.close(handle)
        self.url = f"sqlite:///{self.path}"
        engine = create_engine(self.url)
        Base.metadata.create_all(engine)
        with engine.begin() as connection:
            connection.execute(text("CREATE TABLE alembic_version (version_num VARCHAR(32) NOT NULL)"))
            connection.execute(text("INSERT INTO alembic_version (version_num) VALUES (:v)"), {"v": EXPECTED_HEAD})
            connection.execute(
                text("INSERT INTO employees (id, employee_code, full_name, role, status, fingerprint_enabled) "
                     "VALUES (1, 'E1', 'A', 'EMPLOYEE', 'ACTIVE', 1)")
            )
        engine.dispose()
        self.engine = create_engine(self.url)

    def tearDown(self) -> None:
        self.engine.dispose()
        os.remove(self.path)

    def test_clean_database_passes_every_check(self) -> None:
        statuses = _statuses(run(self.url))
        self.assertEqual(statuses["alembic_version"], "ok")
        self.assertEqual(statuses["migration_up_to_date"], "ok")
        self.assertEqual(statuses["multiple_active_field_tasks"], "ok")
        self.assertEqual(statuses["leave_used_above_allotment"], "ok")

    def test_invariant_violations_are_reported(self) -> None:
        with self.engine.begin() as connection:
            # Databases created before the partial index existed can still hold duplicates.
            connection.execute(text("DROP INDEX uq_field_tasks_one_active"))
            for _ in range(2):
                connection.execute(
                    text("INSERT INTO field_tasks (employee_id, work_date, status) VALUES (1, '2026-03-10', 'ACTIVE')")
                )
            connection.execute(
                text(
                    "INSERT INTO leave_balances (employee_id, year, annual_balance, sick_balance, emergency_balance, "
                    "used_annual, used_sick, used_emergency) VALUES (1, 2026, 21, 10, 5, 25, 0, 0)"
                )
            )

        report = run(self.url)
        statuses = _statuses(report)
        self.assertEqual(statuses["multiple_active_field_tasks"], "fail")
        self.assertEqual(statuses["leave_used_above_allotment"], "fail")
        self.assertEqual(statuses["duplicate_attendance_day"], "ok")


if __name__ == "__main__":
    unittest.main()
