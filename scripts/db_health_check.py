#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, inspect, text


EXPECTED_HEAD = "0001_initial"

INVARIANT_QUERIES: dict[str, tuple[str, str]] = {
    "duplicate_attendance_day": (
        "attendance_records",
        """
        select employee_id, work_date, count(*)
        from attendance_records
        group by employee_id, work_date
        having count(*) > 1
        limit 20
        """,
    ),
    "check_out_before_check_in": (
        "attendance_records",
        """
        select id, employee_id
        from attendance_records
        where check_in_ts_utc is not null
          and check_out_ts_utc is not null
          and check_out_ts_utc < check_in_ts_utc
        limit 20
        """,
    ),
    "multiple_active_field_tasks": (
        "field_tasks",
        """
        select employee_id, count(*)
        from field_tasks
        where status = 'ACTIVE'
        group by employee_id
        having count(*) > 1
        limit 20
        """,
    ),
    "leave_used_above_allotment": (
        "leave_balances",
        """
        select employee_id, year
        from leave_balances
        where used_annual > annual_balance
           or used_sick > sick_balance
           or used_emergency > emergency_balance
        limit 20
        """,
    ),
}


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run(database_url: str | None = None) -> dict:
    if database_url is None:
        load_env_if_exists()
        database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    tables = set(inspect(engine).get_table_names())
    with engine.connect() as conn:
        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        for name, (table_name, query) in INVARIANT_QUERIES.items():
            if table_name not in tables:
                add(name, "warn", {"missing_table": table_name})
                continue
            rows = conn.execute(text(query)).fetchall()
            add(name, "fail" if rows else "ok", {"rows": [list(row) for row in rows]})

    engine.dispose()
    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2, default=str))
