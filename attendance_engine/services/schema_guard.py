from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "employees": {"id", "employee_code", "status", "registered_device_id", "device_registered_at"},
    "work_zones": {"id", "lat", "lon", "radius_m", "is_active"},
    "attendance_records": {"id", "employee_id", "work_date", "check_in_ts_utc", "check_out_ts_utc", "day_state"},
    "field_tasks": {"id", "employee_id", "status"},
    "attendance_modifications": {"id", "attendance_id", "modification_type", "reason"},
    "leave_requests": {"id", "employee_id", "leave_type", "total_days", "balance_year", "status"},
    "leave_balances": {"id", "employee_id", "year", "used_annual", "used_sick", "used_emergency"},
    "alembic_version": {"version_num"},
}

# Check-in and balance creation rely on these to reject concurrent duplicates.
REQUIRED_UNIQUE_KEYS: dict[str, frozenset[str]] = {
    "attendance_records": frozenset({"employee_id", "work_date"}),
    "leave_balances": frozenset({"employee_id", "year"}),
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "attendance_day_state": {"NOT_STARTED", "CHECKED_IN", "CHECKED_OUT"},
    "leave_status": {"PENDING", "APPROVED", "REJECTED"},
    "admin_notification_type": {"DEVICE_MISMATCH", "OUTSIDE_ZONE", "LEFT_ZONE"},
}


def _unique_column_sets(inspector: Any, table_name: str) -> list[frozenset[str]]:
    column_sets = [frozenset(item.get("column_names") or ()) for item in inspector.get_unique_constraints(table_name)]
    column_sets.extend(
        frozenset(item.get("column_names") or ())
        for item in inspector.get_indexes(table_name)
        if item.get("unique")
    )
    return column_sets


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    existing_tables = set(inspector.get_table_names())
    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        if table_name not in existing_tables:
            issues.append(f"MISSING_TABLE:{table_name}")
            continue
        column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, key_columns in REQUIRED_UNIQUE_KEYS.items():
        if table_name not in existing_tables:
            continue
        if key_columns not in _unique_column_sets(inspector, table_name):
            issues.append(f"MISSING_UNIQUE_KEY:{table_name}:{','.join(sorted(key_columns))}")

    # Native enum types only exist on PostgreSQL.
    if engine.dialect.name == "postgresql":
        enum_values_by_name: dict[str, set[str]] = {}
        for enum_item in inspector.get_enums() or []:
            name = str(enum_item.get("name") or "").strip()
            labels = enum_item.get("labels")
            if name and isinstance(labels, list):
                enum_values_by_name[name] = {str(label) for label in labels}

        for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
            if enum_name not in enum_values_by_name:
                warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
                continue
            missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
            if missing_values:
                issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    if "alembic_version" in existing_tables:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
        if not (str(row).strip() if row is not None else ""):
            issues.append("ALEMBIC_VERSION_EMPTY")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
