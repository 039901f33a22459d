from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.models import AttendanceRecord, AttendanceStatus, Employee, EmployeeStatus
from attendance_engine.schemas import DailyStatsRead


def daily_stats(db: Session, work_date: date, *, branch_id: int | None = None) -> DailyStatsRead:
    """Count attendance for one day.

    Absence is never stored: an active employee without a checked-in record
    for ``work_date`` counts as absent.
    """
    employee_stmt = select(Employee.id).where(Employee.status == EmployeeStatus.ACTIVE)
    if branch_id is not None:
        employee_stmt = employee_stmt.where(Employee.branch_id == branch_id)
    active_ids = set(db.scalars(employee_stmt).all())

    rows = db.execute(
        select(AttendanceRecord.employee_id, AttendanceRecord.status).where(
            AttendanceRecord.work_date == work_date,
            AttendanceRecord.check_in_ts_utc.is_not(None),
        )
    ).all()

    present = 0
    late = 0
    attended_ids: set[int] = set()
    for employee_id, status in rows:
        if employee_id not in active_ids:
            continue
        attended_ids.add(employee_id)
        if status == AttendanceStatus.LATE:
            late += 1
        else:
            present += 1

    return DailyStatsRead(
        work_date=work_date,
        present=present,
        late=late,
        absent=len(active_ids - attended_ids),
        total=len(attended_ids),
        active_employees=len(active_ids),
    )
