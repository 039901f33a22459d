from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from attendance_engine.errors import ValidationFailedError
from attendance_engine.models import AttendanceRecord, Employee, EmployeeStatus, LocationPing
from attendance_engine.services.clock import OrganizationClock, normalize_ts
from attendance_engine.settings import get_settings

PING = "PING"
CHECK_IN = "CHECK_IN"


@dataclass(frozen=True, slots=True)
class EmployeeLocation:
    employee_id: int
    employee_code: str
    full_name: str
    branch_id: int | None
    lat: float | None = None
    lon: float | None = None
    accuracy_m: float | None = None
    ts_utc: datetime | None = None
    source: str | None = None


def _from_ping(employee: Employee, ping: LocationPing) -> EmployeeLocation:
    return EmployeeLocation(
        employee_id=employee.id,
        employee_code=employee.employee_code,
        full_name=employee.full_name,
        branch_id=employee.branch_id,
        lat=ping.lat,
        lon=ping.lon,
        accuracy_m=ping.accuracy_m,
        ts_utc=normalize_ts(ping.ts_utc),
        source=PING,
    )


def latest_location(db: Session, employee_id: int) -> LocationPing | None:
    return db.scalar(
        select(LocationPing)
        .where(LocationPing.employee_id == employee_id)
        .order_by(LocationPing.ts_utc.desc(), LocationPing.id.desc())
        .limit(1)
    )


def latest_locations(
    db: Session,
    *,
    clock: OrganizationClock,
    branch_id: int | None = None,
) -> list[EmployeeLocation]:
    """Most recent ping of every active employee seen within the recency window."""
    cutoff = clock.now_utc() - timedelta(minutes=get_settings().latest_location_window_minutes)
    newest = (
        select(LocationPing.employee_id, func.max(LocationPing.ts_utc).label("max_ts"))
        .where(LocationPing.ts_utc >= cutoff)
        .group_by(LocationPing.employee_id)
        .subquery()
    )
    query = (
        select(LocationPing, Employee)
        .join(
            newest,
            (newest.c.employee_id == LocationPing.employee_id) & (newest.c.max_ts == LocationPing.ts_utc),
        )
        .join(Employee, Employee.id == LocationPing.employee_id)
        .where(Employee.status == EmployeeStatus.ACTIVE)
    )
    if branch_id is not None:
        query = query.where(Employee.branch_id == branch_id)

    seen: set[int] = set()
    locations: list[EmployeeLocation] = []
    for ping, employee in db.execute(query.order_by(Employee.id.asc(), LocationPing.id.desc())).all():
        # Two pings can share a timestamp; keep the newer row.
        if employee.id in seen:
            continue
        seen.add(employee.id)
        locations.append(_from_ping(employee, ping))
    return locations


def location_history(
    db: Session,
    *,
    employee_id: int,
    clock: OrganizationClock,
    start_utc: datetime | None = None,
    end_utc: datetime | None = None,
) -> list[LocationPing]:
    """Pings for one employee in ``[start_utc, end_utc]``, oldest first.

    Missing bounds default to the organization's current local day.
    """
    today = clock.today()
    start = normalize_ts(start_utc) or clock.local_to_utc(today, 0)
    end = normalize_ts(end_utc) or clock.local_to_utc(today + timedelta(days=1), 0)
    if end < start:
        raise ValidationFailedError("INVALID_TIME_RANGE", "end must not be earlier than start.")
    return list(
        db.scalars(
            select(LocationPing)
            .where(
                LocationPing.employee_id == employee_id,
                LocationPing.ts_utc >= start,
                LocationPing.ts_utc <= end,
            )
            .order_by(LocationPing.ts_utc.asc(), LocationPing.id.asc())
        ).all()
    )


def field_employees(
    db: Session,
    *,
    clock: OrganizationClock,
    branch_id: int | None = None,
) -> list[EmployeeLocation]:
    """Employees checked in today and not yet checked out, with their best known position.

    A ping from today wins; otherwise the check-in coordinates are used.
    """
    today = clock.today()
    query = (
        select(AttendanceRecord, Employee)
        .join(Employee, Employee.id == AttendanceRecord.employee_id)
        .where(
            AttendanceRecord.work_date == today,
            AttendanceRecord.check_in_ts_utc.is_not(None),
            AttendanceRecord.check_out_ts_utc.is_(None),
            Employee.status == EmployeeStatus.ACTIVE,
        )
    )
    if branch_id is not None:
        query = query.where(Employee.branch_id == branch_id)

    locations: list[EmployeeLocation] = []
    for record, employee in db.execute(query.order_by(Employee.id.asc())).all():
        ping = latest_location(db, employee.id)
        if ping is not None and clock.local_date_of(ping.ts_utc) == today:
            locations.append(_from_ping(employee, ping))
        elif record.check_in_lat is not None and record.check_in_lon is not None:
            locations.append(
                EmployeeLocation(
                    employee_id=employee.id,
                    employee_code=employee.employee_code,
                    full_name=employee.full_name,
                    branch_id=employee.branch_id,
                    lat=record.check_in_lat,
                    lon=record.check_in_lon,
                    ts_utc=normalize_ts(record.check_in_ts_utc),
                    source=CHECK_IN,
                )
            )
        else:
            locations.append(
                EmployeeLocation(
                    employee_id=employee.id,
                    employee_code=employee.employee_code,
                    full_name=employee.full_name,
                    branch_id=employee.branch_id,
                )
            )
    return locations
