from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.errors import ConflictError
from attendance_engine.models import (
    AdminNotificationType,
    BranchNotificationType,
    Employee,
    EmployeeStatus,
    FieldTask,
    FieldTaskStatus,
    VerificationMethod,
)
from attendance_engine.services.clock import OrganizationClock
from attendance_engine.services.geofence import validate_coordinates
from attendance_engine.services.notifications import Notifier, admin_event, branch_event, safe_emit

logger = logging.getLogger("app.attendance")

NO_ACTIVE_TASK_ID = 0


@dataclass(frozen=True, slots=True)
class FieldTaskResult:
    task_id: int
    status: FieldTaskStatus | None


def get_active_task(db: Session, employee_id: int) -> FieldTask | None:
    return db.scalar(
        select(FieldTask)
        .where(
            FieldTask.employee_id == employee_id,
            FieldTask.status == FieldTaskStatus.ACTIVE,
        )
        .order_by(FieldTask.id.desc())
    )


def record_field_task(
    db: Session,
    *,
    employee: Employee,
    is_return: bool,
    description: str | None,
    lat: float,
    lon: float,
    method: VerificationMethod,
    clock: OrganizationClock,
    notifier: Notifier,
) -> FieldTaskResult:
    validate_coordinates(lat, lon)
    if is_return:
        return _complete_active_task(db, employee=employee, lat=lat, lon=lon, method=method, clock=clock)
    return _start_task(
        db,
        employee=employee,
        description=description,
        lat=lat,
        lon=lon,
        method=method,
        clock=clock,
        notifier=notifier,
    )


def _start_task(
    db: Session,
    *,
    employee: Employee,
    description: str | None,
    lat: float,
    lon: float,
    method: VerificationMethod,
    clock: OrganizationClock,
    notifier: Notifier,
) -> FieldTaskResult:
    if get_active_task(db, employee.id) is not None:
        raise ConflictError("FIELD_TASK_ALREADY_ACTIVE", "A field task is already active for this employee.")

    normalized_description = (description or "").strip() or None
    task = FieldTask(
        employee_id=employee.id,
        work_date=clock.today(),
        description=normalized_description,
        start_ts_utc=clock.now_utc(),
        start_lat=lat,
        start_lon=lon,
        start_method=method,
        status=FieldTaskStatus.ACTIVE,
    )
    db.add(task)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "FIELD_TASK_ALREADY_ACTIVE",
            "A field task is already active for this employee.",
        ) from exc
    db.refresh(task)

    logger.info(
        "field_task_started",
        extra={"employee_id": employee.id, "task_id": task.id},
    )

    detail = f": {normalized_description}" if normalized_description else ""
    message = f"Employee {employee.full_name} ({employee.employee_code}) started a field task{detail}"
    safe_emit(
        notifier,
        admin_event(AdminNotificationType.SYSTEM, "Field task started", message, employee_id=employee.id),
    )
    safe_emit(
        notifier,
        branch_event(
            employee.branch_id,
            BranchNotificationType.GENERAL,
            "Field task started",
            message,
            employee_id=employee.id,
        ),
    )
    return FieldTaskResult(task_id=task.id, status=task.status)


def _complete_active_task(
    db: Session,
    *,
    employee: Employee,
    lat: float,
    lon: float,
    method: VerificationMethod,
    clock: OrganizationClock,
) -> FieldTaskResult:
    task = get_active_task(db, employee.id)
    if task is None:
        logger.info("field_task_return_without_active", extra={"employee_id": employee.id})
        return FieldTaskResult(task_id=NO_ACTIVE_TASK_ID, status=None)

    result = db.execute(
        update(FieldTask)
        .where(
            FieldTask.id == task.id,
            FieldTask.status == FieldTaskStatus.ACTIVE,
        )
        .values(
            end_ts_utc=clock.now_utc(),
            end_lat=lat,
            end_lon=lon,
            end_method=method,
            status=FieldTaskStatus.COMPLETED,
        )
    )
    if result.rowcount == 0:
        db.rollback()
        return FieldTaskResult(task_id=NO_ACTIVE_TASK_ID, status=None)
    db.commit()
    db.refresh(task)

    logger.info(
        "field_task_completed",
        extra={"employee_id": employee.id, "task_id": task.id},
    )
    return FieldTaskResult(task_id=task.id, status=task.status)


def list_today_tasks(db: Session, *, employee: Employee, clock: OrganizationClock) -> list[FieldTask]:
    return list(
        db.scalars(
            select(FieldTask)
            .where(
                FieldTask.employee_id == employee.id,
                FieldTask.work_date == clock.today(),
            )
            .order_by(FieldTask.id.asc())
        ).all()
    )


def list_branch_tasks(db: Session, *, work_date: date, branch_id: int | None = None) -> list[FieldTask]:
    query = (
        select(FieldTask)
        .join(Employee, Employee.id == FieldTask.employee_id)
        .where(
            FieldTask.work_date == work_date,
            Employee.status == EmployeeStatus.ACTIVE,
        )
    )
    if branch_id is not None:
        query = query.where(Employee.branch_id == branch_id)
    return list(db.scalars(query.order_by(FieldTask.start_ts_utc.desc(), FieldTask.id.desc())).all())
