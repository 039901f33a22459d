from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from attendance_engine.errors import NotFoundError
from attendance_engine.models import Employee

logger = logging.getLogger("app.attendance")


@dataclass(frozen=True, slots=True)
class DeviceCheck:
    is_registered: bool
    is_match: bool
    registered_device_id: str | None


def evaluate_device(employee: Employee, device_id: str | None) -> DeviceCheck:
    registered = employee.registered_device_id
    if not registered:
        return DeviceCheck(is_registered=False, is_match=False, registered_device_id=None)
    return DeviceCheck(
        is_registered=True,
        is_match=device_id is not None and device_id == registered,
        registered_device_id=registered,
    )


def _get_employee(db: Session, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    return employee


def check_device(db: Session, employee_id: int, device_id: str | None) -> DeviceCheck:
    return evaluate_device(_get_employee(db, employee_id), device_id)


def bind_device(employee: Employee, device_id: str, *, now_utc: datetime) -> None:
    # Caller owns the commit so the binding lands with the attendance transition.
    employee.registered_device_id = device_id
    employee.device_registered_at = now_utc
    logger.info(
        "device_bound",
        extra={"employee_id": employee.id, "device_prefix": device_id[:8]},
    )


def reset_device(db: Session, employee_id: int) -> Employee:
    employee = _get_employee(db, employee_id)
    previous = employee.registered_device_id
    employee.registered_device_id = None
    employee.device_registered_at = None
    db.commit()
    db.refresh(employee)
    logger.info(
        "device_reset",
        extra={
            "employee_id": employee.id,
            "previous_device_prefix": previous[:8] if previous else None,
        },
    )
    return employee
