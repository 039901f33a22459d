from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from attendance_engine.models import (
    AttendanceModification,
    AttendanceRecord,
    AttendanceStatus,
    DayState,
    Employee,
    EmployeeRole,
    ModificationType,
)
from attendance_engine.schemas import AttendanceManualAddRequest, AttendanceModifyRequest
from attendance_engine.security import Identity
from attendance_engine.services.clock import normalize_ts

logger = logging.getLogger("app.corrections")

CORRECTION_ROLES = frozenset({EmployeeRole.ADMIN, EmployeeRole.BRANCH_MANAGER})


def derive_day_state(check_in_ts_utc: datetime | None, check_out_ts_utc: datetime | None) -> DayState:
    if check_in_ts_utc is None:
        return DayState.NOT_STARTED
    if check_out_ts_utc is None:
        return DayState.CHECKED_IN
    return DayState.CHECKED_OUT


def _require_reason(reason: str | None) -> str:
    normalized = (reason or "").strip()
    if not normalized:
        raise ValidationFailedError("REASON_REQUIRED", "A reason is required for attendance corrections.")
    return normalized


def _ensure_actor_may_correct(db: Session, actor: Identity, employee_id: int) -> None:
    if actor.role not in CORRECTION_ROLES:
        raise ForbiddenError("INSUFFICIENT_ROLE", "Only administrators or branch managers may correct attendance.")
    if actor.role == EmployeeRole.BRANCH_MANAGER:
        employee = db.get(Employee, employee_id)
        if employee is None or actor.branch_id is None or employee.branch_id != actor.branch_id:
            raise ForbiddenError("INSUFFICIENT_ROLE", "Branch managers may only correct records in their own branch.")


def _validate_range(check_in_ts_utc: datetime | None, check_out_ts_utc: datetime | None) -> None:
    if check_in_ts_utc is None and check_out_ts_utc is not None:
        raise ValidationFailedError("INVALID_TIME_RANGE", "check_out requires a check_in.")
    if check_in_ts_utc is not None and check_out_ts_utc is not None and check_out_ts_utc < check_in_ts_utc:
        raise ValidationFailedError("INVALID_TIME_RANGE", "check_out must not be earlier than check_in.")


def _get_record(db: Session, attendance_id: int) -> AttendanceRecord:
    record = db.get(AttendanceRecord, attendance_id)
    if record is None:
        raise NotFoundError("ATTENDANCE_NOT_FOUND", "Attendance record not found.")
    return record


def modify_record(
    db: Session,
    *,
    attendance_id: int,
    payload: AttendanceModifyRequest,
    actor: Identity,
) -> AttendanceRecord:
    reason = _require_reason(payload.reason)
    record = _get_record(db, attendance_id)
    _ensure_actor_may_correct(db, actor, record.employee_id)

    previous_in = normalize_ts(record.check_in_ts_utc)
    previous_out = normalize_ts(record.check_out_ts_utc)
    new_in = normalize_ts(payload.check_in_ts_utc) or previous_in
    new_out = normalize_ts(payload.check_out_ts_utc) or previous_out
    _validate_range(new_in, new_out)

    db.add(
        AttendanceModification(
            attendance_id=record.id,
            modified_by=actor.user_id,
            modification_type=ModificationType.EDIT,
            previous_check_in=previous_in,
            previous_check_out=previous_out,
            new_check_in=new_in,
            new_check_out=new_out,
            reason=reason,
        )
    )
    record.check_in_ts_utc = new_in
    record.check_out_ts_utc = new_out
    record.day_state = derive_day_state(new_in, new_out)
    if payload.status is not None:
        record.status = payload.status
    if payload.notes is not None:
        record.notes = payload.notes
    db.commit()
    db.refresh(record)

    logger.info(
        "attendance_modified",
        extra={"record_id": record.id, "employee_id": record.employee_id, "actor_id": actor.user_id},
    )
    return record


def add_manual_record(
    db: Session,
    *,
    payload: AttendanceManualAddRequest,
    actor: Identity,
) -> AttendanceRecord:
    reason = _require_reason(payload.reason)
    if db.get(Employee, payload.employee_id) is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    _ensure_actor_may_correct(db, actor, payload.employee_id)

    check_in_ts = normalize_ts(payload.check_in_ts_utc)
    check_out_ts = normalize_ts(payload.check_out_ts_utc)
    _validate_range(check_in_ts, check_out_ts)

    existing = db.scalar(
        select(AttendanceRecord.id).where(
            AttendanceRecord.employee_id == payload.employee_id,
            AttendanceRecord.work_date == payload.work_date,
        )
    )
    if existing is not None:
        raise ConflictError("RECORD_EXISTS", "An attendance record already exists for this date.")

    record = AttendanceRecord(
        employee_id=payload.employee_id,
        work_date=payload.work_date,
        check_in_ts_utc=check_in_ts,
        check_out_ts_utc=check_out_ts,
        status=AttendanceStatus.PRESENT,
        day_state=derive_day_state(check_in_ts, check_out_ts),
        notes=payload.notes,
    )
    db.add(record)
    try:
        db.flush()
        db.add(
            AttendanceModification(
                attendance_id=record.id,
                modified_by=actor.user_id,
                modification_type=ModificationType.ADD,
                previous_check_in=None,
                previous_check_out=None,
                new_check_in=check_in_ts,
                new_check_out=check_out_ts,
                reason=reason,
            )
        )
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError("RECORD_EXISTS", "An attendance record already exists for this date.") from exc
    db.refresh(record)

    logger.info(
        "attendance_manual_added",
        extra={"record_id": record.id, "employee_id": record.employee_id, "actor_id": actor.user_id},
    )
    return record


def reset_checkout(
    db: Session,
    *,
    attendance_id: int,
    reason: str,
    actor: Identity,
) -> AttendanceRecord:
    normalized_reason = _require_reason(reason)
    record = _get_record(db, attendance_id)
    _ensure_actor_may_correct(db, actor, record.employee_id)
    if record.check_out_ts_utc is None:
        raise ConflictError("NO_CHECKOUT_TO_RESET", "Attendance record has no check-out to reset.")

    previous_in = normalize_ts(record.check_in_ts_utc)
    db.add(
        AttendanceModification(
            attendance_id=record.id,
            modified_by=actor.user_id,
            modification_type=ModificationType.RESET,
            previous_check_in=previous_in,
            previous_check_out=normalize_ts(record.check_out_ts_utc),
            new_check_in=previous_in,
            new_check_out=None,
            reason=normalized_reason,
        )
    )
    record.check_out_ts_utc = None
    record.check_out_lat = None
    record.check_out_lon = None
    record.check_out_method = None
    record.day_state = derive_day_state(record.check_in_ts_utc, None)
    db.commit()
    db.refresh(record)

    logger.info(
        "attendance_checkout_reset",
        extra={"record_id": record.id, "employee_id": record.employee_id, "actor_id": actor.user_id},
    )
    return record


def list_modifications(db: Session, *, attendance_id: int, actor: Identity) -> list[AttendanceModification]:
    record = _get_record(db, attendance_id)
    _ensure_actor_may_correct(db, actor, record.employee_id)
    return list(
        db.scalars(
            select(AttendanceModification)
            .where(AttendanceModification.attendance_id == attendance_id)
            .order_by(AttendanceModification.created_at.desc(), AttendanceModification.id.desc())
        ).all()
    )
