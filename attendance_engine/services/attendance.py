from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    ValidationFailedError,
)
from attendance_engine.models import (
    AdminNotificationType,
    AttendanceRecord,
    AttendanceStatus,
    BranchNotificationType,
    DayState,
    Employee,
    EmployeeRole,
    EmployeeStatus,
    LocationPing,
    VerificationMethod,
    WorkSettings,
)
from attendance_engine.security import Identity
from attendance_engine.services.clock import OrganizationClock, normalize_ts
from attendance_engine.services.devices import bind_device, evaluate_device
from attendance_engine.services.geofence import is_inside_any_zone, validate_coordinates
from attendance_engine.services.notifications import Notifier, admin_event, branch_event, safe_emit
from attendance_engine.services.work_settings import get_work_settings, list_active_zones, parse_hhmm
from attendance_engine.settings import get_settings

logger = logging.getLogger("app.attendance")

CHECK_IN = "check_in"
CHECK_OUT = "check_out"

_DAY_TRANSITIONS: dict[tuple[DayState, str], DayState] = {
    (DayState.NOT_STARTED, CHECK_IN): DayState.CHECKED_IN,
    (DayState.CHECKED_IN, CHECK_OUT): DayState.CHECKED_OUT,
}

_ILLEGAL_TRANSITION_ERRORS: dict[tuple[DayState, str], tuple[str, str]] = {
    (DayState.CHECKED_IN, CHECK_IN): ("ALREADY_CHECKED_IN", "Already checked in today."),
    (DayState.CHECKED_OUT, CHECK_IN): ("ALREADY_CHECKED_IN", "Already checked in today."),
    (DayState.NOT_STARTED, CHECK_OUT): ("NO_CHECKIN_TODAY", "No check-in recorded for today."),
    (DayState.CHECKED_OUT, CHECK_OUT): ("ALREADY_CHECKED_OUT", "Already checked out today."),
}

MIN_HISTORY_LIMIT = 1
MAX_HISTORY_LIMIT = 365


@dataclass(frozen=True, slots=True)
class AttendanceActionResult:
    record: AttendanceRecord
    status: AttendanceStatus
    early_checkout: bool = False


@dataclass(frozen=True, slots=True)
class LocationAck:
    ping_id: int
    inside: bool
    zone_name: str | None
    left_zone_alert: bool


def next_day_state(current: DayState, action: str) -> DayState:
    next_state = _DAY_TRANSITIONS.get((current, action))
    if next_state is not None:
        return next_state
    code, message = _ILLEGAL_TRANSITION_ERRORS.get(
        (current, action),
        ("INVALID_TRANSITION", "Attendance transition is not allowed."),
    )
    raise ConflictError(code, message)


def resolve_employee(
    db: Session,
    *,
    employee_code: str | None,
    identity: Identity | None,
) -> Employee:
    normalized_code = (employee_code or "").strip()
    if normalized_code:
        employee = db.scalar(select(Employee).where(Employee.employee_code == normalized_code))
    elif identity is not None:
        employee = db.scalar(select(Employee).where(Employee.user_id == identity.user_id))
    else:
        raise ValidationFailedError(
            "EMPLOYEE_REFERENCE_REQUIRED",
            "employee_code or a bearer identity is required.",
        )

    if employee is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    if employee.status != EmployeeStatus.ACTIVE:
        raise ForbiddenError("EMPLOYEE_INACTIVE", "Inactive employee cannot perform attendance actions.")
    return employee


def ensure_employee_in_scope(db: Session, *, employee_id: int, actor: Identity) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    if actor.role == EmployeeRole.BRANCH_MANAGER and (
        actor.branch_id is None or employee.branch_id != actor.branch_id
    ):
        raise ForbiddenError("INSUFFICIENT_ROLE", "Branch managers may only access employees in their own branch.")
    return employee


def ensure_method_enrolled(employee: Employee, method: VerificationMethod) -> None:
    if method == VerificationMethod.FINGERPRINT and not employee.fingerprint_enabled:
        raise ValidationFailedError("METHOD_NOT_ENROLLED", "Fingerprint is not enrolled for this employee.")
    if method == VerificationMethod.FACE and not employee.face_data_id:
        raise ValidationFailedError("METHOD_NOT_ENROLLED", "Face data is not enrolled for this employee.")


def compute_arrival_status(minutes_now: int, work_settings: WorkSettings) -> AttendanceStatus:
    threshold = parse_hhmm(work_settings.work_start_time) + work_settings.late_threshold_minutes
    if minutes_now > threshold:
        return AttendanceStatus.LATE
    return AttendanceStatus.PRESENT


def is_early_checkout(minutes_now: int, work_settings: WorkSettings, *, window_minutes: int) -> bool:
    return minutes_now < parse_hhmm(work_settings.work_end_time) - window_minutes


def get_day_record(db: Session, employee_id: int, work_date: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.work_date == work_date,
        )
    )


def _day_state_of(record: AttendanceRecord | None) -> DayState:
    if record is None:
        return DayState.NOT_STARTED
    return record.day_state


def _guard_device(
    employee: Employee,
    device_id: str | None,
    *,
    action: str,
    notifier: Notifier,
) -> bool:
    """Return True when the presented device should be bound on commit."""
    if device_id is None:
        return False

    check = evaluate_device(employee, device_id)
    if not check.is_registered:
        return True
    if check.is_match:
        return False

    logger.warning(
        "device_mismatch_blocked",
        extra={
            "employee_id": employee.id,
            "action": action,
            "registered_device_prefix": (check.registered_device_id or "")[:8],
            "presented_device_prefix": device_id[:8],
        },
    )
    verb = "check in" if action == CHECK_IN else "check out"
    safe_emit(
        notifier,
        admin_event(
            AdminNotificationType.DEVICE_MISMATCH,
            "Unauthorized device attempt",
            (
                f"Employee {employee.full_name} ({employee.employee_code}) tried to {verb} from an "
                f"unregistered device. Registered: {(check.registered_device_id or '')[:8]}... "
                f"Presented: {device_id[:8]}..."
            ),
            employee_id=employee.id,
        ),
    )
    raise ForbiddenError("DEVICE_UNAUTHORIZED", "This device is not authorized for this employee.")


def check_in(
    db: Session,
    *,
    employee: Employee,
    lat: float,
    lon: float,
    method: VerificationMethod,
    device_id: str | None,
    clock: OrganizationClock,
    notifier: Notifier,
) -> AttendanceActionResult:
    validate_coordinates(lat, lon)
    ensure_method_enrolled(employee, method)
    bind_pending = _guard_device(employee, device_id, action=CHECK_IN, notifier=notifier)

    now_utc = clock.now_utc()
    work_date = clock.today()
    record = get_day_record(db, employee.id, work_date)
    if record is not None and record.check_in_ts_utc is not None:
        raise ConflictError("ALREADY_CHECKED_IN", "Already checked in today.")
    next_day_state(_day_state_of(record), CHECK_IN)

    zone_check = is_inside_any_zone(lat, lon, list_active_zones(db))
    if not zone_check.inside:
        logger.warning(
            "check_in_outside_zone",
            extra={
                "employee_id": employee.id,
                "closest_distance_m": zone_check.closest_distance_m,
            },
        )
        safe_emit(
            notifier,
            admin_event(
                AdminNotificationType.OUTSIDE_ZONE,
                "Check-in outside work zone",
                f"Employee {employee.full_name} ({employee.employee_code}) tried to check in outside every work zone.",
                employee_id=employee.id,
            ),
        )
        raise ForbiddenError("OUTSIDE_WORK_ZONE", "You are outside the configured work zone.")

    work_settings = get_work_settings(db)
    minutes_now = clock.minutes_since_midnight(now_utc)
    status = compute_arrival_status(minutes_now, work_settings)

    values = {
        "check_in_ts_utc": now_utc,
        "check_in_lat": lat,
        "check_in_lon": lon,
        "check_in_method": method,
        "status": status,
        "day_state": DayState.CHECKED_IN,
    }

    if record is None:
        record = AttendanceRecord(employee_id=employee.id, work_date=work_date, **values)
        db.add(record)
        if bind_pending:
            bind_device(employee, device_id, now_utc=now_utc)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise ConflictError("ALREADY_CHECKED_IN", "Already checked in today.") from exc
    else:
        result = db.execute(
            update(AttendanceRecord)
            .where(
                AttendanceRecord.id == record.id,
                AttendanceRecord.check_in_ts_utc.is_(None),
            )
            .values(**values)
        )
        if result.rowcount == 0:
            db.rollback()
            raise ConflictError("ALREADY_CHECKED_IN", "Already checked in today.")
        if bind_pending:
            bind_device(employee, device_id, now_utc=now_utc)
        db.commit()
    db.refresh(record)

    logger.info(
        "attendance_check_in",
        extra={
            "employee_id": employee.id,
            "record_id": record.id,
            "work_date": work_date.isoformat(),
            "status": status.value,
            "zone_name": zone_check.zone_name,
            "minutes_since_midnight": minutes_now,
        },
    )

    local_time = clock.now_local().strftime("%H:%M")
    if status == AttendanceStatus.LATE:
        safe_emit(
            notifier,
            admin_event(
                AdminNotificationType.LATE,
                "Late arrival",
                f"Employee {employee.full_name} ({employee.employee_code}) checked in late at {local_time}.",
                employee_id=employee.id,
            ),
        )
        safe_emit(
            notifier,
            branch_event(
                employee.branch_id,
                BranchNotificationType.EMPLOYEE_LATE,
                "Late arrival",
                f"Employee {employee.full_name} ({employee.employee_code}) checked in late at {local_time}.",
                employee_id=employee.id,
            ),
        )
    safe_emit(
        notifier,
        branch_event(
            employee.branch_id,
            BranchNotificationType.EMPLOYEE_CHECK_IN,
            "Employee checked in",
            f"Employee {employee.full_name} ({employee.employee_code}) checked in at {local_time}.",
            employee_id=employee.id,
        ),
    )
    return AttendanceActionResult(record=record, status=status)


def check_out(
    db: Session,
    *,
    employee: Employee,
    lat: float,
    lon: float,
    method: VerificationMethod,
    device_id: str | None,
    clock: OrganizationClock,
    notifier: Notifier,
) -> AttendanceActionResult:
    validate_coordinates(lat, lon)
    ensure_method_enrolled(employee, method)
    bind_pending = _guard_device(employee, device_id, action=CHECK_OUT, notifier=notifier)

    now_utc = clock.now_utc()
    work_date = clock.today()
    record = get_day_record(db, employee.id, work_date)
    if record is None or record.check_in_ts_utc is None:
        raise ConflictError("NO_CHECKIN_TODAY", "No check-in recorded for today.")
    if record.check_out_ts_utc is not None:
        raise ConflictError("ALREADY_CHECKED_OUT", "Already checked out today.")
    next_day_state(_day_state_of(record), CHECK_OUT)

    work_settings = get_work_settings(db)
    minutes_now = clock.minutes_since_midnight(now_utc)
    early = is_early_checkout(
        minutes_now,
        work_settings,
        window_minutes=get_settings().early_checkout_window_minutes,
    )

    # Check-in may have been moved past the current instant by a correction.
    if now_utc < normalize_ts(record.check_in_ts_utc):
        raise ConflictError("CHECKOUT_BEFORE_CHECKIN", "Check-out time cannot be earlier than check-in time.")

    try:
        result = db.execute(
            update(AttendanceRecord)
            .where(
                AttendanceRecord.id == record.id,
                AttendanceRecord.check_out_ts_utc.is_(None),
            )
            .values(
                check_out_ts_utc=now_utc,
                check_out_lat=lat,
                check_out_lon=lon,
                check_out_method=method,
                day_state=DayState.CHECKED_OUT,
            )
        )
        if result.rowcount == 0:
            db.rollback()
            raise ConflictError("ALREADY_CHECKED_OUT", "Already checked out today.")
        if bind_pending:
            bind_device(employee, device_id, now_utc=now_utc)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "CHECKOUT_BEFORE_CHECKIN",
            "Check-out time cannot be earlier than check-in time.",
        ) from exc
    db.refresh(record)

    logger.info(
        "attendance_check_out",
        extra={
            "employee_id": employee.id,
            "record_id": record.id,
            "work_date": work_date.isoformat(),
            "early_checkout": early,
            "minutes_since_midnight": minutes_now,
        },
    )

    local_time = clock.now_local().strftime("%H:%M")
    if early:
        safe_emit(
            notifier,
            admin_event(
                AdminNotificationType.EARLY_CHECKOUT,
                "Early checkout",
                f"Employee {employee.full_name} ({employee.employee_code}) checked out early at {local_time}.",
                employee_id=employee.id,
            ),
        )
        safe_emit(
            notifier,
            branch_event(
                employee.branch_id,
                BranchNotificationType.EMPLOYEE_EARLY_CHECKOUT,
                "Early checkout",
                f"Employee {employee.full_name} ({employee.employee_code}) checked out early at {local_time}.",
                employee_id=employee.id,
            ),
        )
    safe_emit(
        notifier,
        branch_event(
            employee.branch_id,
            BranchNotificationType.EMPLOYEE_CHECK_OUT,
            "Employee checked out",
            f"Employee {employee.full_name} ({employee.employee_code}) checked out at {local_time}.",
            employee_id=employee.id,
        ),
    )
    return AttendanceActionResult(record=record, status=record.status, early_checkout=early)


def get_today_record(db: Session, *, employee: Employee, clock: OrganizationClock) -> AttendanceRecord | None:
    return get_day_record(db, employee.id, clock.today())


def list_history(db: Session, *, employee: Employee, limit: int | None = None) -> list[AttendanceRecord]:
    if limit is None:
        limit = get_settings().history_default_limit
    if not MIN_HISTORY_LIMIT <= limit <= MAX_HISTORY_LIMIT:
        raise ValidationFailedError(
            "INVALID_LIMIT",
            f"limit must be between {MIN_HISTORY_LIMIT} and {MAX_HISTORY_LIMIT}.",
        )
    return list(
        db.scalars(
            select(AttendanceRecord)
            .where(AttendanceRecord.employee_id == employee.id)
            .order_by(AttendanceRecord.work_date.desc(), AttendanceRecord.id.desc())
            .limit(limit)
        ).all()
    )


def list_records_by_date(
    db: Session,
    *,
    work_date: date,
    branch_id: int | None = None,
) -> list[tuple[AttendanceRecord, Employee]]:
    query = (
        select(AttendanceRecord, Employee)
        .join(Employee, Employee.id == AttendanceRecord.employee_id)
        .where(AttendanceRecord.work_date == work_date)
    )
    if branch_id is not None:
        query = query.where(Employee.branch_id == branch_id)
    rows = db.execute(
        query.order_by(AttendanceRecord.check_in_ts_utc.asc().nulls_last(), AttendanceRecord.id.asc())
    ).all()
    return [(record, employee) for record, employee in rows]


def update_location(
    db: Session,
    *,
    employee: Employee,
    lat: float,
    lon: float,
    accuracy_m: float | None,
    clock: OrganizationClock,
    notifier: Notifier,
) -> LocationAck:
    validate_coordinates(lat, lon)

    ping = LocationPing(
        employee_id=employee.id,
        lat=lat,
        lon=lon,
        accuracy_m=accuracy_m,
        ts_utc=clock.now_utc(),
    )
    db.add(ping)
    db.commit()
    db.refresh(ping)

    zones = list_active_zones(db)
    zone_check = is_inside_any_zone(lat, lon, zones)
    record = get_day_record(db, employee.id, clock.today())

    # Advisory only: the day record is never changed here.
    left_zone = bool(
        zones
        and not zone_check.inside
        and record is not None
        and record.day_state == DayState.CHECKED_IN
    )
    if left_zone:
        logger.warning(
            "left_zone_detected",
            extra={
                "employee_id": employee.id,
                "record_id": record.id,
                "closest_distance_m": zone_check.closest_distance_m,
            },
        )
        safe_emit(
            notifier,
            admin_event(
                AdminNotificationType.LEFT_ZONE,
                "Left work zone without checkout",
                f"Employee {employee.full_name} ({employee.employee_code}) left the work zone without checking out.",
                employee_id=employee.id,
            ),
        )
        safe_emit(
            notifier,
            branch_event(
                employee.branch_id,
                BranchNotificationType.EMPLOYEE_OUTSIDE_ZONE,
                "Employee outside work zone",
                f"Employee {employee.full_name} ({employee.employee_code}) is outside the work zone while checked in.",
                employee_id=employee.id,
            ),
        )

    return LocationAck(
        ping_id=ping.id,
        inside=zone_check.inside,
        zone_name=zone_check.zone_name,
        left_zone_alert=left_zone,
    )
