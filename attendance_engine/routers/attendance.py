from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from attendance_engine.db import get_db
from attendance_engine.schemas import (
    AttendanceActionRequest,
    AttendanceActionResponse,
    AttendanceRecordRead,
    FieldTaskRead,
    FieldTaskRequest,
    FieldTaskResponse,
    LeaveBalanceSummary,
    LeaveRequestCreate,
    LeaveRequestRead,
    LocationUpdateRequest,
    LocationUpdateResponse,
)
from attendance_engine.security import Identity, get_optional_identity
from attendance_engine.services.attendance import (
    AttendanceActionResult,
    check_in,
    check_out,
    get_today_record,
    list_history,
    resolve_employee,
    update_location,
)
from attendance_engine.services.clock import OrganizationClock, get_clock
from attendance_engine.services.field_tasks import get_active_task, list_today_tasks, record_field_task
from attendance_engine.services.leaves import get_balance_summary, list_employee_requests, request_leave
from attendance_engine.services.notifications import Notifier, get_notifier

router = APIRouter(tags=["attendance"])


def _action_response(result: AttendanceActionResult) -> AttendanceActionResponse:
    return AttendanceActionResponse(
        record_id=result.record.id,
        employee_id=result.record.employee_id,
        status=result.status,
        day_state=result.record.day_state,
        early_checkout=result.early_checkout,
    )


@router.post("/api/attendance/check-in", response_model=AttendanceActionResponse)
def check_in_endpoint(
    payload: AttendanceActionRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
    clock: OrganizationClock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> AttendanceActionResponse:
    employee = resolve_employee(db, employee_code=payload.employee_code, identity=identity)
    request.state.employee_id = employee.id
    result = check_in(
        db,
        employee=employee,
        lat=payload.lat,
        lon=payload.lon,
        method=payload.method,
        device_id=payload.device_id,
        clock=clock,
        notifier=notifier,
    )
    request.state.record_id = result.record.id
    return _action_response(result)


@router.post("/api/attendance/check-out", response_model=AttendanceActionResponse)
def check_out_endpoint(
    payload: AttendanceActionRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
    clock: OrganizationClock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> AttendanceActionResponse:
    employee = resolve_employee(db, employee_code=payload.employee_code, identity=identity)
    request.state.employee_id = employee.id
    result = check_out(
        db,
        employee=employee,
        lat=payload.lat,
        lon=payload.lon,
        method=payload.method,
        device_id=payload.device_id,
        clock=clock,
        notifier=notifier,
    )
    request.state.record_id = result.record.id
    return _action_response(result)


@router.get("/api/attendance/today", response_model=AttendanceRecordRead | None)
def today_endpoint(
    request: Request,
    employee_code: str | None = Query(default=None, max_length=50),
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
    clock: OrganizationClock = Depends(get_clock),
) -> AttendanceRecordRead | None:
    employee = resolve_employee(db, employee_code=employee_code, identity=identity)
    request.state.employee_id = employee.id
    return get_today_record(db, employee=employee, clock=clock)


@router.get("/api/attendance/history", response_model=list[AttendanceRecordRead])
def history_endpoint(
    request: Request,
    employee_code: str | None = Query(default=None, max_length=50),
    limit: int | None = Query(default=None),
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
) -> list[AttendanceRecordRead]:
    employee = resolve_employee(db, employee_code=employee_code, identity=identity)
    request.state.employee_id = employee.id
    return list_history(db, employee=employee, limit=limit)


@router.post("/api/location", response_model=LocationUpdateResponse)
def location_endpoint(
    payload: LocationUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
    clock: OrganizationClock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> LocationUpdateResponse:
    employee = resolve_employee(db, employee_code=payload.employee_code, identity=identity)
    request.state.employee_id = employee.id
    ack = update_location(
        db,
        employee=employee,
        lat=payload.lat,
        lon=payload.lon,
        accuracy_m=payload.accuracy_m,
        clock=clock,
        notifier=notifier,
    )
    return LocationUpdateResponse(
        ping_id=ack.ping_id,
        inside=ack.inside,
        zone_name=ack.zone_name,
        left_zone_alert=ack.left_zone_alert,
    )


@router.post("/api/field-tasks", response_model=FieldTaskResponse)
def field_task_endpoint(
    payload: FieldTaskRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
    clock: OrganizationClock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> FieldTaskResponse:
    employee = resolve_employee(db, employee_code=payload.employee_code, identity=identity)
    request.state.employee_id = employee.id
    result = record_field_task(
        db,
        employee=employee,
        is_return=payload.is_return,
        description=payload.description,
        lat=payload.lat,
        lon=payload.lon,
        method=payload.method,
        clock=clock,
        notifier=notifier,
    )
    return FieldTaskResponse(task_id=result.task_id, status=result.status)


@router.get("/api/field-tasks/today", response_model=list[FieldTaskRead])
def field_tasks_today_endpoint(
    request: Request,
    employee_code: str | None = Query(default=None, max_length=50),
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
    clock: OrganizationClock = Depends(get_clock),
) -> list[FieldTaskRead]:
    employee = resolve_employee(db, employee_code=employee_code, identity=identity)
    request.state.employee_id = employee.id
    return list_today_tasks(db, employee=employee, clock=clock)


@router.get("/api/field-tasks/active", response_model=FieldTaskRead | None)
def active_field_task_endpoint(
    request: Request,
    employee_code: str | None = Query(default=None, max_length=50),
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
) -> FieldTaskRead | None:
    employee = resolve_employee(db, employee_code=employee_code, identity=identity)
    request.state.employee_id = employee.id
    return get_active_task(db, employee.id)


@router.post("/api/leaves", response_model=LeaveRequestRead, status_code=status.HTTP_201_CREATED)
def request_leave_endpoint(
    payload: LeaveRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
    clock: OrganizationClock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> LeaveRequestRead:
    employee = resolve_employee(db, employee_code=payload.employee_code, identity=identity)
    request.state.employee_id = employee.id
    return request_leave(
        db,
        employee=employee,
        leave_type=payload.leave_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
        clock=clock,
        notifier=notifier,
    )


@router.get("/api/leaves/mine", response_model=list[LeaveRequestRead])
def my_leaves_endpoint(
    request: Request,
    employee_code: str | None = Query(default=None, max_length=50),
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
) -> list[LeaveRequestRead]:
    employee = resolve_employee(db, employee_code=employee_code, identity=identity)
    request.state.employee_id = employee.id
    return list_employee_requests(db, employee=employee)


@router.get("/api/leaves/balance", response_model=LeaveBalanceSummary)
def leave_balance_endpoint(
    request: Request,
    employee_code: str | None = Query(default=None, max_length=50),
    year: int | None = Query(default=None, ge=2000, le=2100),
    db: Session = Depends(get_db),
    identity: Identity | None = Depends(get_optional_identity),
    clock: OrganizationClock = Depends(get_clock),
) -> LeaveBalanceSummary:
    employee = resolve_employee(db, employee_code=employee_code, identity=identity)
    request.state.employee_id = employee.id
    return get_balance_summary(db, employee=employee, year=year or clock.today().year)
