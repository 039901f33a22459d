from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from attendance_engine.db import get_db
from attendance_engine.models import EmployeeRole, LeaveStatus
from attendance_engine.schemas import (
    AttendanceDayEntryRead,
    AttendanceManualAddRequest,
    AttendanceModificationRead,
    AttendanceModifyRequest,
    AttendanceRecordRead,
    AttendanceResetCheckoutRequest,
    DailyStatsRead,
    DeviceCheckResponse,
    DeviceResetResponse,
    EmployeeLocationRead,
    FieldTaskRead,
    LeaveDecisionRequest,
    LeaveDecisionResponse,
    LeaveRequestRead,
    LocationPingRead,
    PendingLeaveCountResponse,
    WorkSettingsRead,
    WorkSettingsUpdate,
    WorkZoneCreate,
    WorkZoneRead,
    WorkZoneUpdate,
)
from attendance_engine.security import Identity, require_admin, require_manager
from attendance_engine.services.attendance import ensure_employee_in_scope, list_history, list_records_by_date
from attendance_engine.services.clock import OrganizationClock, get_clock
from attendance_engine.services.corrections import (
    add_manual_record,
    list_modifications,
    modify_record,
    reset_checkout,
)
from attendance_engine.services.devices import check_device, reset_device
from attendance_engine.services.field_tasks import get_active_task, list_branch_tasks
from attendance_engine.services.leaves import count_pending, decide_leave, list_requests
from attendance_engine.services.locations import field_employees, latest_location, latest_locations, location_history
from attendance_engine.services.notifications import Notifier, get_notifier
from attendance_engine.services.reports import daily_stats
from attendance_engine.services.work_settings import (
    create_zone,
    delete_zone,
    get_work_settings,
    list_zones,
    update_work_settings,
    update_zone,
)

router = APIRouter(tags=["admin"])


def _scoped_branch_id(identity: Identity, requested_branch_id: int | None) -> int | None:
    # Branch managers only ever see their own branch.
    if identity.role == EmployeeRole.BRANCH_MANAGER:
        return identity.branch_id if identity.branch_id is not None else -1
    return requested_branch_id


@router.post("/api/admin/employees/{employee_id}/device/reset", response_model=DeviceResetResponse)
def reset_device_endpoint(
    employee_id: int,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> DeviceResetResponse:
    ensure_employee_in_scope(db, employee_id=employee_id, actor=identity)
    employee = reset_device(db, employee_id)
    request.state.employee_id = employee.id
    return DeviceResetResponse(employee_id=employee.id)


@router.get("/api/admin/employees/{employee_id}/device", response_model=DeviceCheckResponse)
def check_device_endpoint(
    employee_id: int,
    device_id: str | None = Query(default=None, max_length=255),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> DeviceCheckResponse:
    ensure_employee_in_scope(db, employee_id=employee_id, actor=identity)
    check = check_device(db, employee_id, device_id)
    return DeviceCheckResponse(
        employee_id=employee_id,
        is_registered=check.is_registered,
        is_match=check.is_match,
        registered_device_id=check.registered_device_id,
    )


@router.get(
    "/api/admin/work-zones",
    response_model=list[WorkZoneRead],
    dependencies=[Depends(require_manager)],
)
def list_work_zones_endpoint(db: Session = Depends(get_db)) -> list[WorkZoneRead]:
    return list_zones(db)


@router.post(
    "/api/admin/work-zones",
    response_model=WorkZoneRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def create_work_zone_endpoint(payload: WorkZoneCreate, db: Session = Depends(get_db)) -> WorkZoneRead:
    return create_zone(db, payload)


@router.put(
    "/api/admin/work-zones/{zone_id}",
    response_model=WorkZoneRead,
    dependencies=[Depends(require_admin)],
)
def update_work_zone_endpoint(
    zone_id: int,
    payload: WorkZoneUpdate,
    db: Session = Depends(get_db),
) -> WorkZoneRead:
    return update_zone(db, zone_id, payload)


@router.delete(
    "/api/admin/work-zones/{zone_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
def delete_work_zone_endpoint(zone_id: int, db: Session = Depends(get_db)) -> Response:
    delete_zone(db, zone_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/api/admin/work-settings",
    response_model=WorkSettingsRead,
    dependencies=[Depends(require_manager)],
)
def get_work_settings_endpoint(db: Session = Depends(get_db)) -> WorkSettingsRead:
    return get_work_settings(db)


@router.put(
    "/api/admin/work-settings",
    response_model=WorkSettingsRead,
    dependencies=[Depends(require_admin)],
)
def update_work_settings_endpoint(
    payload: WorkSettingsUpdate,
    db: Session = Depends(get_db),
) -> WorkSettingsRead:
    return update_work_settings(db, payload)


@router.get("/api/admin/leaves", response_model=list[LeaveRequestRead])
def list_leaves_endpoint(
    status_filter: LeaveStatus | None = Query(default=None, alias="status"),
    branch_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> list[LeaveRequestRead]:
    return list_requests(db, status=status_filter, branch_id=_scoped_branch_id(identity, branch_id))


@router.get("/api/admin/leaves/pending-count", response_model=PendingLeaveCountResponse)
def pending_leave_count_endpoint(
    branch_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> PendingLeaveCountResponse:
    scoped_branch_id = _scoped_branch_id(identity, branch_id)
    return PendingLeaveCountResponse(
        count=count_pending(db, branch_id=scoped_branch_id),
        branch_id=scoped_branch_id,
    )


@router.post("/api/admin/leaves/{request_id}/decision", response_model=LeaveDecisionResponse)
def decide_leave_endpoint(
    request_id: int,
    payload: LeaveDecisionRequest,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
    clock: OrganizationClock = Depends(get_clock),
    notifier: Notifier = Depends(get_notifier),
) -> LeaveDecisionResponse:
    leave = decide_leave(
        db,
        request_id=request_id,
        outcome=LeaveStatus(payload.outcome),
        reviewer=identity,
        rejection_reason=payload.rejection_reason,
        clock=clock,
        notifier=notifier,
    )
    return LeaveDecisionResponse(request_id=leave.id, status=leave.status)


@router.patch("/api/admin/attendance/{attendance_id}", response_model=AttendanceRecordRead)
def modify_attendance_endpoint(
    attendance_id: int,
    payload: AttendanceModifyRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> AttendanceRecordRead:
    record = modify_record(db, attendance_id=attendance_id, payload=payload, actor=identity)
    request.state.record_id = record.id
    return record


@router.post(
    "/api/admin/attendance/manual",
    response_model=AttendanceRecordRead,
    status_code=status.HTTP_201_CREATED,
)
def add_manual_attendance_endpoint(
    payload: AttendanceManualAddRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> AttendanceRecordRead:
    record = add_manual_record(db, payload=payload, actor=identity)
    request.state.record_id = record.id
    return record


@router.post("/api/admin/attendance/{attendance_id}/reset-checkout", response_model=AttendanceRecordRead)
def reset_checkout_endpoint(
    attendance_id: int,
    payload: AttendanceResetCheckoutRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> AttendanceRecordRead:
    record = reset_checkout(db, attendance_id=attendance_id, reason=payload.reason, actor=identity)
    request.state.record_id = record.id
    return record


@router.get("/api/admin/attendance/{attendance_id}/modifications", response_model=list[AttendanceModificationRead])
def list_modifications_endpoint(
    attendance_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> list[AttendanceModificationRead]:
    return list_modifications(db, attendance_id=attendance_id, actor=identity)


@router.get("/api/admin/reports/daily", response_model=DailyStatsRead)
def daily_stats_endpoint(
    work_date: date | None = Query(default=None),
    branch_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
    clock: OrganizationClock = Depends(get_clock),
) -> DailyStatsRead:
    return daily_stats(
        db,
        work_date or clock.today(),
        branch_id=_scoped_branch_id(identity, branch_id),
    )


@router.get("/api/admin/attendance/by-date", response_model=list[AttendanceDayEntryRead])
def attendance_by_date_endpoint(
    work_date: date | None = Query(default=None),
    branch_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
    clock: OrganizationClock = Depends(get_clock),
) -> list[AttendanceDayEntryRead]:
    rows = list_records_by_date(
        db,
        work_date=work_date or clock.today(),
        branch_id=_scoped_branch_id(identity, branch_id),
    )
    return [
        AttendanceDayEntryRead(
            **AttendanceRecordRead.model_validate(record).model_dump(),
            employee_code=employee.employee_code,
            full_name=employee.full_name,
        )
        for record, employee in rows
    ]


@router.get("/api/admin/employees/{employee_id}/attendance", response_model=list[AttendanceRecordRead])
def employee_attendance_history_endpoint(
    employee_id: int,
    request: Request,
    limit: int | None = Query(default=None),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> list[AttendanceRecordRead]:
    employee = ensure_employee_in_scope(db, employee_id=employee_id, actor=identity)
    request.state.employee_id = employee.id
    return list_history(db, employee=employee, limit=limit)


@router.get("/api/admin/locations/latest", response_model=list[EmployeeLocationRead])
def latest_locations_endpoint(
    branch_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
    clock: OrganizationClock = Depends(get_clock),
) -> list[EmployeeLocationRead]:
    return latest_locations(db, clock=clock, branch_id=_scoped_branch_id(identity, branch_id))


@router.get("/api/admin/locations/field-employees", response_model=list[EmployeeLocationRead])
def field_employees_endpoint(
    branch_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
    clock: OrganizationClock = Depends(get_clock),
) -> list[EmployeeLocationRead]:
    return field_employees(db, clock=clock, branch_id=_scoped_branch_id(identity, branch_id))


@router.get("/api/admin/employees/{employee_id}/location/latest", response_model=LocationPingRead | None)
def employee_latest_location_endpoint(
    employee_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> LocationPingRead | None:
    ensure_employee_in_scope(db, employee_id=employee_id, actor=identity)
    return latest_location(db, employee_id)


@router.get("/api/admin/employees/{employee_id}/locations", response_model=list[LocationPingRead])
def employee_location_history_endpoint(
    employee_id: int,
    start: datetime | None = Query(default=None),
    end: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
    clock: OrganizationClock = Depends(get_clock),
) -> list[LocationPingRead]:
    ensure_employee_in_scope(db, employee_id=employee_id, actor=identity)
    return location_history(db, employee_id=employee_id, clock=clock, start_utc=start, end_utc=end)


@router.get("/api/admin/employees/{employee_id}/field-tasks/active", response_model=FieldTaskRead | None)
def employee_active_field_task_endpoint(
    employee_id: int,
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
) -> FieldTaskRead | None:
    ensure_employee_in_scope(db, employee_id=employee_id, actor=identity)
    return get_active_task(db, employee_id)


@router.get("/api/admin/field-tasks", response_model=list[FieldTaskRead])
def branch_field_tasks_endpoint(
    work_date: date | None = Query(default=None),
    branch_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
    identity: Identity = Depends(require_manager),
    clock: OrganizationClock = Depends(get_clock),
) -> list[FieldTaskRead]:
    return list_branch_tasks(
        db,
        work_date=work_date or clock.today(),
        branch_id=_scoped_branch_id(identity, branch_id),
    )
