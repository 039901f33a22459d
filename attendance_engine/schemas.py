from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from attendance_engine.models import (
    AttendanceStatus,
    DayState,
    FieldTaskStatus,
    LeaveStatus,
    LeaveType,
    ModificationType,
    VerificationMethod,
)

HHMM_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"
WORK_DAYS_PATTERN = r"^[1-7](,[1-7])*$"


class WorkZoneCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    radius_m: int = Field(default=100, gt=0, le=100000)
    is_active: bool = True


class WorkZoneUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    radius_m: int = Field(gt=0, le=100000)
    is_active: bool = True


class WorkZoneRead(BaseModel):
    id: int
    name: str
    lat: float
    lon: float
    radius_m: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkSettingsRead(BaseModel):
    work_start_time: str
    work_end_time: str
    late_threshold_minutes: int
    work_days: str

    model_config = ConfigDict(from_attributes=True)


class WorkSettingsUpdate(BaseModel):
    work_start_time: str = Field(pattern=HHMM_PATTERN)
    work_end_time: str = Field(pattern=HHMM_PATTERN)
    late_threshold_minutes: int = Field(ge=0, le=120)
    work_days: str = Field(default="1,2,3,4,5", pattern=WORK_DAYS_PATTERN)

    @model_validator(mode="after")
    def _validate_window(self) -> "WorkSettingsUpdate":
        if self.work_end_time <= self.work_start_time:
            raise ValueError("work_end_time must be later than work_start_time.")
        return self


class AttendanceActionRequest(BaseModel):
    employee_code: str | None = Field(default=None, max_length=50)
    lat: float
    lon: float
    method: VerificationMethod
    device_id: str | None = Field(default=None, min_length=1, max_length=255)


class AttendanceActionResponse(BaseModel):
    ok: bool = True
    record_id: int
    employee_id: int
    status: AttendanceStatus
    day_state: DayState
    early_checkout: bool = False


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    work_date: date
    check_in_ts_utc: datetime | None = None
    check_in_lat: float | None = None
    check_in_lon: float | None = None
    check_in_method: VerificationMethod | None = None
    check_out_ts_utc: datetime | None = None
    check_out_lat: float | None = None
    check_out_lon: float | None = None
    check_out_method: VerificationMethod | None = None
    status: AttendanceStatus
    day_state: DayState
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceDayEntryRead(AttendanceRecordRead):
    employee_code: str
    full_name: str


class LocationUpdateRequest(BaseModel):
    employee_code: str | None = Field(default=None, max_length=50)
    lat: float
    lon: float
    accuracy_m: float | None = Field(default=None, ge=0)


class LocationUpdateResponse(BaseModel):
    ok: bool = True
    ping_id: int
    inside: bool
    zone_name: str | None = None
    left_zone_alert: bool = False


class LocationPingRead(BaseModel):
    id: int
    employee_id: int
    lat: float
    lon: float
    accuracy_m: float | None = None
    ts_utc: datetime

    model_config = ConfigDict(from_attributes=True)


class EmployeeLocationRead(BaseModel):
    employee_id: int
    employee_code: str
    full_name: str
    branch_id: int | None = None
    lat: float | None = None
    lon: float | None = None
    accuracy_m: float | None = None
    ts_utc: datetime | None = None
    source: Literal["PING", "CHECK_IN"] | None = None

    model_config = ConfigDict(from_attributes=True)


class FieldTaskRequest(BaseModel):
    employee_code: str | None = Field(default=None, max_length=50)
    is_return: bool = False
    description: str | None = Field(default=None, max_length=2000)
    lat: float
    lon: float
    method: VerificationMethod


class FieldTaskResponse(BaseModel):
    ok: bool = True
    task_id: int
    status: FieldTaskStatus | None = None


class FieldTaskRead(BaseModel):
    id: int
    employee_id: int
    work_date: date
    description: str | None = None
    start_ts_utc: datetime | None = None
    start_lat: float | None = None
    start_lon: float | None = None
    start_method: VerificationMethod | None = None
    end_ts_utc: datetime | None = None
    end_lat: float | None = None
    end_lon: float | None = None
    end_method: VerificationMethod | None = None
    status: FieldTaskStatus

    model_config = ConfigDict(from_attributes=True)


class LeaveRequestCreate(BaseModel):
    employee_code: str | None = Field(default=None, max_length=50)
    leave_type: LeaveType
    start_date: date
    end_date: date
    reason: str = Field(max_length=2000)


class LeaveRequestRead(BaseModel):
    id: int
    employee_id: int
    leave_type: LeaveType
    start_date: date
    end_date: date
    total_days: int
    reason: str
    balance_year: int
    status: LeaveStatus
    reviewed_by: int | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class LeaveDecisionRequest(BaseModel):
    outcome: Literal["APPROVED", "REJECTED"]
    rejection_reason: str | None = Field(default=None, max_length=2000)


class LeaveDecisionResponse(BaseModel):
    ok: bool = True
    request_id: int
    status: LeaveStatus


class LeaveBalanceBucket(BaseModel):
    total: int
    used: int
    remaining: int


class LeaveBalanceSummary(BaseModel):
    year: int
    annual: LeaveBalanceBucket
    sick: LeaveBalanceBucket
    emergency: LeaveBalanceBucket


class PendingLeaveCountResponse(BaseModel):
    count: int
    branch_id: int | None = None


class AttendanceModifyRequest(BaseModel):
    check_in_ts_utc: datetime | None = None
    check_out_ts_utc: datetime | None = None
    status: AttendanceStatus | None = None
    notes: str | None = Field(default=None, max_length=2000)
    reason: str = Field(max_length=2000)

    @model_validator(mode="after")
    def _validate_status(self) -> "AttendanceModifyRequest":
        if self.status == AttendanceStatus.ABSENT:
            raise ValueError("ABSENT is inferred from missing records and cannot be written.")
        return self


class AttendanceManualAddRequest(BaseModel):
    employee_id: int = Field(ge=1)
    work_date: date
    check_in_ts_utc: datetime | None = None
    check_out_ts_utc: datetime | None = None
    notes: str | None = Field(default=None, max_length=2000)
    reason: str = Field(max_length=2000)


class AttendanceResetCheckoutRequest(BaseModel):
    reason: str = Field(max_length=2000)


class AttendanceModificationRead(BaseModel):
    id: int
    attendance_id: int
    modified_by: int
    modification_type: ModificationType
    previous_check_in: datetime | None = None
    previous_check_out: datetime | None = None
    new_check_in: datetime | None = None
    new_check_out: datetime | None = None
    reason: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeviceCheckResponse(BaseModel):
    employee_id: int
    is_registered: bool
    is_match: bool
    registered_device_id: str | None = None


class DeviceResetResponse(BaseModel):
    ok: bool = True
    employee_id: int


class DailyStatsRead(BaseModel):
    work_date: date
    present: int
    late: int
    absent: int
    total: int
    active_employees: int
