from __future__ import annotations

import enum
from datetime import date, datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_engine.db import Base


class EmployeeRole(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    BRANCH_MANAGER = "BRANCH_MANAGER"
    ADMIN = "ADMIN"


class EmployeeStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class VerificationMethod(str, enum.Enum):
    FACE = "FACE"
    FINGERPRINT = "FINGERPRINT"
    EYE = "EYE"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    ABSENT = "ABSENT"
    HALF_DAY = "HALF_DAY"


class DayState(str, enum.Enum):
    NOT_STARTED = "NOT_STARTED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"


class FieldTaskStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ModificationType(str, enum.Enum):
    EDIT = "EDIT"
    ADD = "ADD"
    DELETE = "DELETE"
    RESET = "RESET"


class LeaveType(str, enum.Enum):
    ANNUAL = "ANNUAL"
    SICK = "SICK"
    EMERGENCY = "EMERGENCY"
    UNPAID = "UNPAID"


class LeaveStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AdminNotificationType(str, enum.Enum):
    LATE = "LATE"
    ABSENT = "ABSENT"
    OUTSIDE_ZONE = "OUTSIDE_ZONE"
    LEFT_ZONE = "LEFT_ZONE"
    EARLY_CHECKOUT = "EARLY_CHECKOUT"
    SYSTEM = "SYSTEM"
    DEVICE_MISMATCH = "DEVICE_MISMATCH"


class BranchNotificationType(str, enum.Enum):
    EMPLOYEE_ADDED = "EMPLOYEE_ADDED"
    EMPLOYEE_CHECK_IN = "EMPLOYEE_CHECK_IN"
    EMPLOYEE_CHECK_OUT = "EMPLOYEE_CHECK_OUT"
    EMPLOYEE_LATE = "EMPLOYEE_LATE"
    EMPLOYEE_ABSENT = "EMPLOYEE_ABSENT"
    EMPLOYEE_EARLY_CHECKOUT = "EMPLOYEE_EARLY_CHECKOUT"
    EMPLOYEE_OUTSIDE_ZONE = "EMPLOYEE_OUTSIDE_ZONE"
    GENERAL = "GENERAL"


class Branch(Base):
    __tablename__ = "branches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    employees: Mapped[list[Employee]] = relationship(back_populates="branch")


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, unique=True, index=True)
    employee_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[EmployeeRole] = mapped_column(
        Enum(EmployeeRole, name="employee_role"),
        nullable=False,
        default=EmployeeRole.EMPLOYEE,
        server_default=text("'EMPLOYEE'"),
    )
    status: Mapped[EmployeeStatus] = mapped_column(
        Enum(EmployeeStatus, name="employee_status"),
        nullable=False,
        default=EmployeeStatus.ACTIVE,
        server_default=text("'ACTIVE'"),
    )
    branch_id: Mapped[int | None] = mapped_column(
        ForeignKey("branches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    registered_device_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    device_registered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    fingerprint_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    face_data_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    branch: Mapped[Branch | None] = relationship(back_populates="employees")
    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="employee")
    field_tasks: Mapped[list[FieldTask]] = relationship(back_populates="employee")
    leave_requests: Mapped[list[LeaveRequest]] = relationship(back_populates="employee")


class WorkSettings(Base):
    __tablename__ = "work_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    work_start_time: Mapped[str] = mapped_column(String(5), nullable=False, default="08:00")
    work_end_time: Mapped[str] = mapped_column(String(5), nullable=False, default="17:00")
    late_threshold_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    work_days: Mapped[str] = mapped_column(String(20), nullable=False, default="1,2,3,4,5")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class WorkZone(Base):
    __tablename__ = "work_zones"
    __table_args__ = (CheckConstraint("radius_m > 0", name="ck_work_zones_radius_positive"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[int] = mapped_column(Integer, nullable=False, default=100, server_default=text("100"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_attendance_records_employee_day"),
        CheckConstraint(
            "check_in_ts_utc IS NULL OR check_out_ts_utc IS NULL OR check_out_ts_utc >= check_in_ts_utc",
            name="ck_attendance_records_out_after_in",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    check_in_ts_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_method: Mapped[VerificationMethod | None] = mapped_column(
        Enum(VerificationMethod, name="verification_method"),
        nullable=True,
    )
    check_out_ts_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_method: Mapped[VerificationMethod | None] = mapped_column(
        Enum(VerificationMethod, name="verification_method"),
        nullable=True,
    )
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
        default=AttendanceStatus.PRESENT,
        server_default=text("'PRESENT'"),
    )
    day_state: Mapped[DayState] = mapped_column(
        Enum(DayState, name="attendance_day_state"),
        nullable=False,
        default=DayState.NOT_STARTED,
        server_default=text("'NOT_STARTED'"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="attendance_records")
    modifications: Mapped[list[AttendanceModification]] = relationship(back_populates="attendance_record")


class LocationPing(Base):
    __tablename__ = "location_pings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    accuracy_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class FieldTask(Base):
    __tablename__ = "field_tasks"
    __table_args__ = (
        Index(
            "uq_field_tasks_one_active",
            "employee_id",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
            sqlite_where=text("status = 'ACTIVE'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_ts_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    start_method: Mapped[VerificationMethod | None] = mapped_column(
        Enum(VerificationMethod, name="verification_method"),
        nullable=True,
    )
    end_ts_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    end_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    end_method: Mapped[VerificationMethod | None] = mapped_column(
        Enum(VerificationMethod, name="verification_method"),
        nullable=True,
    )
    status: Mapped[FieldTaskStatus] = mapped_column(
        Enum(FieldTaskStatus, name="field_task_status"),
        nullable=False,
        default=FieldTaskStatus.ACTIVE,
        server_default=text("'ACTIVE'"),
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employee: Mapped[Employee] = relationship(back_populates="field_tasks")


class AttendanceModification(Base):
    __tablename__ = "attendance_modifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    attendance_id: Mapped[int] = mapped_column(
        ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    modified_by: Mapped[int] = mapped_column(Integer, nullable=False)
    modification_type: Mapped[ModificationType] = mapped_column(
        Enum(ModificationType, name="attendance_modification_type"),
        nullable=False,
    )
    previous_check_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    previous_check_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    new_check_in: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    new_check_out: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    attendance_record: Mapped[AttendanceRecord] = relationship(back_populates="modifications")


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    leave_type: Mapped[LeaveType] = mapped_column(Enum(LeaveType, name="leave_type"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_days: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    balance_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[LeaveStatus] = mapped_column(
        Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    reviewed_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="leave_requests")


class LeaveBalance(Base):
    __tablename__ = "leave_balances"
    __table_args__ = (UniqueConstraint("employee_id", "year", name="uq_leave_balances_employee_year"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    annual_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=21, server_default=text("21"))
    sick_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=10, server_default=text("10"))
    emergency_balance: Mapped[int] = mapped_column(Integer, nullable=False, default=5, server_default=text("5"))
    used_annual: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    used_sick: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    used_emergency: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AdminNotification(Base):
    __tablename__ = "admin_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[AdminNotificationType] = mapped_column(
        Enum(AdminNotificationType, name="admin_notification_type"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    employee_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class BranchNotification(Base):
    __tablename__ = "branch_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(
        ForeignKey("branches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[BranchNotificationType] = mapped_column(
        Enum(BranchNotificationType, name="branch_notification_type"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    employee_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
