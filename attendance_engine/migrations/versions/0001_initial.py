"""Initial attendance and leave ledger schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

employee_role = postgresql.ENUM("EMPLOYEE", "BRANCH_MANAGER", "ADMIN", name="employee_role", create_type=False)
employee_status = postgresql.ENUM("ACTIVE", "INACTIVE", "SUSPENDED", name="employee_status", create_type=False)
verification_method = postgresql.ENUM("FACE", "FINGERPRINT", "EYE", name="verification_method", create_type=False)
attendance_status = postgresql.ENUM(
    "PRESENT",
    "LATE",
    "ABSENT",
    "HALF_DAY",
    name="attendance_status",
    create_type=False,
)
attendance_day_state = postgresql.ENUM(
    "NOT_STARTED",
    "CHECKED_IN",
    "CHECKED_OUT",
    name="attendance_day_state",
    create_type=False,
)
field_task_status = postgresql.ENUM("ACTIVE", "COMPLETED", "CANCELLED", name="field_task_status", create_type=False)
attendance_modification_type = postgresql.ENUM(
    "EDIT",
    "ADD",
    "DELETE",
    "RESET",
    name="attendance_modification_type",
    create_type=False,
)
leave_type = postgresql.ENUM("ANNUAL", "SICK", "EMERGENCY", "UNPAID", name="leave_type", create_type=False)
leave_status = postgresql.ENUM("PENDING", "APPROVED", "REJECTED", name="leave_status", create_type=False)
admin_notification_type = postgresql.ENUM(
    "LATE",
    "ABSENT",
    "OUTSIDE_ZONE",
    "LEFT_ZONE",
    "EARLY_CHECKOUT",
    "SYSTEM",
    "DEVICE_MISMATCH",
    name="admin_notification_type",
    create_type=False,
)
branch_notification_type = postgresql.ENUM(
    "EMPLOYEE_ADDED",
    "EMPLOYEE_CHECK_IN",
    "EMPLOYEE_CHECK_OUT",
    "EMPLOYEE_LATE",
    "EMPLOYEE_ABSENT",
    "EMPLOYEE_EARLY_CHECKOUT",
    "EMPLOYEE_OUTSIDE_ZONE",
    "GENERAL",
    name="branch_notification_type",
    create_type=False,
)

ALL_ENUMS = (
    employee_role,
    employee_status,
    verification_method,
    attendance_status,
    attendance_day_state,
    field_task_status,
    attendance_modification_type,
    leave_type,
    leave_status,
    admin_notification_type,
    branch_notification_type,
)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("code", name="uq_branches_code"),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("employee_code", sa.String(length=50), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("role", employee_role, nullable=False, server_default=sa.text("'EMPLOYEE'")),
        sa.Column("status", employee_status, nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("branch_id", sa.Integer(), nullable=True),
        sa.Column("registered_device_id", sa.String(length=255), nullable=True),
        sa.Column("device_registered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("fingerprint_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("face_data_id", sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_employees_user_id", "employees", ["user_id"], unique=True)
    op.create_index("ix_employees_employee_code", "employees", ["employee_code"], unique=True)
    op.create_index("ix_employees_branch_id", "employees", ["branch_id"], unique=False)

    op.create_table(
        "work_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("work_start_time", sa.String(length=5), nullable=False),
        sa.Column("work_end_time", sa.String(length=5), nullable=False),
        sa.Column("late_threshold_minutes", sa.Integer(), nullable=False),
        sa.Column("work_days", sa.String(length=20), nullable=False),
        _timestamp("updated_at"),
    )

    op.create_table(
        "work_zones",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lon", sa.Float(), nullable=False),
        sa.Column("radius_m", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("radius_m > 0", name="ck_work_zones_radius_positive"),
    )

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("check_in_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_in_lat", sa.Float(), nullable=True),
        sa.Column("check_in_lon", sa.Float(), nullable=True),
        sa.Column("check_in_method", verification_method, nullable=True),
        sa.Column("check_out_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_lat", sa.Float(), nullable=True),
        sa.Column("check_out_lon", sa.Float(), nullable=True),
        sa.Column("check_out_method", verification_method, nullable=True),
        sa.Column("status", attendance_status, nullable=False, server_default=sa.text("'PRESENT'")),
        sa.Column("day_state", attendance_day_state, nullable=False, server_default=sa.text("'NOT_STARTED'")),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_attendance_records_employee_day"),
        sa.CheckConstraint(
            "check_in_ts_utc IS NULL OR check_out_ts_utc IS NULL OR check_out_ts_utc >= check_in_ts_utc",
            name="ck_attendance_records_out_after_in",
        ),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index("ix_attendance_records_work_date", "attendance_records", ["work_date"], unique=False)

    op.create_table(
        "location_pings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("lat", sa.Float(), nullable=False),
        sa.Column("lon", sa.Float(), nullable=False),
        sa.Column("accuracy_m", sa.Float(), nullable=True),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_location_pings_employee_id", "location_pings", ["employee_id"], unique=False)
    op.create_index("ix_location_pings_ts_utc", "location_pings", ["ts_utc"], unique=False)

    op.create_table(
        "field_tasks",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("start_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_lat", sa.Float(), nullable=True),
        sa.Column("start_lon", sa.Float(), nullable=True),
        sa.Column("start_method", verification_method, nullable=True),
        sa.Column("end_ts_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_lat", sa.Float(), nullable=True),
        sa.Column("end_lon", sa.Float(), nullable=True),
        sa.Column("end_method", verification_method, nullable=True),
        sa.Column("status", field_task_status, nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_field_tasks_employee_id", "field_tasks", ["employee_id"], unique=False)
    op.create_index(
        "uq_field_tasks_one_active",
        "field_tasks",
        ["employee_id"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )

    op.create_table(
        "attendance_modifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("attendance_id", sa.Integer(), nullable=False),
        sa.Column("modified_by", sa.Integer(), nullable=False),
        sa.Column("modification_type", attendance_modification_type, nullable=False),
        sa.Column("previous_check_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("previous_check_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("new_check_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("new_check_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["attendance_id"], ["attendance_records.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_attendance_modifications_attendance_id",
        "attendance_modifications",
        ["attendance_id"],
        unique=False,
    )

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("leave_type", leave_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("balance_year", sa.Integer(), nullable=False),
        sa.Column("status", leave_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("reviewed_by", sa.Integer(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_leave_requests_employee_id", "leave_requests", ["employee_id"], unique=False)

    op.create_table(
        "leave_balances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("annual_balance", sa.Integer(), nullable=False, server_default=sa.text("21")),
        sa.Column("sick_balance", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("emergency_balance", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("used_annual", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("used_sick", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("used_emergency", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "year", name="uq_leave_balances_employee_year"),
    )
    op.create_index("ix_leave_balances_employee_id", "leave_balances", ["employee_id"], unique=False)

    op.create_table(
        "admin_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("type", admin_notification_type, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
    )
    op.create_index("ix_admin_notifications_employee_id", "admin_notifications", ["employee_id"], unique=False)

    op.create_table(
        "branch_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("type", branch_notification_type, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_branch_notifications_branch_id", "branch_notifications", ["branch_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_branch_notifications_branch_id", table_name="branch_notifications")
    op.drop_table("branch_notifications")
    op.drop_index("ix_admin_notifications_employee_id", table_name="admin_notifications")
    op.drop_table("admin_notifications")
    op.drop_index("ix_leave_balances_employee_id", table_name="leave_balances")
    op.drop_table("leave_balances")
    op.drop_index("ix_leave_requests_employee_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_index("ix_attendance_modifications_attendance_id", table_name="attendance_modifications")
    op.drop_table("attendance_modifications")
    op.drop_index("uq_field_tasks_one_active", table_name="field_tasks")
    op.drop_index("ix_field_tasks_employee_id", table_name="field_tasks")
    op.drop_table("field_tasks")
    op.drop_index("ix_location_pings_ts_utc", table_name="location_pings")
    op.drop_index("ix_location_pings_employee_id", table_name="location_pings")
    op.drop_table("location_pings")
    op.drop_index("ix_attendance_records_work_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_table("work_zones")
    op.drop_table("work_settings")
    op.drop_index("ix_employees_branch_id", table_name="employees")
    op.drop_index("ix_employees_employee_code", table_name="employees")
    op.drop_index("ix_employees_user_id", table_name="employees")
    op.drop_table("employees")
    op.drop_table("branches")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
