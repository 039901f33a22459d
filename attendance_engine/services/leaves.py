from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import func, select, update
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
    BranchNotificationType,
    Employee,
    EmployeeRole,
    LeaveBalance,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
)
from attendance_engine.schemas import LeaveBalanceBucket, LeaveBalanceSummary
from attendance_engine.security import Identity
from attendance_engine.services.clock import OrganizationClock
from attendance_engine.services.notifications import Notifier, admin_event, branch_event, safe_emit
from attendance_engine.settings import get_settings

logger = logging.getLogger("app.leaves")

# leave type -> (allotment column, used column); UNPAID is not tracked.
BALANCE_COLUMNS: dict[LeaveType, tuple[str, str]] = {
    LeaveType.ANNUAL: ("annual_balance", "used_annual"),
    LeaveType.SICK: ("sick_balance", "used_sick"),
    LeaveType.EMERGENCY: ("emergency_balance", "used_emergency"),
}

REVIEWER_ROLES = frozenset({EmployeeRole.ADMIN, EmployeeRole.BRANCH_MANAGER})


def inclusive_days(start_date: date, end_date: date) -> int:
    return (end_date - start_date).days + 1


def _select_balance(db: Session, employee_id: int, year: int) -> LeaveBalance | None:
    return db.scalar(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.year == year,
        )
    )


def get_or_create_balance(db: Session, employee_id: int, year: int) -> LeaveBalance:
    balance = _select_balance(db, employee_id, year)
    if balance is not None:
        return balance

    settings = get_settings()
    balance = LeaveBalance(
        employee_id=employee_id,
        year=year,
        annual_balance=settings.default_annual_leave_days,
        sick_balance=settings.default_sick_leave_days,
        emergency_balance=settings.default_emergency_leave_days,
        used_annual=0,
        used_sick=0,
        used_emergency=0,
    )
    db.add(balance)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the row first.
        db.rollback()
        balance = _select_balance(db, employee_id, year)
        if balance is None:
            raise
        return balance

    db.refresh(balance)
    logger.info("leave_balance_created", extra={"employee_id": employee_id, "year": year})
    return balance


def remaining_days(balance: LeaveBalance, leave_type: LeaveType) -> int | None:
    columns = BALANCE_COLUMNS.get(leave_type)
    if columns is None:
        return None
    total_column, used_column = columns
    return getattr(balance, total_column) - getattr(balance, used_column)


def _bucket(balance: LeaveBalance, leave_type: LeaveType) -> LeaveBalanceBucket:
    total_column, used_column = BALANCE_COLUMNS[leave_type]
    total = getattr(balance, total_column)
    used = getattr(balance, used_column)
    return LeaveBalanceBucket(total=total, used=used, remaining=total - used)


def get_balance_summary(db: Session, *, employee: Employee, year: int) -> LeaveBalanceSummary:
    balance = get_or_create_balance(db, employee.id, year)
    return LeaveBalanceSummary(
        year=year,
        annual=_bucket(balance, LeaveType.ANNUAL),
        sick=_bucket(balance, LeaveType.SICK),
        emergency=_bucket(balance, LeaveType.EMERGENCY),
    )


def request_leave(
    db: Session,
    *,
    employee: Employee,
    leave_type: LeaveType,
    start_date: date,
    end_date: date,
    reason: str,
    clock: OrganizationClock,
    notifier: Notifier,
) -> LeaveRequest:
    if end_date < start_date:
        raise ValidationFailedError("INVALID_DATE_RANGE", "end_date must be greater than or equal to start_date.")
    normalized_reason = (reason or "").strip()
    if not normalized_reason:
        raise ValidationFailedError("REASON_REQUIRED", "A reason is required for leave requests.")

    total_days = inclusive_days(start_date, end_date)
    balance_year = clock.today().year

    if leave_type != LeaveType.UNPAID:
        balance = get_or_create_balance(db, employee.id, balance_year)
        available = remaining_days(balance, leave_type)
        if available is not None and available < total_days:
            logger.info(
                "leave_request_insufficient_balance",
                extra={
                    "employee_id": employee.id,
                    "leave_type": leave_type.value,
                    "requested_days": total_days,
                    "remaining_days": available,
                },
            )
            raise ValidationFailedError(
                "INSUFFICIENT_BALANCE",
                f"Insufficient {leave_type.value.lower()} leave balance: {available} remaining, {total_days} requested.",
            )

    leave = LeaveRequest(
        employee_id=employee.id,
        leave_type=leave_type,
        start_date=start_date,
        end_date=end_date,
        total_days=total_days,
        reason=normalized_reason,
        balance_year=balance_year,
        status=LeaveStatus.PENDING,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)

    logger.info(
        "leave_requested",
        extra={
            "employee_id": employee.id,
            "leave_request_id": leave.id,
            "leave_type": leave_type.value,
            "total_days": total_days,
        },
    )

    message = (
        f"Employee {employee.full_name} ({employee.employee_code}) requested {total_days} day(s) of "
        f"{leave_type.value.lower()} leave from {start_date.isoformat()} to {end_date.isoformat()}."
    )
    safe_emit(
        notifier,
        admin_event(AdminNotificationType.SYSTEM, "New leave request", message, employee_id=employee.id),
    )
    safe_emit(
        notifier,
        branch_event(
            employee.branch_id,
            BranchNotificationType.GENERAL,
            "New leave request",
            message,
            employee_id=employee.id,
        ),
    )
    return leave


def _ensure_reviewer_may_decide(reviewer: Identity, employee: Employee) -> None:
    if reviewer.role not in REVIEWER_ROLES:
        raise ForbiddenError("INSUFFICIENT_ROLE", "Only administrators or branch managers may decide leave.")
    if reviewer.role == EmployeeRole.BRANCH_MANAGER and (
        reviewer.branch_id is None or reviewer.branch_id != employee.branch_id
    ):
        raise ForbiddenError("INSUFFICIENT_ROLE", "Branch managers may only decide requests in their own branch.")


def decide_leave(
    db: Session,
    *,
    request_id: int,
    outcome: LeaveStatus,
    reviewer: Identity,
    rejection_reason: str | None,
    clock: OrganizationClock,
    notifier: Notifier,
) -> LeaveRequest:
    if outcome not in (LeaveStatus.APPROVED, LeaveStatus.REJECTED):
        raise ValidationFailedError("INVALID_OUTCOME", "Outcome must be APPROVED or REJECTED.")

    leave = db.get(LeaveRequest, request_id)
    if leave is None:
        raise NotFoundError("LEAVE_REQUEST_NOT_FOUND", "Leave request not found.")
    employee = db.get(Employee, leave.employee_id)
    if employee is None:
        raise NotFoundError("EMPLOYEE_NOT_FOUND", "Employee not found.")
    _ensure_reviewer_may_decide(reviewer, employee)

    if leave.status != LeaveStatus.PENDING:
        raise ConflictError("ALREADY_DECIDED", "Leave request has already been decided.")

    normalized_reason = (rejection_reason or "").strip()
    if outcome == LeaveStatus.REJECTED and not normalized_reason:
        raise ValidationFailedError("REJECTION_REASON_REQUIRED", "A rejection reason is required.")

    columns = BALANCE_COLUMNS.get(leave.leave_type)
    balance: LeaveBalance | None = None
    if outcome == LeaveStatus.APPROVED and columns is not None:
        balance = get_or_create_balance(db, leave.employee_id, leave.balance_year)

    decided_at = clock.now_utc()
    values: dict[str, object] = {
        "status": outcome,
        "reviewed_by": reviewer.user_id,
        "reviewed_at": decided_at,
    }
    if outcome == LeaveStatus.REJECTED:
        values["rejection_reason"] = normalized_reason

    result = db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == leave.id,
            LeaveRequest.status == LeaveStatus.PENDING,
        )
        .values(**values)
    )
    if result.rowcount == 0:
        db.rollback()
        raise ConflictError("ALREADY_DECIDED", "Leave request has already been decided.")

    if balance is not None and columns is not None:
        used_column = columns[1]
        db.execute(
            update(LeaveBalance)
            .where(LeaveBalance.id == balance.id)
            .values({used_column: getattr(LeaveBalance, used_column) + leave.total_days})
        )
    db.commit()
    db.refresh(leave)
    if balance is not None:
        db.refresh(balance)

    logger.info(
        "leave_decided",
        extra={
            "leave_request_id": leave.id,
            "employee_id": leave.employee_id,
            "outcome": outcome.value,
            "reviewer_id": reviewer.user_id,
            "total_days": leave.total_days,
        },
    )

    if outcome == LeaveStatus.APPROVED:
        message = f"Leave request #{leave.id} of {employee.full_name} ({employee.employee_code}) was approved."
    else:
        message = (
            f"Leave request #{leave.id} of {employee.full_name} ({employee.employee_code}) was rejected: "
            f"{normalized_reason}"
        )
    safe_emit(
        notifier,
        branch_event(
            employee.branch_id,
            BranchNotificationType.GENERAL,
            "Leave request decided",
            message,
            employee_id=employee.id,
        ),
    )
    return leave


def list_employee_requests(db: Session, *, employee: Employee) -> list[LeaveRequest]:
    return list(
        db.scalars(
            select(LeaveRequest)
            .where(LeaveRequest.employee_id == employee.id)
            .order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
        ).all()
    )


def list_requests(
    db: Session,
    *,
    status: LeaveStatus | None = None,
    branch_id: int | None = None,
) -> list[LeaveRequest]:
    stmt = select(LeaveRequest).order_by(LeaveRequest.created_at.desc(), LeaveRequest.id.desc())
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    if branch_id is not None:
        stmt = stmt.join(Employee, Employee.id == LeaveRequest.employee_id).where(Employee.branch_id == branch_id)
    return list(db.scalars(stmt).all())


def count_pending(db: Session, *, branch_id: int | None = None) -> int:
    stmt = select(func.count(LeaveRequest.id)).where(LeaveRequest.status == LeaveStatus.PENDING)
    if branch_id is not None:
        stmt = stmt.join(Employee, Employee.id == LeaveRequest.employee_id).where(Employee.branch_id == branch_id)
    return int(db.scalar(stmt) or 0)
