from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import patch

from sqlalchemy import select

from tests.support import (
    ExplodingNotifier,
    MovableClock,
    RecordingNotifier,
    make_session_factory,
    seed_branch,
    seed_employee,
    seed_work_settings,
    seed_zone,
)
from attendance_engine.errors import ConflictError, ForbiddenError, NotFoundError, ValidationFailedError
from attendance_engine.models import (
    AttendanceRecord,
    AttendanceStatus,
    DayState,
    EmployeeRole,
    EmployeeStatus,
    LocationPing,
    VerificationMethod,
)
from attendance_engine.security import Identity
from attendance_engine.services.attendance import (
    CHECK_IN,
    CHECK_OUT,
    check_in,
    check_out,
    ensure_employee_in_scope,
    get_today_record,
    list_history,
    list_records_by_date,
    next_day_state,
    resolve_employee,
    update_location,
)
from attendance_engine.services.devices import reset_device

OUTSIDE_LAT = 200 / 111_195


class _AttendanceCase(unittest.TestCase):
    def setUp(self) -> None:
        self.session_factory = make_session_factory()
        self.db = self.session_factory()
        self.branch = seed_branch(self.db)
        self.employee = seed_employee(self.db, branch_id=self.branch.id, user_id=77)
        seed_work_settings(self.db, start="08:00", end="17:00", late_threshold_minutes=15)
        self.clock = MovableClock("08:00")
        self.notifier = RecordingNotifier()

    def tearDown(self) -> None:
        self.db.close()

    def _check_in(self, *, employee=None, lat: float = 0.0, lon: float = 0.0, device_id=None, notifier=None):  # type: ignore[no-untyped-def]
        return check_in(
            self.db,
            employee=employee or self.employee,
            lat=lat,
            lon=lon,
            method=VerificationMethod.EYE,
            device_id=device_id,
            clock=self.clock,
            notifier=notifier or self.notifier,
        )

    def _check_out(self, *, employee=None, device_id=None):  # type: ignore[no-untyped-def]
        return check_out(
            self.db,
            employee=employee or self.employee,
            lat=0.0,
            lon=0.0,
            method=VerificationMethod.EYE,
            device_id=device_id,
            clock=self.clock,
            notifier=self.notifier,
        )


class LatenessTests(_AttendanceCase):
    def test_check_in_at_threshold_is_present(self) -> None:
        self.clock.set_local("08:15")
        result = self._check_in()

        self.assertEqual(result.status, AttendanceStatus.PRESENT)
        self.assertEqual(result.record.day_state, DayState.CHECKED_IN)
        self.assertNotIn("LATE", self.notifier.types())
        self.assertIn("EMPLOYEE_CHECK_IN", self.notifier.types())

    def test_check_in_one_minute_after_threshold_is_late(self) -> None:
        self.clock.set_local("08:16")
        result = self._check_in()

        self.assertEqual(result.status, AttendanceStatus.LATE)
        self.assertIn("LATE", self.notifier.types())
        self.assertIn("EMPLOYEE_LATE", self.notifier.types())

    def test_lateness_uses_organization_offset_not_utc(self) -> None:
        # 05:30 UTC is 08:30 local at +03:00.
        self.clock.set_local("08:30")
        self.assertEqual(self.clock.now_utc().hour, 5)
        result = self._check_in()
        self.assertEqual(result.status, AttendanceStatus.LATE)


class CheckInOutTransitionTests(_AttendanceCase):
    def test_second_check_in_same_day_conflicts(self) -> None:
        self._check_in()
        with self.assertRaises(ConflictError) as ctx:
            self._check_in()
        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_IN")

    def test_check_out_without_check_in_conflicts(self) -> None:
        with self.assertRaises(ConflictError) as ctx:
            self._check_out()
        self.assertEqual(ctx.exception.code, "NO_CHECKIN_TODAY")

    def test_check_out_twice_conflicts(self) -> None:
        self._check_in()
        self.clock.set_local("17:05")
        result = self._check_out()
        self.assertEqual(result.record.day_state, DayState.CHECKED_OUT)
        self.assertFalse(result.early_checkout)

        with self.assertRaises(ConflictError) as ctx:
            self._check_out()
        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_OUT")

    def test_early_checkout_is_advisory(self) -> None:
        self._check_in()
        self.clock.set_local("14:59")
        result = self._check_out()

        self.assertTrue(result.early_checkout)
        self.assertEqual(result.record.day_state, DayState.CHECKED_OUT)
        self.assertIn("EARLY_CHECKOUT", self.notifier.types())
        self.assertIn("EMPLOYEE_EARLY_CHECKOUT", self.notifier.types())
        self.assertIn("EMPLOYEE_CHECK_OUT", self.notifier.types())

    def test_check_out_at_early_boundary_is_not_early(self) -> None:
        self._check_in()
        self.clock.set_local("15:00")
        result = self._check_out()
        self.assertFalse(result.early_checkout)
        self.assertNotIn("EARLY_CHECKOUT", self.notifier.types())

    def test_next_day_state_table(self) -> None:
        self.assertEqual(next_day_state(DayState.NOT_STARTED, CHECK_IN), DayState.CHECKED_IN)
        self.assertEqual(next_day_state(DayState.CHECKED_IN, CHECK_OUT), DayState.CHECKED_OUT)
        with self.assertRaises(ConflictError) as ctx:
            next_day_state(DayState.NOT_STARTED, CHECK_OUT)
        self.assertEqual(ctx.exception.code, "NO_CHECKIN_TODAY")
        with self.assertRaises(ConflictError) as ctx:
            next_day_state(DayState.CHECKED_OUT, CHECK_IN)
        self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_IN")

    def test_duplicate_insert_race_maps_to_conflict(self) -> None:
        self._check_in()
        other_db = self.session_factory()
        try:
            with patch("attendance_engine.services.attendance.get_day_record", return_value=None):
                with self.assertRaises(ConflictError) as ctx:
                    check_in(
                        other_db,
                        employee=other_db.get(type(self.employee), self.employee.id),
                        lat=0.0,
                        lon=0.0,
                        method=VerificationMethod.EYE,
                        device_id=None,
                        clock=self.clock,
                        notifier=self.notifier,
                    )
            self.assertEqual(ctx.exception.code, "ALREADY_CHECKED_IN")
        finally:
            other_db.close()

        rows = list(self.db.scalars(select(AttendanceRecord)).all())
        self.assertEqual(len(rows), 1)

    def test_method_must_be_enrolled(self) -> None:
        employee = seed_employee(self.db, code="E002", fingerprint_enabled=False, face_data_id=None)
        for method in (VerificationMethod.FINGERPRINT, VerificationMethod.FACE):
            with self.assertRaises(ValidationFailedError) as ctx:
                check_in(
                    self.db,
                    employee=employee,
                    lat=0.0,
                    lon=0.0,
                    method=method,
                    device_id=None,
                    clock=self.clock,
                    notifier=self.notifier,
                )
            self.assertEqual(ctx.exception.code, "METHOD_NOT_ENROLLED")


class GeofenceGateTests(_AttendanceCase):
    def test_outside_zone_blocks_and_notifies(self) -> None:
        seed_zone(self.db, lat=0.0, lon=0.0, radius_m=100)

        with self.assertRaises(ForbiddenError) as ctx:
            self._check_in(lat=OUTSIDE_LAT)
        self.assertEqual(ctx.exception.code, "OUTSIDE_WORK_ZONE")
        self.assertEqual(self.notifier.types(), ["OUTSIDE_ZONE"])
        self.assertIsNone(get_today_record(self.db, employee=self.employee, clock=self.clock))

    def test_inside_zone_allows_check_in(self) -> None:
        seed_zone(self.db, lat=0.0, lon=0.0, radius_m=100)
        result = self._check_in(lat=0.0)
        self.assertEqual(result.record.check_in_lat, 0.0)

    def test_notifier_failure_does_not_mask_rejection(self) -> None:
        seed_zone(self.db, lat=0.0, lon=0.0, radius_m=100)
        with self.assertRaises(ForbiddenError) as ctx:
            self._check_in(lat=OUTSIDE_LAT, notifier=ExplodingNotifier())
        self.assertEqual(ctx.exception.code, "OUTSIDE_WORK_ZONE")

    def test_notifier_failure_does_not_fail_transition(self) -> None:
        result = self._check_in(notifier=ExplodingNotifier())
        self.assertEqual(result.record.day_state, DayState.CHECKED_IN)


class DeviceBindingFlowTests(_AttendanceCase):
    def test_first_use_binds_then_mismatch_blocks_then_reset_rebinds(self) -> None:
        self._check_in(device_id="D1")
        self.db.refresh(self.employee)
        self.assertEqual(self.employee.registered_device_id, "D1")
        self.assertIsNotNone(self.employee.device_registered_at)

        self.clock.set_local("17:30")
        with self.assertRaises(ForbiddenError) as ctx:
            self._check_out(device_id="D2")
        self.assertEqual(ctx.exception.code, "DEVICE_UNAUTHORIZED")
        self.assertIn("DEVICE_MISMATCH", self.notifier.types())
        self.db.refresh(self.employee)
        self.assertEqual(self.employee.registered_device_id, "D1")

        reset_device(self.db, self.employee.id)
        result = self._check_out(device_id="D2")
        self.assertEqual(result.record.day_state, DayState.CHECKED_OUT)
        self.db.refresh(self.employee)
        self.assertEqual(self.employee.registered_device_id, "D2")

    def test_blocked_check_in_does_not_bind_device(self) -> None:
        seed_zone(self.db, lat=0.0, lon=0.0, radius_m=100)
        with self.assertRaises(ForbiddenError):
            self._check_in(lat=OUTSIDE_LAT, device_id="D1")
        self.db.rollback()
        self.db.refresh(self.employee)
        self.assertIsNone(self.employee.registered_device_id)


class EmployeeResolutionTests(_AttendanceCase):
    def test_resolve_by_code_and_by_identity(self) -> None:
        by_code = resolve_employee(self.db, employee_code="E001", identity=None)
        self.assertEqual(by_code.id, self.employee.id)

        identity = Identity(user_id=77, role=EmployeeRole.EMPLOYEE)
        by_identity = resolve_employee(self.db, employee_code=None, identity=identity)
        self.assertEqual(by_identity.id, self.employee.id)

    def test_unknown_employee_not_found(self) -> None:
        with self.assertRaises(NotFoundError):
            resolve_employee(self.db, employee_code="NOPE", identity=None)

    def test_inactive_employee_forbidden(self) -> None:
        seed_employee(self.db, code="E009", status=EmployeeStatus.SUSPENDED)
        with self.assertRaises(ForbiddenError) as ctx:
            resolve_employee(self.db, employee_code="E009", identity=None)
        self.assertEqual(ctx.exception.code, "EMPLOYEE_INACTIVE")


class LocationAndHistoryTests(_AttendanceCase):
    def test_left_zone_alert_only_while_checked_in(self) -> None:
        seed_zone(self.db, lat=0.0, lon=0.0, radius_m=100)

        ack = update_location(
            self.db,
            employee=self.employee,
            lat=OUTSIDE_LAT,
            lon=0.0,
            accuracy_m=5.0,
            clock=self.clock,
            notifier=self.notifier,
        )
        self.assertFalse(ack.inside)
        self.assertFalse(ack.left_zone_alert)
        self.assertEqual(self.notifier.events, [])

        self._check_in(lat=0.0)
        ack = update_location(
            self.db,
            employee=self.employee,
            lat=OUTSIDE_LAT,
            lon=0.0,
            accuracy_m=5.0,
            clock=self.clock,
            notifier=self.notifier,
        )
        self.assertTrue(ack.left_zone_alert)
        self.assertIn("LEFT_ZONE", self.notifier.types())
        self.assertIn("EMPLOYEE_OUTSIDE_ZONE", self.notifier.types())

        record = get_today_record(self.db, employee=self.employee, clock=self.clock)
        self.assertEqual(record.day_state, DayState.CHECKED_IN)
        pings = list(self.db.scalars(select(LocationPing)).all())
        self.assertEqual(len(pings), 2)

    def test_history_is_newest_first_and_limited(self) -> None:
        for day in (9, 10):
            self.clock.set_local("08:00", self.clock.today().replace(day=day))
            self._check_in()

        history = list_history(self.db, employee=self.employee, limit=30)
        self.assertEqual([item.work_date.day for item in history], [10, 9])
        self.assertEqual(len(list_history(self.db, employee=self.employee, limit=1)), 1)

        with self.assertRaises(ValidationFailedError):
            list_history(self.db, employee=self.employee, limit=0)
        with self.assertRaises(ValidationFailedError):
            list_history(self.db, employee=self.employee, limit=366)

    def test_records_by_date_ordered_by_check_in_with_branch_filter(self) -> None:
        other_branch = seed_branch(self.db, code="BR2", name="Second Branch")
        colleague = seed_employee(self.db, code="E002", branch_id=self.branch.id)
        elsewhere = seed_employee(self.db, code="E003", branch_id=other_branch.id)

        self.clock.set_local("08:30")
        self._check_in(employee=colleague)
        self.clock.set_local("07:55")
        self._check_in(employee=elsewhere)
        self.clock.set_local("08:10")
        self._check_in()

        rows = list_records_by_date(self.db, work_date=self.clock.today())
        self.assertEqual(
            [employee.employee_code for _record, employee in rows],
            ["E003", "E001", "E002"],
        )

        scoped = list_records_by_date(self.db, work_date=self.clock.today(), branch_id=self.branch.id)
        self.assertEqual([employee.employee_code for _record, employee in scoped], ["E001", "E002"])
        self.assertEqual(list_records_by_date(self.db, work_date=date(2026, 3, 11)), [])


class EmployeeScopeTests(_AttendanceCase):
    def test_admin_reaches_any_employee(self) -> None:
        admin = Identity(user_id=1, role=EmployeeRole.ADMIN)
        employee = ensure_employee_in_scope(self.db, employee_id=self.employee.id, actor=admin)
        self.assertEqual(employee.id, self.employee.id)

    def test_branch_manager_limited_to_own_branch(self) -> None:
        other_branch = seed_branch(self.db, code="BR2", name="Second Branch")
        own = Identity(user_id=2, role=EmployeeRole.BRANCH_MANAGER, branch_id=self.branch.id)
        foreign = Identity(user_id=3, role=EmployeeRole.BRANCH_MANAGER, branch_id=other_branch.id)
        unassigned = Identity(user_id=4, role=EmployeeRole.BRANCH_MANAGER)

        self.assertEqual(ensure_employee_in_scope(self.db, employee_id=self.employee.id, actor=own).id, self.employee.id)
        for actor in (foreign, unassigned):
            with self.assertRaises(ForbiddenError) as ctx:
                ensure_employee_in_scope(self.db, employee_id=self.employee.id, actor=actor)
            self.assertEqual(ctx.exception.code, "INSUFFICIENT_ROLE")

    def test_unknown_employee_is_not_found(self) -> None:
        admin = Identity(user_id=1, role=EmployeeRole.ADMIN)
        with self.assertRaises(NotFoundError):
            ensure_employee_in_scope(self.db, employee_id=999, actor=admin)


if __name__ == "__main__":
    unittest.main()
