from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from tests.support import MovableClock, make_session_factory, seed_branch, seed_employee
from attendance_engine.errors import ValidationFailedError
from attendance_engine.models import (
    AttendanceRecord,
    AttendanceStatus,
    DayState,
    EmployeeStatus,
    LocationPing,
    VerificationMethod,
)
from attendance_engine.services.locations import (
    CHECK_IN,
    PING,
    field_employees,
    latest_location,
    latest_locations,
    location_history,
)

DAY = date(2026, 3, 10)
PREVIOUS_DAY = date(2026, 3, 9)
NEXT_DAY = date(2026, 3, 11)


class _LocationCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session_factory()()
        self.branch = seed_branch(self.db)
        self.other_branch = seed_branch(self.db, code="BR2", name="Second Branch")
        self.employee = seed_employee(self.db, code="E001", branch_id=self.branch.id)
        self.clock = MovableClock("10:00", DAY)

    def tearDown(self) -> None:
        self.db.close()

    def _ping(self, employee, local_hhmm: str, day: date = DAY, *, lat: float = 1.0) -> LocationPing:  # type: ignore[no-untyped-def]
        stamp = MovableClock(local_hhmm, day).now_utc()
        ping = LocationPing(employee_id=employee.id, lat=lat, lon=2.0, accuracy_m=5.0, ts_utc=stamp)
        self.db.add(ping)
        self.db.commit()
        self.db.refresh(ping)
        return ping

    def _open_day(self, employee, *, lat: float | None = 3.0, checked_out: bool = False) -> AttendanceRecord:  # type: ignore[no-untyped-def]
        check_in_ts = MovableClock("08:00", DAY).now_utc()
        record = AttendanceRecord(
            employee_id=employee.id,
            work_date=DAY,
            check_in_ts_utc=check_in_ts,
            check_in_lat=lat,
            check_in_lon=None if lat is None else 4.0,
            check_in_method=VerificationMethod.FINGERPRINT,
            check_out_ts_utc=MovableClock("09:00", DAY).now_utc() if checked_out else None,
            status=AttendanceStatus.PRESENT,
            day_state=DayState.CHECKED_OUT if checked_out else DayState.CHECKED_IN,
        )
        self.db.add(record)
        self.db.commit()
        return record


class LatestLocationTests(_LocationCase):
    def test_latest_location_for_one_employee(self) -> None:
        self.assertIsNone(latest_location(self.db, self.employee.id))
        self._ping(self.employee, "09:00", lat=1.0)
        newest = self._ping(self.employee, "09:30", lat=1.5)

        self.assertEqual(latest_location(self.db, self.employee.id).id, newest.id)

    def test_latest_locations_keep_newest_recent_ping_of_active_employees(self) -> None:
        other = seed_employee(self.db, code="E002", branch_id=self.other_branch.id)
        stale = seed_employee(self.db, code="E003", branch_id=self.branch.id)
        inactive = seed_employee(self.db, code="E004", branch_id=self.branch.id, status=EmployeeStatus.INACTIVE)
        self._ping(self.employee, "09:30", lat=1.0)
        self._ping(self.employee, "09:50", lat=1.5)
        self._ping(other, "09:40")
        self._ping(stale, "08:30")
        self._ping(inactive, "09:55")

        locations = latest_locations(self.db, clock=self.clock)
        self.assertEqual([item.employee_id for item in locations], [self.employee.id, other.id])
        self.assertEqual(locations[0].lat, 1.5)
        self.assertEqual(locations[0].source, PING)
        self.assertEqual(locations[0].employee_code, "E001")

        scoped = latest_locations(self.db, clock=self.clock, branch_id=self.branch.id)
        self.assertEqual([item.employee_id for item in scoped], [self.employee.id])

    def test_pings_sharing_a_timestamp_yield_one_entry(self) -> None:
        self._ping(self.employee, "09:50", lat=1.0)
        self._ping(self.employee, "09:50", lat=1.9)

        locations = latest_locations(self.db, clock=self.clock)
        self.assertEqual(len(locations), 1)
        self.assertEqual(locations[0].lat, 1.9)


class LocationHistoryTests(_LocationCase):
    def setUp(self) -> None:
        super().setUp()
        self.before_midnight = self._ping(self.employee, "23:30", PREVIOUS_DAY)
        self.after_midnight = self._ping(self.employee, "00:10", DAY)
        self.morning = self._ping(self.employee, "09:00", DAY)
        self.next_day = self._ping(self.employee, "00:05", NEXT_DAY)

    def test_default_range_is_current_local_day(self) -> None:
        pings = location_history(self.db, employee_id=self.employee.id, clock=self.clock)
        self.assertEqual([ping.id for ping in pings], [self.after_midnight.id, self.morning.id])

    def test_explicit_range_is_inclusive(self) -> None:
        pings = location_history(
            self.db,
            employee_id=self.employee.id,
            clock=self.clock,
            start_utc=datetime(2026, 3, 9, 20, 30, tzinfo=timezone.utc),
            end_utc=datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc),
        )
        self.assertEqual(
            [ping.id for ping in pings],
            [self.before_midnight.id, self.after_midnight.id, self.morning.id],
        )

    def test_reversed_range_is_rejected(self) -> None:
        with self.assertRaises(ValidationFailedError) as ctx:
            location_history(
                self.db,
                employee_id=self.employee.id,
                clock=self.clock,
                start_utc=datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc),
                end_utc=datetime(2026, 3, 10, 5, 0, tzinfo=timezone.utc),
            )
        self.assertEqual(ctx.exception.code, "INVALID_TIME_RANGE")


class FieldEmployeeTests(_LocationCase):
    def test_open_days_report_ping_or_check_in_position(self) -> None:
        with_ping = self.employee
        without_ping = seed_employee(self.db, code="E002", branch_id=self.branch.id)
        stale_ping = seed_employee(self.db, code="E003", branch_id=self.other_branch.id)
        no_coordinates = seed_employee(self.db, code="E004", branch_id=self.branch.id)
        gone_home = seed_employee(self.db, code="E005", branch_id=self.branch.id)

        for employee in (with_ping, without_ping, stale_ping):
            self._open_day(employee)
        self._open_day(no_coordinates, lat=None)
        self._open_day(gone_home, checked_out=True)
        self._ping(with_ping, "09:15", lat=7.0)
        self._ping(stale_ping, "18:00", PREVIOUS_DAY, lat=9.0)

        by_id = {item.employee_id: item for item in field_employees(self.db, clock=self.clock)}

        self.assertEqual(set(by_id), {with_ping.id, without_ping.id, stale_ping.id, no_coordinates.id})
        self.assertEqual((by_id[with_ping.id].source, by_id[with_ping.id].lat), (PING, 7.0))
        self.assertEqual((by_id[without_ping.id].source, by_id[without_ping.id].lat), (CHECK_IN, 3.0))
        self.assertEqual((by_id[stale_ping.id].source, by_id[stale_ping.id].lat), (CHECK_IN, 3.0))
        self.assertIsNone(by_id[no_coordinates.id].source)
        self.assertIsNone(by_id[no_coordinates.id].lat)

    def test_branch_filter(self) -> None:
        other = seed_employee(self.db, code="E002", branch_id=self.other_branch.id)
        self._open_day(self.employee)
        self._open_day(other)

        scoped = field_employees(self.db, clock=self.clock, branch_id=self.other_branch.id)
        self.assertEqual([item.employee_id for item in scoped], [other.id])


if __name__ == "__main__":
    unittest.main()
