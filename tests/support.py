from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_engine import models
from attendance_engine.db import Base
from attendance_engine.services.clock import OrganizationClock
from attendance_engine.services.notifications import NotificationEvent

OFFSET_MINUTES = 180
DEFAULT_DAY = date(2026, 3, 10)


def make_session_factory() -> sessionmaker:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def override_get_db(session_factory: sessionmaker):
    def _override() -> Generator[Session, None, None]:
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    return _override


class MovableClock(OrganizationClock):
    """Organization clock whose current local time can be set by tests."""

    def __init__(self, local_hhmm: str = "08:00", day: date = DEFAULT_DAY) -> None:
        self._current = datetime.now(timezone.utc)
        super().__init__(OFFSET_MINUTES, now_fn=lambda: self._current)
        self.set_local(local_hhmm, day)

    def set_local(self, local_hhmm: str, day: date = DEFAULT_DAY) -> None:
        hour, minute = (int(part) for part in local_hhmm.split(":"))
        local = datetime(day.year, day.month, day.day, hour, minute, tzinfo=self.tz)
        self._current = local.astimezone(timezone.utc)

    def advance(self, minutes: int) -> None:
        self._current = self._current + timedelta(minutes=minutes)


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []

    def emit(self, event: NotificationEvent | None) -> None:
        if event is not None:
            self.events.append(event)

    def types(self) -> list[str]:
        return [event.type.value for event in self.events]


class ExplodingNotifier:
    def emit(self, event: NotificationEvent | None) -> None:
        raise RuntimeError("notification sink unavailable")


def seed_branch(db: Session, *, code: str = "HQ", name: str = "Head Office") -> models.Branch:
    branch = models.Branch(name=name, code=code, is_active=True)
    db.add(branch)
    db.commit()
    db.refresh(branch)
    return branch


def seed_employee(
    db: Session,
    *,
    code: str = "E001",
    full_name: str = "Test Employee",
    branch_id: int | None = None,
    user_id: int | None = None,
    role: models.EmployeeRole = models.EmployeeRole.EMPLOYEE,
    status: models.EmployeeStatus = models.EmployeeStatus.ACTIVE,
    fingerprint_enabled: bool = True,
    face_data_id: str | None = "face-1",
    registered_device_id: str | None = None,
) -> models.Employee:
    employee = models.Employee(
        employee_code=code,
        full_name=full_name,
        branch_id=branch_id,
        user_id=user_id,
        role=role,
        status=status,
        fingerprint_enabled=fingerprint_enabled,
        face_data_id=face_data_id,
        registered_device_id=registered_device_id,
    )
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def seed_zone(
    db: Session,
    *,
    name: str = "HQ",
    lat: float = 0.0,
    lon: float = 0.0,
    radius_m: int = 100,
    is_active: bool = True,
) -> models.WorkZone:
    zone = models.WorkZone(name=name, lat=lat, lon=lon, radius_m=radius_m, is_active=is_active)
    db.add(zone)
    db.commit()
    db.refresh(zone)
    return zone


def seed_work_settings(
    db: Session,
    *,
    start: str = "08:00",
    end: str = "17:00",
    late_threshold_minutes: int = 15,
) -> models.WorkSettings:
    work_settings = models.WorkSettings(
        work_start_time=start,
        work_end_time=end,
        late_threshold_minutes=late_threshold_minutes,
        work_days="1,2,3,4,5",
    )
    db.add(work_settings)
    db.commit()
    db.refresh(work_settings)
    return work_settings
