from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from attendance_engine.errors import NotFoundError, ValidationFailedError
from attendance_engine.models import WorkSettings, WorkZone
from attendance_engine.schemas import WorkSettingsUpdate, WorkZoneCreate, WorkZoneUpdate
from attendance_engine.settings import get_settings

logger = logging.getLogger("app.attendance")


def parse_hhmm(value: str) -> int:
    """Convert an ``HH:MM`` string into minutes since midnight."""
    try:
        hour_raw, minute_raw = value.strip().split(":", 1)
        hour = int(hour_raw)
        minute = int(minute_raw)
    except (AttributeError, ValueError) as exc:
        raise ValidationFailedError("INVALID_TIME_FORMAT", f"Invalid HH:MM value: {value!r}.") from exc
    if not 0 <= hour <= 23 or not 0 <= minute <= 59:
        raise ValidationFailedError("INVALID_TIME_FORMAT", f"Invalid HH:MM value: {value!r}.")
    return hour * 60 + minute


def get_work_settings(db: Session) -> WorkSettings:
    work_settings = db.scalar(select(WorkSettings).order_by(WorkSettings.id.asc()))
    if work_settings is not None:
        return work_settings

    settings = get_settings()
    work_settings = WorkSettings(
        work_start_time=settings.default_work_start_time,
        work_end_time=settings.default_work_end_time,
        late_threshold_minutes=settings.default_late_threshold_minutes,
        work_days=settings.default_work_days,
    )
    db.add(work_settings)
    db.commit()
    db.refresh(work_settings)
    logger.info("work_settings_initialized", extra={"work_settings_id": work_settings.id})
    return work_settings


def update_work_settings(db: Session, payload: WorkSettingsUpdate) -> WorkSettings:
    work_settings = get_work_settings(db)
    work_settings.work_start_time = payload.work_start_time
    work_settings.work_end_time = payload.work_end_time
    work_settings.late_threshold_minutes = payload.late_threshold_minutes
    work_settings.work_days = payload.work_days
    db.commit()
    db.refresh(work_settings)
    return work_settings


def list_active_zones(db: Session) -> list[WorkZone]:
    return list(
        db.scalars(
            select(WorkZone)
            .where(WorkZone.is_active.is_(True))
            .order_by(WorkZone.id.asc())
        ).all()
    )


def list_zones(db: Session) -> list[WorkZone]:
    return list(db.scalars(select(WorkZone).order_by(WorkZone.id.asc())).all())


def _get_zone(db: Session, zone_id: int) -> WorkZone:
    zone = db.get(WorkZone, zone_id)
    if zone is None:
        raise NotFoundError("WORK_ZONE_NOT_FOUND", "Work zone not found.")
    return zone


def create_zone(db: Session, payload: WorkZoneCreate) -> WorkZone:
    zone = WorkZone(
        name=payload.name.strip(),
        lat=payload.lat,
        lon=payload.lon,
        radius_m=payload.radius_m,
        is_active=payload.is_active,
    )
    db.add(zone)
    db.commit()
    db.refresh(zone)
    return zone


def update_zone(db: Session, zone_id: int, payload: WorkZoneUpdate) -> WorkZone:
    zone = _get_zone(db, zone_id)
    zone.name = payload.name.strip()
    zone.lat = payload.lat
    zone.lon = payload.lon
    zone.radius_m = payload.radius_m
    zone.is_active = payload.is_active
    db.commit()
    db.refresh(zone)
    return zone


def delete_zone(db: Session, zone_id: int) -> None:
    zone = _get_zone(db, zone_id)
    db.delete(zone)
    db.commit()
