from __future__ import annotations

import logging
from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt
from typing import Iterable

from attendance_engine.errors import ValidationFailedError
from attendance_engine.models import WorkZone

logger = logging.getLogger("app.geofence")

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True, slots=True)
class ZoneCheck:
    inside: bool
    zone_name: str | None = None
    closest_distance_m: float | None = None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return EARTH_RADIUS_M * c


def validate_coordinates(lat: float, lon: float) -> None:
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        raise ValidationFailedError(
            "INVALID_COORDINATES",
            "Latitude must be within [-90, 90] and longitude within [-180, 180].",
        )


def is_inside_any_zone(lat: float, lon: float, zones: Iterable[WorkZone]) -> ZoneCheck:
    """Return the first zone (in iteration order) whose circle contains the point.

    An empty zone set disables geofencing, so every point counts as inside.
    The radius comparison uses the unrounded distance.
    """
    validate_coordinates(lat, lon)

    zone_list = list(zones)
    if not zone_list:
        return ZoneCheck(inside=True)

    closest: float | None = None
    for zone in zone_list:
        distance_value = distance_m(zone.lat, zone.lon, lat, lon)
        logger.debug(
            "zone_distance",
            extra={
                "zone_id": zone.id,
                "zone_name": zone.name,
                "distance_m": round(distance_value, 2),
                "radius_m": zone.radius_m,
            },
        )
        if distance_value <= zone.radius_m:
            return ZoneCheck(inside=True, zone_name=zone.name, closest_distance_m=round(distance_value, 2))
        if closest is None or distance_value < closest:
            closest = distance_value

    return ZoneCheck(
        inside=False,
        closest_distance_m=round(closest, 2) if closest is not None else None,
    )
