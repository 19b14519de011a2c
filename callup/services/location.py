from __future__ import annotations

from collections.abc import Iterable
from math import asin, cos, radians, sin, sqrt
from typing import Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from callup.errors import not_found
from callup.models import GpsLocation
from callup.schemas import GpsLocationCreate, GpsLocationUpdate

EARTH_RADIUS_M = 6371000.0


class Zone(Protocol):
    latitude: float
    longitude: float
    radius_m: float
    is_active: bool


ZoneT = TypeVar("ZoneT", bound=Zone)


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lat2_rad = radians(lat2)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = radians(lon2) - radians(lon1)

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def find_matching_zone(lat: float, lon: float, zones: Iterable[ZoneT]) -> ZoneT | None:
    for zone in zones:
        if not zone.is_active:
            continue
        if distance_m(zone.latitude, zone.longitude, lat, lon) <= zone.radius_m:
            return zone
    return None


def is_within_any_zone(lat: float, lon: float, zones: Iterable[Zone]) -> bool:
    return find_matching_zone(lat, lon, zones) is not None


def list_active_zones(db: Session) -> list[GpsLocation]:
    return list(db.scalars(select(GpsLocation).where(GpsLocation.is_active.is_(True))).all())


def list_gps_locations(db: Session) -> list[GpsLocation]:
    return list(db.scalars(select(GpsLocation).order_by(GpsLocation.created_at.desc())).all())


def create_gps_location(db: Session, payload: GpsLocationCreate) -> GpsLocation:
    location = GpsLocation(
        name=payload.name,
        latitude=payload.latitude,
        longitude=payload.longitude,
        radius_m=payload.radius_m,
        is_active=payload.is_active,
    )
    db.add(location)
    db.commit()
    db.refresh(location)
    return location


def update_gps_location(db: Session, location_id: int, payload: GpsLocationUpdate) -> GpsLocation:
    location = db.get(GpsLocation, location_id)
    if location is None:
        raise not_found("gps location")

    for field_name, value in payload.model_dump(exclude_unset=True).items():
        setattr(location, field_name, value)
    db.commit()
    db.refresh(location)
    return location


def delete_gps_location(db: Session, location_id: int) -> None:
    location = db.get(GpsLocation, location_id)
    if location is None:
        raise not_found("gps location")
    db.delete(location)
    db.commit()
