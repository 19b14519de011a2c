from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from callup.audit import audit_request
from callup.db import get_db
from callup.schemas import GpsLocationCreate, GpsLocationRead, GpsLocationUpdate
from callup.security import require_admin, require_user
from callup.services.location import (
    create_gps_location,
    delete_gps_location,
    list_gps_locations,
    update_gps_location,
)

router = APIRouter(tags=["gps-locations"])


@router.get(
    "/api/gps-locations",
    response_model=list[GpsLocationRead],
    dependencies=[Depends(require_user)],
)
def get_gps_locations(db: Session = Depends(get_db)) -> list[GpsLocationRead]:
    return [GpsLocationRead.model_validate(item) for item in list_gps_locations(db)]


@router.post("/api/gps-locations", response_model=GpsLocationRead, status_code=201)
def post_gps_location(
    payload: GpsLocationCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> GpsLocationRead:
    location = create_gps_location(db, payload)
    audit_request(
        db,
        request,
        claims,
        action="GPS_LOCATION_CREATED",
        entity_type="gps_location",
        entity_id=location.id,
        details={"name": location.name, "radius_m": location.radius_m},
    )
    return GpsLocationRead.model_validate(location)


@router.patch("/api/gps-locations/{location_id}", response_model=GpsLocationRead)
def patch_gps_location(
    location_id: int,
    payload: GpsLocationUpdate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> GpsLocationRead:
    location = update_gps_location(db, location_id, payload)
    audit_request(
        db,
        request,
        claims,
        action="GPS_LOCATION_UPDATED",
        entity_type="gps_location",
        entity_id=location.id,
        details={"fields": sorted(payload.model_fields_set)},
    )
    return GpsLocationRead.model_validate(location)


@router.delete("/api/gps-locations/{location_id}", status_code=204)
def remove_gps_location(
    location_id: int,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Response:
    delete_gps_location(db, location_id)
    audit_request(
        db,
        request,
        claims,
        action="GPS_LOCATION_DELETED",
        entity_type="gps_location",
        entity_id=location_id,
    )
    return Response(status_code=204)
