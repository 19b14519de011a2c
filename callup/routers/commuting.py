from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from callup.audit import audit_request
from callup.db import get_db
from callup.models import UserRole
from callup.schemas import (
    CommutingCheckRequest,
    CommutingCheckResponse,
    CommutingManualRequest,
    CommutingRecordRead,
)
from callup.security import claims_role, claims_user_id, require_staff, require_user
from callup.services.commuting import (
    list_commuting_records,
    record_gps_check,
    record_manual_commute,
    to_record_read,
)

router = APIRouter(tags=["commuting"])


@router.post("/api/commuting/check", response_model=CommutingCheckResponse)
def commuting_check(
    payload: CommutingCheckRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> CommutingCheckResponse:
    user_id = claims_user_id(claims)
    record, zone = record_gps_check(
        db,
        user_id=user_id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        check_type=payload.type,
    )
    request.state.location_status = "IN_RANGE"
    return CommutingCheckResponse(
        ok=True,
        record=to_record_read(record, hide_coordinates=True),
        location_id=zone.id,
        location_name=zone.name,
    )


@router.post("/api/commuting/manual", response_model=CommutingRecordRead)
def commuting_manual(
    payload: CommutingManualRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> CommutingRecordRead:
    record = record_manual_commute(db, payload)
    audit_request(
        db,
        request,
        claims,
        action="COMMUTING_MANUAL_UPSERT",
        entity_type="commuting_record",
        entity_id=record.id,
        details={"user_id": payload.user_id, "day": payload.day.isoformat()},
    )
    return to_record_read(record)


@router.get("/api/commuting", response_model=list[CommutingRecordRead])
def commuting_records(
    day: date | None = Query(default=None, alias="date"),
    user_id: int | None = Query(default=None, ge=1),
    batch_id: int | None = Query(default=None, ge=1),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[CommutingRecordRead]:
    role = claims_role(claims)
    records = list_commuting_records(
        db,
        viewer_id=claims_user_id(claims),
        viewer_role=role,
        day=day,
        user_id=user_id,
        batch_id=batch_id,
    )
    hide_coordinates = role == UserRole.RESERVIST
    return [to_record_read(record, hide_coordinates=hide_coordinates) for record in records]
