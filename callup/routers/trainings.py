from typing import Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from callup.audit import audit_request
from callup.db import get_db
from callup.errors import not_found
from callup.models import Training
from callup.schemas import CompensationPreviewResponse, OverrideRateRequest, TrainingCompensationRead
from callup.security import require_staff, require_user
from callup.services.compensation import (
    calc_training_compensation,
    resolve_final_rate,
    set_override_rate,
)

router = APIRouter(tags=["trainings"])


@router.get(
    "/api/trainings/{training_id}/compensation",
    response_model=CompensationPreviewResponse,
    dependencies=[Depends(require_user)],
)
def compensation_preview(training_id: int, db: Session = Depends(get_db)) -> CompensationPreviewResponse:
    training = db.get(Training, training_id)
    if training is None:
        raise not_found("training")

    calc = calc_training_compensation(training)
    stored = training.compensation
    return CompensationPreviewResponse(
        training_id=training.id,
        training_hours=calc.training_hours,
        is_weekend=calc.is_weekend,
        daily_rate=calc.daily_rate,
        stored_training_hours=stored.training_hours if stored is not None else None,
        stored_daily_rate=stored.daily_rate if stored is not None else None,
        override_rate=stored.override_rate if stored is not None else None,
        final_rate=resolve_final_rate(training),
    )


@router.put(
    "/api/trainings/{training_id}/compensation/override",
    response_model=TrainingCompensationRead,
)
def put_override_rate(
    training_id: int,
    payload: OverrideRateRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> TrainingCompensationRead:
    compensation = set_override_rate(db, training_id=training_id, override_rate=payload.override_rate)
    audit_request(
        db,
        request,
        claims,
        action="COMPENSATION_OVERRIDE_SET",
        entity_type="training",
        entity_id=training_id,
        details={"override_rate": payload.override_rate},
    )
    return TrainingCompensationRead.model_validate(compensation)
