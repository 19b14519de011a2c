from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from callup.audit import audit_request
from callup.db import get_db
from callup.schemas import (
    RefundProcessCreate,
    RefundProcessRead,
    RefundProcessUpdate,
    WorkflowTransitionRequest,
)
from callup.security import require_staff
from callup.services.refunds import (
    create_refund_process,
    get_or_create_refund_process,
    transition_refund_process,
    update_refund_process,
)

router = APIRouter(tags=["refunds"])


@router.get(
    "/api/refunds",
    response_model=RefundProcessRead,
    dependencies=[Depends(require_staff)],
)
def get_refund(
    batch_id: int = Query(ge=1),
    db: Session = Depends(get_db),
) -> RefundProcessRead:
    return RefundProcessRead.model_validate(get_or_create_refund_process(db, batch_id=batch_id))


@router.post("/api/refunds", response_model=RefundProcessRead, status_code=201)
def create_refund(
    payload: RefundProcessCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> RefundProcessRead:
    refund = create_refund_process(db, payload)
    audit_request(
        db,
        request,
        claims,
        action="REFUND_PROCESS_CREATED",
        entity_type="refund_process",
        entity_id=refund.id,
        details={"batch_id": refund.batch_id},
    )
    return RefundProcessRead.model_validate(refund)


@router.post("/api/refunds/{refund_id}/transition", response_model=RefundProcessRead)
def transition_refund(
    refund_id: int,
    payload: WorkflowTransitionRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> RefundProcessRead:
    refund = transition_refund_process(db, refund_id=refund_id, action=payload.action)
    audit_request(
        db,
        request,
        claims,
        action=f"REFUND_PROCESS_{payload.action.upper()}",
        entity_type="refund_process",
        entity_id=refund.id,
        details={"status": refund.status.value},
    )
    return RefundProcessRead.model_validate(refund)


@router.patch("/api/refunds/{refund_id}", response_model=RefundProcessRead)
def edit_refund(
    refund_id: int,
    payload: RefundProcessUpdate,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> RefundProcessRead:
    refund = update_refund_process(db, refund_id=refund_id, payload=payload)
    audit_request(
        db,
        request,
        claims,
        action="REFUND_PROCESS_UPDATED",
        entity_type="refund_process",
        entity_id=refund.id,
        details={"fields": sorted(payload.model_fields_set)},
    )
    return RefundProcessRead.model_validate(refund)
