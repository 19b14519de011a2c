from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from callup.audit import audit_request
from callup.db import get_db
from callup.errors import ApiError
from callup.models import UserRole
from callup.schemas import (
    CompensationSyncRequest,
    CompensationSyncResponse,
    MyBatchPaymentRead,
    PaymentOverviewResponse,
    PaymentProcessRead,
    PaymentProcessUpdate,
    PaymentSummaryResponse,
    TransportAllowanceRead,
    TransportAllowanceSaveRequest,
    WorkflowTransitionRequest,
)
from callup.security import claims_role, claims_user_id, require_staff, require_user
from callup.services.compensation import sync_batch_compensations
from callup.services.exports import build_batch_roster_xlsx
from callup.services.payments import (
    build_payment_overview,
    build_payment_summary,
    get_batch,
    list_my_batch_payments,
    transition_payment_process,
    update_payment_process,
)
from callup.services.transport import save_transport_allowances

router = APIRouter(tags=["payments"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("/api/payments", response_model=PaymentOverviewResponse)
def payment_overview(
    batch_id: int | None = Query(default=None, ge=1),
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> PaymentOverviewResponse:
    role = claims_role(claims)
    if role == UserRole.COOK:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return build_payment_overview(
        db,
        user_id=claims_user_id(claims),
        role=role,
        batch_id=batch_id,
    )


@router.get(
    "/api/payments/summary",
    response_model=PaymentSummaryResponse,
    dependencies=[Depends(require_staff)],
)
def payment_summary(db: Session = Depends(get_db)) -> PaymentSummaryResponse:
    return build_payment_summary(db)


@router.get("/api/payments/my-batches", response_model=list[MyBatchPaymentRead])
def my_batch_payments(
    claims: dict[str, Any] = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[MyBatchPaymentRead]:
    return list_my_batch_payments(db, user_id=claims_user_id(claims))


@router.post("/api/payments/sync-compensation", response_model=CompensationSyncResponse)
def sync_compensation(
    payload: CompensationSyncRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> CompensationSyncResponse:
    get_batch(db, payload.batch_id)
    synced = sync_batch_compensations(db, payload.batch_id)
    audit_request(
        db,
        request,
        claims,
        action="COMPENSATION_SYNCED",
        entity_type="batch",
        entity_id=payload.batch_id,
        details={"synced": synced},
    )
    return CompensationSyncResponse(batch_id=payload.batch_id, synced=synced)


@router.post("/api/payments/transport", response_model=list[TransportAllowanceRead])
def save_transport(
    payload: TransportAllowanceSaveRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> list[TransportAllowanceRead]:
    get_batch(db, payload.batch_id)
    allowances = save_transport_allowances(db, batch_id=payload.batch_id, records=payload.records)
    audit_request(
        db,
        request,
        claims,
        action="TRANSPORT_ALLOWANCES_SAVED",
        entity_type="batch",
        entity_id=payload.batch_id,
        details={"user_ids": [record.user_id for record in payload.records]},
    )
    return [
        TransportAllowanceRead(
            user_id=item.user_id,
            batch_id=item.batch_id,
            amount=item.amount,
            address=item.address,
            note=item.note,
        )
        for item in allowances
    ]


@router.get("/api/payments/{batch_id}/export.xlsx", dependencies=[Depends(require_staff)])
def export_payment_roster(batch_id: int, db: Session = Depends(get_db)) -> Response:
    batch_name, content = build_batch_roster_xlsx(db, batch_id=batch_id)
    filename = quote(f"{batch_name}_payments.xlsx")
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{filename}"},
    )


@router.post("/api/payments/{process_id}/transition", response_model=PaymentProcessRead)
def transition_payment(
    process_id: int,
    payload: WorkflowTransitionRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> PaymentProcessRead:
    process = transition_payment_process(db, process_id=process_id, action=payload.action)
    audit_request(
        db,
        request,
        claims,
        action=f"PAYMENT_PROCESS_{payload.action.upper()}",
        entity_type="payment_process",
        entity_id=process.id,
        details={"status": process.status.value},
    )
    return PaymentProcessRead.model_validate(process)


@router.patch("/api/payments/{process_id}", response_model=PaymentProcessRead)
def edit_payment(
    process_id: int,
    payload: PaymentProcessUpdate,
    request: Request,
    claims: dict[str, Any] = Depends(require_staff),
    db: Session = Depends(get_db),
) -> PaymentProcessRead:
    process = update_payment_process(db, process_id=process_id, payload=payload)
    audit_request(
        db,
        request,
        claims,
        action="PAYMENT_PROCESS_UPDATED",
        entity_type="payment_process",
        entity_id=process.id,
        details={"fields": sorted(payload.model_fields_set)},
    )
    return PaymentProcessRead.model_validate(process)
