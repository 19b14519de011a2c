from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from callup.errors import ApiError, not_found
from callup.models import RefundProcess
from callup.schemas import RefundProcessCreate, RefundProcessUpdate
from callup.services.payments import get_batch
from callup.services.workflow import REFUND_WORKFLOW, WorkflowAction

logger = logging.getLogger("callup.refunds")


def _new_refund_process(
    *,
    batch_id: int,
    reason: str | None = None,
    compensation_refund: int = 0,
    transport_refund: int = 0,
    now: datetime | None = None,
) -> RefundProcess:
    refund = RefundProcess(
        batch_id=batch_id,
        reason=reason,
        compensation_refund=compensation_refund,
        transport_refund=transport_refund,
    )
    REFUND_WORKFLOW.start(refund, now=now or datetime.now(timezone.utc))
    return refund


def get_or_create_refund_process(db: Session, *, batch_id: int) -> RefundProcess:
    refund = db.scalar(select(RefundProcess).where(RefundProcess.batch_id == batch_id))
    if refund is not None:
        return refund

    get_batch(db, batch_id)
    refund = _new_refund_process(batch_id=batch_id)
    db.add(refund)
    try:
        db.commit()
    except IntegrityError:
        # Another request created it first.
        db.rollback()
        existing = db.scalar(select(RefundProcess).where(RefundProcess.batch_id == batch_id))
        if existing is None:
            raise
        return existing
    db.refresh(refund)
    return refund


def create_refund_process(db: Session, payload: RefundProcessCreate) -> RefundProcess:
    get_batch(db, payload.batch_id)
    existing = db.scalar(select(RefundProcess).where(RefundProcess.batch_id == payload.batch_id))
    if existing is not None:
        raise ApiError(
            status_code=409,
            code="REFUND_PROCESS_EXISTS",
            message="A refund process already exists for this batch.",
        )

    refund = _new_refund_process(
        batch_id=payload.batch_id,
        reason=payload.reason or None,
        compensation_refund=payload.compensation_refund,
        transport_refund=payload.transport_refund,
    )
    db.add(refund)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="REFUND_PROCESS_EXISTS",
            message="A refund process already exists for this batch.",
        ) from exc
    db.refresh(refund)
    return refund


def transition_refund_process(
    db: Session,
    *,
    refund_id: int,
    action: WorkflowAction,
    now: datetime | None = None,
) -> RefundProcess:
    refund = db.scalar(select(RefundProcess).where(RefundProcess.id == refund_id).with_for_update())
    if refund is None:
        raise not_found("refund process")

    try:
        stage = REFUND_WORKFLOW.apply(refund, action, now=now)
    except ApiError:
        db.rollback()
        raise

    db.commit()
    db.refresh(refund)
    logger.info(
        "refund_process_transition",
        extra={"refund_id": refund.id, "action": action, "to_status": stage.status.value},
    )
    return refund


def update_refund_process(db: Session, *, refund_id: int, payload: RefundProcessUpdate) -> RefundProcess:
    refund = db.get(RefundProcess, refund_id)
    if refund is None:
        raise not_found("refund process")

    for field_name, value in payload.model_dump(exclude_unset=True).items():
        setattr(refund, field_name, value)
    db.commit()
    db.refresh(refund)
    return refund
