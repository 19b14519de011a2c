from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session, selectinload

from callup.errors import ApiError, not_found
from callup.models import (
    Attendance,
    AttendanceStatus,
    Batch,
    BatchUser,
    PaymentProcess,
    PaymentStatus,
    Training,
    User,
    UserRole,
    UserTransportAllowance,
)
from callup.schemas import (
    BatchOption,
    MyBatchPaymentRead,
    PaymentOverviewResponse,
    PaymentProcessRead,
    PaymentProcessUpdate,
    PaymentSummaryResponse,
    PaymentSummaryRow,
    PaymentSummaryTotals,
    TrainingCompensationLineRead,
    TransportAllowanceRead,
    UserCompensationRowRead,
)
from callup.security import STAFF_ROLES
from callup.services.compensation import resolve_compensation_line, resolve_final_rate
from callup.services.workflow import PAYMENT_WORKFLOW, WorkflowAction

logger = logging.getLogger("callup.payments")


def get_batch(db: Session, batch_id: int) -> Batch:
    batch = db.get(Batch, batch_id)
    if batch is None:
        raise not_found("batch")
    return batch


def get_or_create_payment_process(db: Session, batch: Batch) -> PaymentProcess:
    process = db.scalar(select(PaymentProcess).where(PaymentProcess.batch_id == batch.id))
    if process is not None:
        return process

    db.execute(
        pg_insert(PaymentProcess)
        .values(
            batch_id=batch.id,
            title=f"{batch.name} training compensation",
            status=PAYMENT_WORKFLOW.initial_stage.status,
        )
        .on_conflict_do_nothing(index_elements=[PaymentProcess.batch_id])
    )
    db.commit()
    process = db.scalar(select(PaymentProcess).where(PaymentProcess.batch_id == batch.id))
    if process is None:
        raise ApiError(status_code=500, code="PAYMENT_PROCESS_UNAVAILABLE", message="Payment process could not be created.")
    logger.info("payment_process_created", extra={"batch_id": batch.id, "process_id": process.id})
    return process


def transition_payment_process(
    db: Session,
    *,
    process_id: int,
    action: WorkflowAction,
    now: datetime | None = None,
) -> PaymentProcess:
    process = db.scalar(
        select(PaymentProcess).where(PaymentProcess.id == process_id).with_for_update()
    )
    if process is None:
        raise not_found("payment process")

    previous_status = process.status
    try:
        PAYMENT_WORKFLOW.apply(process, action, now=now)
    except ApiError:
        db.rollback()
        raise

    db.commit()
    db.refresh(process)
    logger.info(
        "payment_process_transition",
        extra={
            "process_id": process.id,
            "action": action,
            "from_status": str(getattr(previous_status, "value", previous_status)),
            "to_status": str(getattr(process.status, "value", process.status)),
        },
    )
    return process


def update_payment_process(db: Session, *, process_id: int, payload: PaymentProcessUpdate) -> PaymentProcess:
    process = db.get(PaymentProcess, process_id)
    if process is None:
        raise not_found("payment process")

    # Only editable columns are present on the payload model; status and stage
    # timestamps are never written here.
    for field_name, value in payload.model_dump(exclude_unset=True).items():
        setattr(process, field_name, value)
    db.commit()
    db.refresh(process)
    return process


def load_batch_trainings(db: Session, batch_id: int) -> list[Training]:
    return list(
        db.scalars(
            select(Training)
            .where(Training.batch_id == batch_id)
            .order_by(Training.training_date.asc(), Training.id.asc())
            .options(
                selectinload(Training.compensation),
                selectinload(Training.attendances).selectinload(Attendance.user),
            )
        ).all()
    )


def _present_batch_members(db: Session, batch_id: int) -> list[User]:
    members = db.scalars(
        select(BatchUser)
        .where(BatchUser.batch_id == batch_id, BatchUser.status == AttendanceStatus.PRESENT)
        .options(selectinload(BatchUser.user))
    ).all()
    return [member.user for member in members]


def build_training_lines(trainings: list[Training]) -> list[TrainingCompensationLineRead]:
    lines: list[TrainingCompensationLineRead] = []
    for training in trainings:
        line = resolve_compensation_line(training)
        lines.append(
            TrainingCompensationLineRead(
                training_id=training.id,
                title=training.title,
                type=training.type,
                training_date=training.training_date,
                start_time=training.start_time,
                end_time=training.end_time,
                training_hours=line.training_hours,
                is_weekend=line.is_weekend,
                daily_rate=line.daily_rate,
                override_rate=line.override_rate,
                final_rate=line.final_rate,
                attendance_enabled=training.attendance_enabled,
                counts_toward_hours=training.counts_toward_hours,
            )
        )
    return lines


def build_user_compensation_rows(db: Session, *, batch_id: int, trainings: list[Training]) -> list[UserCompensationRowRead]:
    """One row per (training, paid participant).

    Trainings with attendance tracking pay the members marked present on that
    training; trainings without it pay every member present for the batch.
    """
    batch_members: list[User] = []
    if any(not training.attendance_enabled for training in trainings):
        batch_members = _present_batch_members(db, batch_id)

    rows: list[UserCompensationRowRead] = []
    for training in trainings:
        line = resolve_compensation_line(training)
        if training.attendance_enabled:
            users = [
                attendance.user
                for attendance in training.attendances
                if attendance.status == AttendanceStatus.PRESENT
            ]
        else:
            users = batch_members

        for user in users:
            rows.append(
                UserCompensationRowRead(
                    training_id=training.id,
                    title=training.title,
                    training_date=training.training_date,
                    training_hours=line.training_hours,
                    is_weekend=line.is_weekend,
                    daily_rate=line.daily_rate,
                    override_rate=line.override_rate,
                    final_rate=line.final_rate,
                    user_id=user.id,
                    user_name=user.name,
                    rank=user.rank,
                    service_number=user.service_number,
                )
            )
    return rows


def to_allowance_read(allowance: UserTransportAllowance) -> TransportAllowanceRead:
    return TransportAllowanceRead(
        user_id=allowance.user_id,
        batch_id=allowance.batch_id,
        amount=allowance.amount,
        address=allowance.address,
        note=allowance.note,
        user_name=allowance.user.name if allowance.user is not None else None,
    )


def build_payment_overview(
    db: Session,
    *,
    user_id: int,
    role: UserRole,
    batch_id: int | None,
) -> PaymentOverviewResponse:
    is_staff = role in STAFF_ROLES

    if role == UserRole.RESERVIST:
        latest_membership = db.scalar(
            select(BatchUser)
            .where(BatchUser.user_id == user_id)
            .order_by(BatchUser.created_at.desc())
            .limit(1)
        )
        if latest_membership is None:
            return PaymentOverviewResponse()
        batch_id = latest_membership.batch_id

    batch_options: list[BatchOption] = []
    if is_staff:
        batch_options = [
            BatchOption(id=item.id, name=item.name)
            for item in db.scalars(select(Batch).order_by(Batch.start_date.desc())).all()
        ]

    if batch_id is None:
        if not batch_options:
            return PaymentOverviewResponse(batches=batch_options)
        batch_id = batch_options[0].id

    batch = get_batch(db, batch_id)
    process = get_or_create_payment_process(db, batch)
    trainings = load_batch_trainings(db, batch.id)

    if is_staff:
        allowances = db.scalars(
            select(UserTransportAllowance)
            .where(UserTransportAllowance.batch_id == batch.id)
            .options(selectinload(UserTransportAllowance.user))
        ).all()
    else:
        allowances = db.scalars(
            select(UserTransportAllowance)
            .where(
                UserTransportAllowance.batch_id == batch.id,
                UserTransportAllowance.user_id == user_id,
            )
            .options(selectinload(UserTransportAllowance.user))
        ).all()

    return PaymentOverviewResponse(
        batch_id=batch.id,
        batch_name=batch.name,
        required_hours=batch.required_hours,
        process=PaymentProcessRead.model_validate(process),
        compensations=build_training_lines(trainings),
        compensations_by_user=(
            build_user_compensation_rows(db, batch_id=batch.id, trainings=trainings) if is_staff else None
        ),
        transport=sorted(
            (to_allowance_read(item) for item in allowances),
            key=lambda item: item.user_name or "",
        ),
        batches=batch_options,
    )


def batch_compensation_total(trainings: list[Training]) -> int:
    return sum(resolve_final_rate(training) for training in trainings)


def build_payment_summary(db: Session) -> PaymentSummaryResponse:
    batches = db.scalars(
        select(Batch)
        .order_by(Batch.start_date.desc())
        .options(
            selectinload(Batch.payment_process),
            selectinload(Batch.trainings).selectinload(Training.compensation),
            selectinload(Batch.trainings).selectinload(Training.attendances),
            selectinload(Batch.transport_allowances),
            selectinload(Batch.members),
        )
    ).all()

    rows: list[PaymentSummaryRow] = []
    for batch in batches:
        attendances = [attendance for training in batch.trainings for attendance in training.attendances]
        compensation_total = batch_compensation_total(batch.trainings)
        transport_total = sum(allowance.amount for allowance in batch.transport_allowances)
        rows.append(
            PaymentSummaryRow(
                batch_id=batch.id,
                batch_name=batch.name,
                status=batch.payment_process.status if batch.payment_process else PaymentStatus.DOC_DRAFT,
                present_count=sum(1 for item in attendances if item.status == AttendanceStatus.PRESENT),
                total_attendance=len(attendances),
                total_users=len(batch.members),
                compensation_total=compensation_total,
                transport_total=transport_total,
                grand_total=compensation_total + transport_total,
            )
        )

    paid_total = sum(row.grand_total for row in rows if row.status == PaymentStatus.CMS_APPROVED)
    all_total = sum(row.grand_total for row in rows)
    return PaymentSummaryResponse(
        rows=rows,
        summary=PaymentSummaryTotals(
            pending_total=all_total - paid_total,
            paid_total=paid_total,
            all_total=all_total,
        ),
    )


def list_my_batch_payments(db: Session, *, user_id: int) -> list[MyBatchPaymentRead]:
    memberships = db.scalars(
        select(BatchUser)
        .join(Batch, Batch.id == BatchUser.batch_id)
        .where(BatchUser.user_id == user_id)
        .order_by(Batch.start_date.asc())
        .options(
            selectinload(BatchUser.batch).selectinload(Batch.trainings).selectinload(Training.compensation),
            selectinload(BatchUser.batch).selectinload(Batch.transport_allowances),
            selectinload(BatchUser.batch).selectinload(Batch.payment_process),
        )
    ).all()

    results: list[MyBatchPaymentRead] = []
    for membership in memberships:
        batch = membership.batch
        compensation_total = batch_compensation_total(batch.trainings)
        transport_amount = next(
            (item.amount for item in batch.transport_allowances if item.user_id == user_id),
            0,
        )
        results.append(
            MyBatchPaymentRead(
                batch_id=batch.id,
                batch_name=batch.name,
                start_date=batch.start_date,
                end_date=batch.end_date,
                status=batch.payment_process.status if batch.payment_process else PaymentStatus.DOC_DRAFT,
                compensation_total=compensation_total,
                transport_amount=transport_amount,
                grand_total=compensation_total + transport_amount,
            )
        )
    return results
