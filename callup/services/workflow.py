from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from callup.errors import ApiError
from callup.models import PaymentStatus, RefundStatus

WorkflowAction = Literal["advance", "revert"]


class StageBoundaryError(ApiError):
    def __init__(self, code: str, message: str):
        super().__init__(status_code=400, code=code, message=message)


@dataclass(frozen=True, slots=True)
class Stage:
    status: Enum
    timestamp_field: str | None = None


@dataclass(frozen=True, slots=True)
class StageWorkflow:
    """Ordered stages that an entity walks through one step at a time.

    ``advance`` stamps the timestamp of the stage being entered, ``revert``
    clears the timestamp of the stage being left. Together they keep every
    timestamp after the current stage null.
    """

    name: str
    stages: tuple[Stage, ...]

    @property
    def order(self) -> tuple[Enum, ...]:
        return tuple(stage.status for stage in self.stages)

    @property
    def initial_stage(self) -> Stage:
        return self.stages[0]

    def index_of(self, status: Any) -> int:
        for index, stage in enumerate(self.stages):
            if stage.status == status:
                return index
        raise ApiError(
            status_code=409,
            code="UNKNOWN_STAGE",
            message=f"Status {status!r} is not part of the {self.name} workflow.",
        )

    def advance(self, entity: Any, *, now: datetime | None = None) -> Stage:
        index = self.index_of(entity.status)
        if index >= len(self.stages) - 1:
            raise StageBoundaryError("ALREADY_FINAL_STAGE", "Already at the final stage.")

        next_stage = self.stages[index + 1]
        entity.status = next_stage.status
        if next_stage.timestamp_field is not None:
            setattr(entity, next_stage.timestamp_field, now or datetime.now(timezone.utc))
        return next_stage

    def revert(self, entity: Any) -> Stage:
        index = self.index_of(entity.status)
        if index <= 0:
            raise StageBoundaryError("ALREADY_FIRST_STAGE", "Already at the first stage.")

        current_stage = self.stages[index]
        previous_stage = self.stages[index - 1]
        entity.status = previous_stage.status
        if current_stage.timestamp_field is not None:
            setattr(entity, current_stage.timestamp_field, None)
        return previous_stage

    def apply(self, entity: Any, action: WorkflowAction, *, now: datetime | None = None) -> Stage:
        if action == "advance":
            return self.advance(entity, now=now)
        if action == "revert":
            return self.revert(entity)
        raise ApiError(status_code=422, code="INVALID_ACTION", message="Action must be advance or revert.")

    def start(self, entity: Any, *, now: datetime | None = None) -> None:
        entity.status = self.initial_stage.status
        if self.initial_stage.timestamp_field is not None:
            setattr(entity, self.initial_stage.timestamp_field, now or datetime.now(timezone.utc))


_PAYMENT_TIMESTAMP_FIELDS: dict[PaymentStatus, str] = {
    PaymentStatus.DOC_APPROVED: "doc_approved_at",
    PaymentStatus.CMS_DRAFT: "cms_draft_at",
    PaymentStatus.CMS_APPROVED: "cms_approved_at",
}

_REFUND_TIMESTAMP_FIELDS: dict[RefundStatus, str] = {
    RefundStatus.REFUND_REQUESTED: "refund_requested_at",
    RefundStatus.DEPOSIT_CONFIRMED: "deposit_confirmed_at",
    RefundStatus.REFUND_COMPLETED: "refund_completed_at",
}

# Stage order comes from enum declaration order.
PAYMENT_STATUS_ORDER: tuple[PaymentStatus, ...] = tuple(PaymentStatus)
REFUND_STATUS_ORDER: tuple[RefundStatus, ...] = tuple(RefundStatus)

PAYMENT_WORKFLOW = StageWorkflow(
    name="payment",
    stages=tuple(Stage(status, _PAYMENT_TIMESTAMP_FIELDS.get(status)) for status in PAYMENT_STATUS_ORDER),
)

REFUND_WORKFLOW = StageWorkflow(
    name="refund",
    stages=tuple(Stage(status, _REFUND_TIMESTAMP_FIELDS.get(status)) for status in REFUND_STATUS_ORDER),
)
