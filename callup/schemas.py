from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from callup.models import PaymentStatus, RefundStatus, TransportEstimateStatus, UserRole


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=256)


class LoginResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    user_id: int
    username: str
    name: str | None = None
    role: UserRole


class WorkflowTransitionRequest(BaseModel):
    action: Literal["advance", "revert"]


class PaymentProcessRead(BaseModel):
    id: int
    batch_id: int
    title: str
    status: PaymentStatus
    amount: int | None = None
    bank_info: str | None = None
    note: str | None = None
    doc_approved_at: datetime | None = None
    cms_draft_at: datetime | None = None
    cms_approved_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


def _reject_explicit_nulls(model: BaseModel, field_names: tuple[str, ...]) -> None:
    for field_name in field_names:
        if field_name in model.model_fields_set and getattr(model, field_name) is None:
            raise ValueError(f"{field_name} cannot be null.")


class PaymentProcessUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=255)
    amount: int | None = Field(default=None, ge=0)
    bank_info: str | None = Field(default=None, max_length=255)
    note: str | None = None

    @model_validator(mode="after")
    def _validate_required_columns(self) -> "PaymentProcessUpdate":
        _reject_explicit_nulls(self, ("title",))
        return self


class RefundProcessRead(BaseModel):
    id: int
    batch_id: int
    status: RefundStatus
    reason: str | None = None
    compensation_refund: int = 0
    transport_refund: int = 0
    note: str | None = None
    refund_requested_at: datetime | None = None
    deposit_confirmed_at: datetime | None = None
    refund_completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class RefundProcessCreate(BaseModel):
    batch_id: int = Field(ge=1)
    reason: str | None = None
    compensation_refund: int = Field(default=0, ge=0)
    transport_refund: int = Field(default=0, ge=0)


class RefundProcessUpdate(BaseModel):
    reason: str | None = None
    compensation_refund: int | None = Field(default=None, ge=0)
    transport_refund: int | None = Field(default=None, ge=0)
    note: str | None = None

    @model_validator(mode="after")
    def _validate_required_columns(self) -> "RefundProcessUpdate":
        _reject_explicit_nulls(self, ("compensation_refund", "transport_refund"))
        return self


class CompensationSyncRequest(BaseModel):
    batch_id: int = Field(ge=1)


class CompensationSyncResponse(BaseModel):
    batch_id: int
    synced: int


class TrainingCompensationLineRead(BaseModel):
    training_id: int
    title: str
    type: str | None = None
    training_date: date
    start_time: str | None = None
    end_time: str | None = None
    training_hours: float
    is_weekend: bool
    daily_rate: int
    override_rate: int | None = None
    final_rate: int
    attendance_enabled: bool
    counts_toward_hours: bool


class UserCompensationRowRead(BaseModel):
    training_id: int
    title: str
    training_date: date
    training_hours: float
    is_weekend: bool
    daily_rate: int
    override_rate: int | None = None
    final_rate: int
    user_id: int
    user_name: str
    rank: str | None = None
    service_number: str | None = None


class TransportAllowanceRead(BaseModel):
    user_id: int
    batch_id: int
    amount: int
    address: str | None = None
    note: str | None = None
    user_name: str | None = None

    model_config = ConfigDict(from_attributes=True)


class BatchOption(BaseModel):
    id: int
    name: str


class PaymentOverviewResponse(BaseModel):
    batch_id: int | None = None
    batch_name: str | None = None
    required_hours: float | None = None
    process: PaymentProcessRead | None = None
    compensations: list[TrainingCompensationLineRead] = Field(default_factory=list)
    compensations_by_user: list[UserCompensationRowRead] | None = None
    transport: list[TransportAllowanceRead] = Field(default_factory=list)
    batches: list[BatchOption] = Field(default_factory=list)


class PaymentSummaryRow(BaseModel):
    batch_id: int
    batch_name: str
    status: PaymentStatus
    present_count: int
    total_attendance: int
    total_users: int
    compensation_total: int
    transport_total: int
    grand_total: int


class PaymentSummaryTotals(BaseModel):
    pending_total: int
    paid_total: int
    all_total: int


class PaymentSummaryResponse(BaseModel):
    rows: list[PaymentSummaryRow]
    summary: PaymentSummaryTotals


class MyBatchPaymentRead(BaseModel):
    batch_id: int
    batch_name: str
    start_date: date
    end_date: date
    status: PaymentStatus
    compensation_total: int
    transport_amount: int
    grand_total: int


class TransportAllowanceRecord(BaseModel):
    user_id: int = Field(ge=1)
    amount: int = Field(ge=0)
    address: str | None = None
    note: str | None = None


class TransportAllowanceSaveRequest(BaseModel):
    batch_id: int = Field(ge=1)
    records: list[TransportAllowanceRecord] = Field(min_length=1)


class CoordinateRead(BaseModel):
    lat: float
    lng: float


class TransportEstimateResponse(BaseModel):
    distance_m: int
    km: int
    has_toll: bool
    toll_fare: int
    total: int
    fuel: int
    toll: int
    origin: CoordinateRead
    destination: CoordinateRead
    route_coords: list[CoordinateRead] = Field(default_factory=list)


class BulkTransportRequest(BaseModel):
    batch_id: int = Field(ge=1)


class BulkTransportItemRead(BaseModel):
    user_id: int
    name: str
    rank: str | None = None
    address: str | None = None
    distance_km: int | None = None
    calculated_amount: int | None = None
    saved_amount: int | None = None
    status: TransportEstimateStatus


class BulkTransportResponse(BaseModel):
    unit_name: str
    results: list[BulkTransportItemRead]


class GeocodeResponse(BaseModel):
    lat: float | None = None
    lng: float | None = None


class CompensationPreviewResponse(BaseModel):
    training_id: int
    training_hours: float
    is_weekend: bool
    daily_rate: int
    stored_training_hours: float | None = None
    stored_daily_rate: int | None = None
    override_rate: int | None = None
    final_rate: int


class OverrideRateRequest(BaseModel):
    override_rate: int | None = Field(default=None, ge=0)


class TrainingCompensationRead(BaseModel):
    training_id: int
    training_hours: float
    is_weekend: bool
    daily_rate: int
    override_rate: int | None = None

    model_config = ConfigDict(from_attributes=True)


class GpsLocationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_m: int = Field(default=200, ge=0, le=100_000)
    is_active: bool = True


class GpsLocationUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    radius_m: int | None = Field(default=None, ge=0, le=100_000)
    is_active: bool | None = None


class GpsLocationRead(BaseModel):
    id: int
    name: str
    latitude: float
    longitude: float
    radius_m: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class CommutingCheckRequest(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    type: Literal["checkIn", "checkOut"]


class CommutingManualRequest(BaseModel):
    user_id: int = Field(ge=1)
    day: date
    check_in_at: datetime | None = None
    check_out_at: datetime | None = None
    batch_id: int | None = Field(default=None, ge=1)
    note: str | None = None

    @model_validator(mode="after")
    def validate_order(self) -> "CommutingManualRequest":
        if self.check_in_at is not None and self.check_out_at is not None and self.check_out_at < self.check_in_at:
            raise ValueError("check_out_at must be greater than or equal to check_in_at")
        return self


class CommutingRecordRead(BaseModel):
    id: int
    user_id: int
    batch_id: int | None = None
    day_date: date
    check_in_at: datetime | None = None
    check_in_lat: float | None = None
    check_in_lng: float | None = None
    check_out_at: datetime | None = None
    check_out_lat: float | None = None
    check_out_lng: float | None = None
    is_manual: bool = False
    note: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CommutingCheckResponse(BaseModel):
    ok: bool
    record: CommutingRecordRead
    location_id: int
    location_name: str
