from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from callup.db import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    COOK = "COOK"
    RESERVIST = "RESERVIST"


class BatchStatus(str, enum.Enum):
    PLANNED = "PLANNED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    PENDING = "PENDING"


# Member order is the stage order of the payment workflow.
class PaymentStatus(str, enum.Enum):
    DOC_DRAFT = "DOC_DRAFT"
    DOC_APPROVED = "DOC_APPROVED"
    CMS_DRAFT = "CMS_DRAFT"
    CMS_APPROVED = "CMS_APPROVED"


# Member order is the stage order of the refund workflow.
class RefundStatus(str, enum.Enum):
    REFUND_REQUESTED = "REFUND_REQUESTED"
    DEPOSIT_CONFIRMED = "DEPOSIT_CONFIRMED"
    REFUND_COMPLETED = "REFUND_COMPLETED"


class TransportEstimateStatus(str, enum.Enum):
    OK = "OK"
    NO_ADDRESS = "NO_ADDRESS"
    GEO_FAIL = "GEO_FAIL"
    ROUTE_FAIL = "ROUTE_FAIL"
    ERROR = "ERROR"


class AuditActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


def _created_at_column() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


def _updated_at_column() -> Mapped[datetime]:
    return mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    rank: Mapped[str | None] = mapped_column(String(32), nullable=True)
    service_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.RESERVIST,
        server_default=text("'RESERVIST'"),
    )
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    address_detail: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = _created_at_column()

    batch_memberships: Mapped[list[BatchUser]] = relationship(back_populates="user")


class Unit(Base):
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)


class Batch(Base):
    __tablename__ = "batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[BatchStatus] = mapped_column(
        Enum(BatchStatus, name="batch_status"),
        nullable=False,
        default=BatchStatus.PLANNED,
        server_default=text("'PLANNED'"),
    )
    required_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = _created_at_column()

    members: Mapped[list[BatchUser]] = relationship(back_populates="batch")
    trainings: Mapped[list[Training]] = relationship(back_populates="batch", order_by="Training.training_date")
    payment_process: Mapped[PaymentProcess | None] = relationship(back_populates="batch", uselist=False)
    refund_process: Mapped[RefundProcess | None] = relationship(back_populates="batch", uselist=False)
    transport_allowances: Mapped[list[UserTransportAllowance]] = relationship(back_populates="batch")


class BatchUser(Base):
    __tablename__ = "batch_users"
    __table_args__ = (
        UniqueConstraint("batch_id", "user_id", name="uq_batch_users_batch_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
        default=AttendanceStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    created_at: Mapped[datetime] = _created_at_column()

    batch: Mapped[Batch] = relationship(back_populates="members")
    user: Mapped[User] = relationship(back_populates="batch_memberships")


class Training(Base):
    __tablename__ = "trainings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    training_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    end_time: Mapped[str | None] = mapped_column(String(5), nullable=True)
    attendance_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    counts_toward_hours: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )

    batch: Mapped[Batch] = relationship(back_populates="trainings")
    compensation: Mapped[TrainingCompensation | None] = relationship(back_populates="training", uselist=False)
    attendances: Mapped[list[Attendance]] = relationship(back_populates="training")


class Attendance(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint("training_id", "user_id", name="uq_attendances_training_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
        default=AttendanceStatus.PENDING,
        server_default=text("'PENDING'"),
    )

    training: Mapped[Training] = relationship(back_populates="attendances")
    user: Mapped[User] = relationship()


class TrainingCompensation(Base):
    __tablename__ = "training_compensations"
    __table_args__ = (
        UniqueConstraint("training_id", name="uq_training_compensations_training"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    training_id: Mapped[int] = mapped_column(ForeignKey("trainings.id", ondelete="CASCADE"), nullable=False)
    training_hours: Mapped[float] = mapped_column(Float, nullable=False, default=0, server_default=text("0"))
    is_weekend: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    daily_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    override_rate: Mapped[int | None] = mapped_column(Integer, nullable=True)
    updated_at: Mapped[datetime] = _updated_at_column()

    training: Mapped[Training] = relationship(back_populates="compensation")


class PaymentProcess(Base):
    __tablename__ = "payment_processes"
    __table_args__ = (
        UniqueConstraint("batch_id", name="uq_payment_processes_batch"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status"),
        nullable=False,
        default=PaymentStatus.DOC_DRAFT,
        server_default=text("'DOC_DRAFT'"),
    )
    amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    bank_info: Mapped[str | None] = mapped_column(String(255), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    doc_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cms_draft_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cms_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = _created_at_column()
    updated_at: Mapped[datetime] = _updated_at_column()

    batch: Mapped[Batch] = relationship(back_populates="payment_process")


class RefundProcess(Base):
    __tablename__ = "refund_processes"
    __table_args__ = (
        UniqueConstraint("batch_id", name="uq_refund_processes_batch"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[RefundStatus] = mapped_column(
        Enum(RefundStatus, name="refund_status"),
        nullable=False,
        default=RefundStatus.REFUND_REQUESTED,
        server_default=text("'REFUND_REQUESTED'"),
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    compensation_refund: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    transport_refund: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    deposit_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refund_completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = _created_at_column()
    updated_at: Mapped[datetime] = _updated_at_column()

    batch: Mapped[Batch] = relationship(back_populates="refund_process")


class UserTransportAllowance(Base):
    __tablename__ = "user_transport_allowances"
    __table_args__ = (
        UniqueConstraint("user_id", "batch_id", name="uq_user_transport_allowances_user_batch"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id: Mapped[int] = mapped_column(ForeignKey("batches.id", ondelete="CASCADE"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = _updated_at_column()

    batch: Mapped[Batch] = relationship(back_populates="transport_allowances")
    user: Mapped[User] = relationship()


class GpsLocation(Base):
    __tablename__ = "gps_locations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[int] = mapped_column(Integer, nullable=False, default=200, server_default=text("200"))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = _created_at_column()


class CommutingRecord(Base):
    __tablename__ = "commuting_records"
    __table_args__ = (
        UniqueConstraint("user_id", "day_date", name="uq_commuting_records_user_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    batch_id: Mapped[int | None] = mapped_column(
        ForeignKey("batches.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    day_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    check_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_out_lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    is_manual: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped[User] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(Enum(AuditActorType, name="audit_actor_type"), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
