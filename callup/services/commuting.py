from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Literal

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from callup.errors import ApiError
from callup.models import Batch, BatchUser, CommutingRecord, GpsLocation, UserRole
from callup.schemas import CommutingManualRequest, CommutingRecordRead
from callup.services.dates import local_today
from callup.services.location import find_matching_zone, list_active_zones

logger = logging.getLogger("callup.commuting")

CheckType = Literal["checkIn", "checkOut"]

_COORDINATE_FIELDS = ("check_in_lat", "check_in_lng", "check_out_lat", "check_out_lng")


def find_active_batch_id(db: Session, *, user_id: int, today: date) -> int | None:
    return db.scalar(
        select(BatchUser.batch_id)
        .join(Batch, Batch.id == BatchUser.batch_id)
        .where(
            BatchUser.user_id == user_id,
            Batch.start_date <= today,
            Batch.end_date >= today,
        )
        .order_by(Batch.start_date.desc())
        .limit(1)
    )


def record_gps_check(
    db: Session,
    *,
    user_id: int,
    latitude: float,
    longitude: float,
    check_type: CheckType,
    now_utc: datetime | None = None,
) -> tuple[CommutingRecord, GpsLocation]:
    zone = find_matching_zone(latitude, longitude, list_active_zones(db))
    if zone is None:
        logger.info(
            "commuting_check_out_of_range",
            extra={"user_id": user_id, "check_type": check_type},
        )
        raise ApiError(
            status_code=400,
            code="OUT_OF_RANGE",
            message="Current position is outside every allowed location.",
        )

    now = now_utc or datetime.now(timezone.utc)
    today = local_today(now)
    batch_id = find_active_batch_id(db, user_id=user_id, today=today)

    if check_type == "checkIn":
        values = {"check_in_at": now, "check_in_lat": latitude, "check_in_lng": longitude}
    else:
        values = {"check_out_at": now, "check_out_lat": latitude, "check_out_lng": longitude}

    # batch_id is only assigned when the day's record is first created.
    statement = (
        pg_insert(CommutingRecord)
        .values(user_id=user_id, day_date=today, batch_id=batch_id, **values)
        .on_conflict_do_update(
            index_elements=[CommutingRecord.user_id, CommutingRecord.day_date],
            set_=values,
        )
        .returning(CommutingRecord)
    )
    record = db.scalar(statement, execution_options={"populate_existing": True})
    db.commit()
    logger.info(
        "commuting_check_recorded",
        extra={"user_id": user_id, "check_type": check_type, "location_id": zone.id, "day": today.isoformat()},
    )
    return record, zone


def record_manual_commute(db: Session, payload: CommutingManualRequest) -> CommutingRecord:
    update_values: dict[str, Any] = {"is_manual": True}
    for field_name in ("check_in_at", "check_out_at", "batch_id", "note"):
        value = getattr(payload, field_name)
        if value is not None:
            update_values[field_name] = value

    statement = (
        pg_insert(CommutingRecord)
        .values(user_id=payload.user_id, day_date=payload.day, **update_values)
        .on_conflict_do_update(
            index_elements=[CommutingRecord.user_id, CommutingRecord.day_date],
            set_=update_values,
        )
        .returning(CommutingRecord)
    )
    record = db.scalar(statement, execution_options={"populate_existing": True})
    db.commit()
    return record


def list_commuting_records(
    db: Session,
    *,
    viewer_id: int,
    viewer_role: UserRole,
    day: date | None = None,
    user_id: int | None = None,
    batch_id: int | None = None,
) -> list[CommutingRecord]:
    statement = select(CommutingRecord)
    if day is not None:
        statement = statement.where(CommutingRecord.day_date == day)

    if viewer_role == UserRole.RESERVIST:
        statement = statement.where(CommutingRecord.user_id == viewer_id)
    elif user_id is not None:
        statement = statement.where(CommutingRecord.user_id == user_id)
    elif batch_id is not None:
        member_ids = select(BatchUser.user_id).where(BatchUser.batch_id == batch_id)
        statement = statement.where(CommutingRecord.user_id.in_(member_ids))

    statement = statement.order_by(CommutingRecord.day_date.desc(), CommutingRecord.id.desc())
    return list(db.scalars(statement).all())


def to_record_read(record: CommutingRecord, *, hide_coordinates: bool = False) -> CommutingRecordRead:
    item = CommutingRecordRead.model_validate(record)
    if hide_coordinates:
        item = item.model_copy(update={field_name: None for field_name in _COORDINATE_FIELDS})
    return item
