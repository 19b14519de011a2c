from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from math import floor

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.orm import Session

from callup.errors import not_found
from callup.models import Training, TrainingCompensation
from callup.services.dates import hhmm_to_hours, is_weekend_day, parse_day

WEEKDAY_RATE = 100_000
WEEKEND_RATE = 150_000
BASE_HOURS = 8

LUNCH_START_HOURS = 11.5
LUNCH_END_HOURS = 12.5


@dataclass(frozen=True)
class CompensationResult:
    training_hours: float
    is_weekend: bool
    daily_rate: int


@dataclass(frozen=True)
class CompensationLine:
    training_hours: float
    is_weekend: bool
    daily_rate: int
    override_rate: int | None
    final_rate: int


def _round_half_up(value: float, ndigits: int = 0) -> float:
    factor = 10**ndigits
    return floor(value * factor + 0.5) / factor


def calc_training_hours(start_time: str, end_time: str) -> float:
    start = hhmm_to_hours(start_time)
    end = hhmm_to_hours(end_time)

    total_hours = end - start
    if total_hours <= 0:
        return 0.0

    overlap_start = max(start, LUNCH_START_HOURS)
    overlap_end = min(end, LUNCH_END_HOURS)
    if overlap_start < overlap_end:
        total_hours -= overlap_end - overlap_start

    return max(0.0, _round_half_up(total_hours, 2))


def calc_daily_rate(training_hours: float, is_weekend: bool) -> int:
    if training_hours <= 0:
        return 0
    base_rate = WEEKEND_RATE if is_weekend else WEEKDAY_RATE
    rate = (training_hours / BASE_HOURS) * base_rate
    return int(_round_half_up(rate / 100) * 100)


def calc_compensation(
    training_date: date | datetime | str,
    start_time: str | None,
    end_time: str | None,
) -> CompensationResult:
    day = parse_day(training_date) if isinstance(training_date, str) else training_date
    is_weekend = is_weekend_day(day)

    if not start_time or not end_time:
        return CompensationResult(training_hours=0.0, is_weekend=is_weekend, daily_rate=0)

    training_hours = calc_training_hours(start_time, end_time)
    return CompensationResult(
        training_hours=training_hours,
        is_weekend=is_weekend,
        daily_rate=calc_daily_rate(training_hours, is_weekend),
    )


def calc_training_compensation(training: Training) -> CompensationResult:
    return calc_compensation(training.training_date, training.start_time, training.end_time)


def resolve_compensation_line(training: Training) -> CompensationLine:
    """Merge the live estimate with the persisted row for one training.

    Persisted values win over the live estimate, and a manual override wins
    over both. Trainings that do not count toward hours always pay 0.
    """
    calc = calc_training_compensation(training)
    stored = training.compensation
    is_weekend = stored.is_weekend if stored is not None else calc.is_weekend

    if not training.counts_toward_hours:
        return CompensationLine(
            training_hours=0.0,
            is_weekend=is_weekend,
            daily_rate=0,
            override_rate=None,
            final_rate=0,
        )

    training_hours = stored.training_hours if stored is not None else calc.training_hours
    daily_rate = stored.daily_rate if stored is not None else calc.daily_rate
    override_rate = stored.override_rate if stored is not None else None
    return CompensationLine(
        training_hours=training_hours,
        is_weekend=is_weekend,
        daily_rate=daily_rate,
        override_rate=override_rate,
        final_rate=override_rate if override_rate is not None else daily_rate,
    )


def resolve_final_rate(training: Training) -> int:
    return resolve_compensation_line(training).final_rate


def build_compensation_sync_statement(rows: list[dict[str, object]]):
    statement = pg_insert(TrainingCompensation).values(rows)
    # override_rate stays out of the update set so a resync keeps manual overrides.
    return statement.on_conflict_do_update(
        index_elements=[TrainingCompensation.training_id],
        set_={
            "training_hours": statement.excluded.training_hours,
            "is_weekend": statement.excluded.is_weekend,
            "daily_rate": statement.excluded.daily_rate,
            "updated_at": func.now(),
        },
    )


def sync_batch_compensations(db: Session, batch_id: int) -> int:
    trainings = list(db.scalars(select(Training).where(Training.batch_id == batch_id)).all())
    if not trainings:
        return 0

    rows: list[dict[str, object]] = []
    for training in trainings:
        calc = calc_training_compensation(training)
        counts = training.counts_toward_hours
        rows.append(
            {
                "training_id": training.id,
                "training_hours": calc.training_hours if counts else 0.0,
                "is_weekend": calc.is_weekend,
                "daily_rate": calc.daily_rate if counts else 0,
            }
        )

    db.execute(build_compensation_sync_statement(rows))
    db.commit()
    return len(rows)


def set_override_rate(db: Session, *, training_id: int, override_rate: int | None) -> TrainingCompensation:
    training = db.get(Training, training_id)
    if training is None:
        raise not_found("training")

    calc = calc_training_compensation(training)
    counts = training.counts_toward_hours
    statement = pg_insert(TrainingCompensation).values(
        training_id=training.id,
        training_hours=calc.training_hours if counts else 0.0,
        is_weekend=calc.is_weekend,
        daily_rate=calc.daily_rate if counts else 0,
        override_rate=override_rate,
    )
    statement = statement.on_conflict_do_update(
        index_elements=[TrainingCompensation.training_id],
        set_={
            "override_rate": statement.excluded.override_rate,
            "updated_at": func.now(),
        },
    ).returning(TrainingCompensation)

    compensation = db.scalar(statement, execution_options={"populate_existing": True})
    db.commit()
    return compensation
