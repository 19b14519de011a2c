from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import patch

from sqlalchemy.dialects import postgresql

from callup.errors import ApiError
from callup.models import Training, TrainingCompensation
from callup.services.compensation import (
    build_compensation_sync_statement,
    calc_compensation,
    calc_daily_rate,
    calc_training_hours,
    resolve_compensation_line,
    resolve_final_rate,
    set_override_rate,
    sync_batch_compensations,
)

SATURDAY = date(2026, 10, 17)
MONDAY = date(2026, 10, 19)


class _FakeScalarResult:
    def __init__(self, items: list[object]):
        self._items = items

    def all(self) -> list[object]:
        return list(self._items)


class FakeDB:
    def __init__(self, *, trainings: list[Training] | None = None, get_result: object | None = None):
        self._trainings = trainings or []
        self._get_result = get_result
        self.executed: list[object] = []
        self.scalar_statements: list[object] = []
        self.commit_count = 0

    def scalars(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeScalarResult(self._trainings)

    def scalar(self, statement, **_kwargs):  # type: ignore[no-untyped-def]
        self.scalar_statements.append(statement)
        return TrainingCompensation(training_id=1, training_hours=8.0, is_weekend=False, daily_rate=100000, override_rate=70000)

    def get(self, _model, _ident):  # type: ignore[no-untyped-def]
        return self._get_result

    def execute(self, statement):  # type: ignore[no-untyped-def]
        self.executed.append(statement)

    def commit(self) -> None:
        self.commit_count += 1


def _training(**overrides) -> Training:  # type: ignore[no-untyped-def]
    values = {
        "id": 1,
        "batch_id": 1,
        "title": "Marksmanship",
        "training_date": MONDAY,
        "start_time": "09:00",
        "end_time": "18:00",
        "attendance_enabled": True,
        "counts_toward_hours": True,
    }
    values.update(overrides)
    return Training(**values)


class TrainingHoursTests(unittest.TestCase):
    def test_full_day_subtracts_lunch_hour(self) -> None:
        self.assertEqual(calc_training_hours("09:00", "18:00"), 8.0)

    def test_morning_block_has_no_lunch_overlap(self) -> None:
        self.assertEqual(calc_training_hours("08:00", "11:00"), 3.0)

    def test_partial_lunch_overlap(self) -> None:
        self.assertEqual(calc_training_hours("12:00", "13:00"), 0.5)

    def test_end_before_start_is_zero(self) -> None:
        self.assertEqual(calc_training_hours("10:00", "09:00"), 0.0)
        self.assertEqual(calc_training_hours("10:00", "10:00"), 0.0)

    def test_window_inside_lunch_is_zero(self) -> None:
        self.assertEqual(calc_training_hours("11:40", "12:20"), 0.0)

    def test_rounds_to_two_decimals(self) -> None:
        self.assertEqual(calc_training_hours("09:00", "09:20"), 0.33)


class DailyRateTests(unittest.TestCase):
    def test_full_day_rates(self) -> None:
        self.assertEqual(calc_daily_rate(8, False), 100000)
        self.assertEqual(calc_daily_rate(8, True), 150000)

    def test_half_day_weekday(self) -> None:
        self.assertEqual(calc_daily_rate(4, False), 50000)

    def test_rounds_half_up_to_hundred(self) -> None:
        # 5.5 / 8 * 100000 = 68750
        self.assertEqual(calc_daily_rate(5.5, False), 68800)

    def test_zero_hours_pays_nothing(self) -> None:
        self.assertEqual(calc_daily_rate(0, True), 0)


class CalcCompensationTests(unittest.TestCase):
    def test_weekend_training(self) -> None:
        result = calc_compensation(SATURDAY, "09:00", "18:00")
        self.assertEqual(result.training_hours, 8.0)
        self.assertTrue(result.is_weekend)
        self.assertEqual(result.daily_rate, 150000)

    def test_missing_time_keeps_weekend_flag(self) -> None:
        result = calc_compensation(SATURDAY, None, "18:00")
        self.assertEqual(result.training_hours, 0.0)
        self.assertTrue(result.is_weekend)
        self.assertEqual(result.daily_rate, 0)

    def test_accepts_form_date_string(self) -> None:
        result = calc_compensation("2026-10-19", "09:00", "13:00")
        self.assertFalse(result.is_weekend)
        self.assertEqual(result.training_hours, 3.0)
        self.assertEqual(result.daily_rate, 37500)


class OverridePrecedenceTests(unittest.TestCase):
    def test_live_estimate_without_stored_row(self) -> None:
        line = resolve_compensation_line(_training())
        self.assertEqual(line.daily_rate, 100000)
        self.assertIsNone(line.override_rate)
        self.assertEqual(line.final_rate, 100000)

    def test_stored_rate_beats_live_estimate(self) -> None:
        training = _training()
        training.compensation = TrainingCompensation(
            training_hours=4.0,
            is_weekend=False,
            daily_rate=50000,
            override_rate=None,
        )
        self.assertEqual(resolve_final_rate(training), 50000)

    def test_override_beats_stored_rate(self) -> None:
        training = _training()
        training.compensation = TrainingCompensation(
            training_hours=8.0,
            is_weekend=False,
            daily_rate=100000,
            override_rate=120000,
        )
        line = resolve_compensation_line(training)
        self.assertEqual(line.daily_rate, 100000)
        self.assertEqual(line.final_rate, 120000)

    def test_zero_override_is_respected(self) -> None:
        training = _training()
        training.compensation = TrainingCompensation(
            training_hours=8.0,
            is_weekend=False,
            daily_rate=100000,
            override_rate=0,
        )
        self.assertEqual(resolve_final_rate(training), 0)

    def test_non_counting_training_pays_nothing(self) -> None:
        training = _training(counts_toward_hours=False)
        training.compensation = TrainingCompensation(
            training_hours=8.0,
            is_weekend=False,
            daily_rate=100000,
            override_rate=90000,
        )
        self.assertEqual(resolve_final_rate(training), 0)


class CompensationSyncTests(unittest.TestCase):
    def test_sync_statement_never_updates_override_rate(self) -> None:
        statement = build_compensation_sync_statement(
            [{"training_id": 1, "training_hours": 8.0, "is_weekend": False, "daily_rate": 100000}]
        )
        sql = str(statement.compile(dialect=postgresql.dialect()))

        self.assertIn("ON CONFLICT (training_id) DO UPDATE SET", sql)
        update_clause = sql.split("DO UPDATE SET", 1)[1]
        self.assertIn("daily_rate", update_clause)
        self.assertNotIn("override_rate", update_clause)

    def test_sync_writes_one_row_per_training(self) -> None:
        trainings = [
            _training(id=1),
            _training(id=2, training_date=SATURDAY),
            _training(id=3, counts_toward_hours=False),
        ]
        fake_db = FakeDB(trainings=trainings)

        with patch(
            "callup.services.compensation.build_compensation_sync_statement",
            return_value="stmt",
        ) as build_mock:
            synced = sync_batch_compensations(fake_db, 1)  # type: ignore[arg-type]

        self.assertEqual(synced, 3)
        self.assertEqual(fake_db.executed, ["stmt"])
        self.assertEqual(fake_db.commit_count, 1)
        rows = build_mock.call_args.args[0]
        self.assertEqual(
            rows,
            [
                {"training_id": 1, "training_hours": 8.0, "is_weekend": False, "daily_rate": 100000},
                {"training_id": 2, "training_hours": 8.0, "is_weekend": True, "daily_rate": 150000},
                {"training_id": 3, "training_hours": 0.0, "is_weekend": False, "daily_rate": 0},
            ],
        )

    def test_sync_with_no_trainings_is_noop(self) -> None:
        fake_db = FakeDB(trainings=[])
        self.assertEqual(sync_batch_compensations(fake_db, 1), 0)  # type: ignore[arg-type]
        self.assertEqual(fake_db.executed, [])
        self.assertEqual(fake_db.commit_count, 0)

    def test_set_override_only_updates_override_on_conflict(self) -> None:
        fake_db = FakeDB(get_result=_training())

        compensation = set_override_rate(fake_db, training_id=1, override_rate=70000)  # type: ignore[arg-type]

        self.assertEqual(compensation.override_rate, 70000)
        self.assertEqual(fake_db.commit_count, 1)
        sql = str(fake_db.scalar_statements[0].compile(dialect=postgresql.dialect()))
        update_clause = sql.split("DO UPDATE SET", 1)[1].split("RETURNING", 1)[0]
        self.assertIn("override_rate", update_clause)
        self.assertNotIn("daily_rate", update_clause)
        self.assertNotIn("training_hours", update_clause)

    def test_set_override_unknown_training(self) -> None:
        fake_db = FakeDB(get_result=None)
        with self.assertRaises(ApiError) as ctx:
            set_override_rate(fake_db, training_id=99, override_rate=None)  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.code, "TRAINING_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
