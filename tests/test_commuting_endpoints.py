from __future__ import annotations

import unittest
from collections.abc import Generator
from datetime import date, datetime, timezone

from fastapi.testclient import TestClient
from sqlalchemy.dialects import postgresql

from callup.db import get_db
from callup.main import app
from callup.models import AuditLog, CommutingRecord, GpsLocation
from callup.security import require_admin, require_staff, require_user
from callup.services.commuting import record_gps_check

ADMIN_CLAIMS = {"sub": "1", "username": "admin", "role": "ADMIN"}
RESERVIST_CLAIMS = {"sub": "7", "username": "kim", "role": "RESERVIST"}


class _FakeScalarResult:
    def __init__(self, items: list[object]):
        self._items = items

    def all(self) -> list[object]:
        return list(self._items)


class FakeDB:
    def __init__(
        self,
        *,
        scalar_results: list[object | None] | None = None,
        scalars_results: list[list[object]] | None = None,
        get_result: object | None = None,
    ):
        self._scalar_results = scalar_results or []
        self._scalars_results = scalars_results or []
        self._get_result = get_result
        self.scalar_statements: list[object] = []
        self.scalars_statements: list[object] = []
        self.added: list[object] = []
        self.deleted: list[object] = []
        self.commit_count = 0

    def scalar(self, statement, **_kwargs):  # type: ignore[no-untyped-def]
        self.scalar_statements.append(statement)
        if not self._scalar_results:
            return None
        return self._scalar_results.pop(0)

    def scalars(self, statement, **_kwargs):  # type: ignore[no-untyped-def]
        self.scalars_statements.append(statement)
        if not self._scalars_results:
            return _FakeScalarResult([])
        return _FakeScalarResult(self._scalars_results.pop(0))

    def get(self, _model, _ident):  # type: ignore[no-untyped-def]
        return self._get_result

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def delete(self, obj: object) -> None:
        self.deleted.append(obj)

    def commit(self) -> None:
        self.commit_count += 1

    def rollback(self) -> None:
        return None

    def refresh(self, obj: object) -> None:
        if getattr(obj, "id", None) is None:
            obj.id = 50  # type: ignore[attr-defined]


def override_get_db(fake_db: FakeDB):
    def _override() -> Generator[FakeDB, None, None]:
        yield fake_db

    return _override


def _zone() -> GpsLocation:
    return GpsLocation(id=2, name="Main gate", latitude=37.5, longitude=127.0, radius_m=200, is_active=True)


def _record(**overrides: object) -> CommutingRecord:
    values: dict[str, object] = {
        "id": 3,
        "user_id": 7,
        "batch_id": 1,
        "day_date": date(2026, 10, 19),
        "check_in_at": datetime(2026, 10, 19, 0, 5, tzinfo=timezone.utc),
        "check_in_lat": 37.5001,
        "check_in_lng": 127.0001,
        "is_manual": False,
    }
    values.update(overrides)
    return CommutingRecord(**values)


def _compile(statement: object) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))  # type: ignore[attr-defined]


class CommutingCheckEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        app.dependency_overrides[require_user] = lambda: RESERVIST_CLAIMS

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_check_outside_every_zone_is_rejected(self) -> None:
        fake_db = FakeDB(scalars_results=[[_zone()]])
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        response = client.post(
            "/api/commuting/check",
            json={"latitude": 35.1, "longitude": 129.0, "type": "checkIn"},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "OUT_OF_RANGE")
        self.assertEqual(fake_db.commit_count, 0)

    def test_check_in_inside_zone_hides_coordinates(self) -> None:
        fake_db = FakeDB(scalars_results=[[_zone()]], scalar_results=[1, _record()])
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        response = client.post(
            "/api/commuting/check",
            json={"latitude": 37.5001, "longitude": 127.0001, "type": "checkIn"},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["ok"])
        self.assertEqual(body["location_name"], "Main gate")
        self.assertIsNotNone(body["record"]["check_in_at"])
        self.assertIsNone(body["record"]["check_in_lat"])
        self.assertIsNone(body["record"]["check_in_lng"])
        self.assertEqual(fake_db.commit_count, 1)

    def test_invalid_check_type(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        response = client.post(
            "/api/commuting/check",
            json={"latitude": 37.5, "longitude": 127.0, "type": "lunch"},
        )

        self.assertEqual(response.status_code, 422)


class CommutingServiceTests(unittest.TestCase):
    def test_check_out_only_touches_check_out_columns(self) -> None:
        fake_db = FakeDB(scalars_results=[[_zone()]], scalar_results=[None, _record()])

        record, zone = record_gps_check(
            fake_db,  # type: ignore[arg-type]
            user_id=7,
            latitude=37.5,
            longitude=127.0,
            check_type="checkOut",
            now_utc=datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc),
        )

        self.assertEqual(zone.id, 2)
        self.assertEqual(record.id, 3)
        sql = _compile(fake_db.scalar_statements[1])
        self.assertIn("ON CONFLICT (user_id, day_date) DO UPDATE SET", sql)
        update_clause = sql.split("DO UPDATE SET", 1)[1].split("RETURNING", 1)[0]
        self.assertIn("check_out_at", update_clause)
        self.assertNotIn("check_in_at", update_clause)
        self.assertNotIn("batch_id", update_clause)

    def test_local_day_rolls_over_at_seoul_midnight(self) -> None:
        fake_db = FakeDB(scalars_results=[[_zone()]], scalar_results=[None, _record()])

        record_gps_check(
            fake_db,  # type: ignore[arg-type]
            user_id=7,
            latitude=37.5,
            longitude=127.0,
            check_type="checkIn",
            now_utc=datetime(2026, 10, 18, 15, 30, tzinfo=timezone.utc),
        )

        params = fake_db.scalar_statements[1].compile(dialect=postgresql.dialect()).params  # type: ignore[attr-defined]
        self.assertEqual(params["day_date"], date(2026, 10, 19))


class CommutingManualEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        app.dependency_overrides[require_staff] = lambda: ADMIN_CLAIMS

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_manual_entry_marks_record_manual(self) -> None:
        record = _record(is_manual=True, note="gate closed", check_in_lat=None, check_in_lng=None)
        fake_db = FakeDB(scalar_results=[record])
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        response = client.post(
            "/api/commuting/manual",
            json={"user_id": 7, "day": "2026-10-19", "check_in_at": "2026-10-19T00:00:00Z", "note": "gate closed"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["is_manual"])
        update_clause = _compile(fake_db.scalar_statements[0]).split("DO UPDATE SET", 1)[1].split("RETURNING", 1)[0]
        self.assertIn("is_manual", update_clause)
        self.assertIn("check_in_at", update_clause)
        self.assertNotIn("check_out_at", update_clause)
        audit = [item for item in fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual(audit[0].action, "COMMUTING_MANUAL_UPSERT")

    def test_manual_entry_rejects_check_out_before_check_in(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        response = client.post(
            "/api/commuting/manual",
            json={
                "user_id": 7,
                "day": "2026-10-19",
                "check_in_at": "2026-10-19T09:00:00Z",
                "check_out_at": "2026-10-19T08:00:00Z",
            },
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")


class CommutingListEndpointTests(unittest.TestCase):
    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_reservist_sees_only_own_records_without_coordinates(self) -> None:
        fake_db = FakeDB(scalars_results=[[_record()]])
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        app.dependency_overrides[require_user] = lambda: RESERVIST_CLAIMS
        client = TestClient(app)

        response = client.get("/api/commuting", params={"date": "2026-10-19", "user_id": 8})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(len(body), 1)
        self.assertIsNone(body[0]["check_in_lat"])
        params = fake_db.scalars_statements[0].compile(dialect=postgresql.dialect()).params  # type: ignore[attr-defined]
        self.assertIn(7, params.values())
        self.assertNotIn(8, params.values())

    def test_staff_sees_coordinates(self) -> None:
        fake_db = FakeDB(scalars_results=[[_record()]])
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        app.dependency_overrides[require_user] = lambda: ADMIN_CLAIMS
        client = TestClient(app)

        response = client.get("/api/commuting", params={"batch_id": 1})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()[0]["check_in_lat"], 37.5001)


class GpsLocationEndpointTests(unittest.TestCase):
    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_admin_creates_location(self) -> None:
        fake_db = FakeDB()
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        client = TestClient(app)

        response = client.post(
            "/api/gps-locations",
            json={"name": "Main gate", "latitude": 37.5, "longitude": 127.0, "radius_m": 150},
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["id"], 50)
        self.assertEqual(body["radius_m"], 150)
        self.assertTrue(body["is_active"])

    def test_delete_missing_location(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB(get_result=None))
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        client = TestClient(app)

        response = client.delete("/api/gps-locations/9")

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "GPS_LOCATION_NOT_FOUND")

    def test_delete_location(self) -> None:
        location = _zone()
        fake_db = FakeDB(get_result=location)
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        client = TestClient(app)

        response = client.delete("/api/gps-locations/2")

        self.assertEqual(response.status_code, 204)
        self.assertEqual(fake_db.deleted, [location])

    def test_latitude_out_of_range(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        client = TestClient(app)

        response = client.post("/api/gps-locations", json={"name": "x", "latitude": 91, "longitude": 0})

        self.assertEqual(response.status_code, 422)


if __name__ == "__main__":
    unittest.main()
