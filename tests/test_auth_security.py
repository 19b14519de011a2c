from __future__ import annotations

import os
import unittest
from collections.abc import Generator
from unittest.mock import patch

from fastapi.testclient import TestClient
from jose import jwt

from callup import security
from callup.db import get_db
from callup.errors import ApiError
from callup.main import app
from callup.models import AuditLog, User, UserRole
from callup.security import (
    create_access_token,
    decode_access_token,
    hash_password,
    register_login_failure,
    verify_password,
)
from callup.settings import get_settings

TEST_SECRET = "unit-test-secret-with-enough-length"


class FakeDB:
    def __init__(self, user: User | None = None):
        self._user = user
        self.added: list[object] = []
        self.commit_count = 0

    def scalar(self, _statement, **_kwargs):  # type: ignore[no-untyped-def]
        return self._user

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def commit(self) -> None:
        self.commit_count += 1

    def rollback(self) -> None:
        return None


def override_get_db(fake_db: FakeDB):
    def _override() -> Generator[FakeDB, None, None]:
        yield fake_db

    return _override


def _user(*, role: UserRole = UserRole.MANAGER, is_active: bool = True) -> User:
    return User(
        id=4,
        username="manager",
        name="Park",
        password_hash="$2b$12$placeholder",
        role=role,
        is_active=is_active,
    )


class _SecretMixin:
    def setUp(self) -> None:
        self._env = patch.dict(os.environ, {"JWT_SECRET": TEST_SECRET}, clear=False)
        self._env.start()
        get_settings.cache_clear()
        security._FAILED_ATTEMPTS.clear()

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        security._FAILED_ATTEMPTS.clear()
        self._env.stop()
        get_settings.cache_clear()


class AccessTokenTests(_SecretMixin, unittest.TestCase):
    def test_round_trip_keeps_identity_claims(self) -> None:
        token, expires_in, claims = create_access_token(_user())

        decoded = decode_access_token(token)

        self.assertEqual(expires_in, get_settings().access_token_minutes * 60)
        self.assertEqual(decoded["sub"], "4")
        self.assertEqual(decoded["role"], "MANAGER")
        self.assertEqual(decoded["jti"], claims["jti"])

    def test_tampered_token_is_rejected(self) -> None:
        token, _, _ = create_access_token(_user())

        with self.assertRaises(ApiError) as ctx:
            decode_access_token(token[:-2] + ("AA" if not token.endswith("AA") else "BB"))

        self.assertEqual(ctx.exception.status_code, 401)
        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_unknown_role_is_rejected(self) -> None:
        _, _, claims = create_access_token(_user())
        forged = jwt.encode({**claims, "role": "GENERAL"}, TEST_SECRET, algorithm="HS256")

        with self.assertRaises(ApiError) as ctx:
            decode_access_token(forged)

        self.assertEqual(ctx.exception.code, "INVALID_TOKEN")

    def test_wrong_token_type_is_rejected(self) -> None:
        _, _, claims = create_access_token(_user())
        forged = jwt.encode({**claims, "typ": "refresh"}, TEST_SECRET, algorithm="HS256")

        with self.assertRaises(ApiError):
            decode_access_token(forged)

    def test_password_hash_round_trip(self) -> None:
        password_hash = hash_password("correct horse")

        self.assertTrue(password_hash.startswith("$2"))
        self.assertTrue(verify_password("correct horse", password_hash))
        self.assertFalse(verify_password("wrong", password_hash))

    def test_verify_password_handles_malformed_hash(self) -> None:
        self.assertFalse(verify_password("secret", "not-a-bcrypt-hash"))


class LoginEndpointTests(_SecretMixin, unittest.TestCase):
    def test_login_success_returns_token_and_audits(self) -> None:
        fake_db = FakeDB(_user())
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        with patch("callup.routers.auth.verify_password", return_value=True):
            response = client.post("/api/auth/login", json={"username": " manager ", "password": "pw"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["token_type"], "bearer")
        self.assertEqual(decode_access_token(body["access_token"])["sub"], "4")
        audit = [item for item in fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual(audit[0].action, "LOGIN_SUCCESS")

    def test_wrong_password(self) -> None:
        fake_db = FakeDB(_user())
        app.dependency_overrides[get_db] = override_get_db(fake_db)
        client = TestClient(app)

        with patch("callup.routers.auth.verify_password", return_value=False):
            response = client.post("/api/auth/login", json={"username": "manager", "password": "bad"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_CREDENTIALS")
        audit = [item for item in fake_db.added if isinstance(item, AuditLog)]
        self.assertEqual(audit[0].details, {"reason": "INVALID_CREDENTIALS"})

    def test_inactive_user_cannot_login(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB(_user(is_active=False)))
        client = TestClient(app)

        with patch("callup.routers.auth.verify_password", return_value=True):
            response = client.post("/api/auth/login", json={"username": "manager", "password": "pw"})

        self.assertEqual(response.status_code, 401)

    def test_repeated_failures_are_throttled(self) -> None:
        for _ in range(10):
            register_login_failure("testclient")
        app.dependency_overrides[get_db] = override_get_db(FakeDB(_user()))
        client = TestClient(app)

        with patch("callup.routers.auth.verify_password", return_value=True):
            response = client.post("/api/auth/login", json={"username": "manager", "password": "pw"})

        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()["error"]["code"], "TOO_MANY_ATTEMPTS")


class RoleGuardTests(_SecretMixin, unittest.TestCase):
    def _headers(self, role: UserRole) -> dict[str, str]:
        token, _, _ = create_access_token(_user(role=role))
        return {"Authorization": f"Bearer {token}"}

    def test_me_reads_token_claims(self) -> None:
        client = TestClient(app)

        response = client.get("/api/auth/me", headers=self._headers(UserRole.RESERVIST))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"user_id": 4, "username": "manager", "name": "Park", "role": "RESERVIST"})

    def test_missing_token(self) -> None:
        client = TestClient(app)

        response = client.get("/api/auth/me")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_reservist_cannot_reach_staff_routes(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        response = client.get("/api/payments/summary", headers=self._headers(UserRole.RESERVIST))

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")

    def test_manager_cannot_manage_gps_locations(self) -> None:
        app.dependency_overrides[get_db] = override_get_db(FakeDB())
        client = TestClient(app)

        response = client.delete("/api/gps-locations/1", headers=self._headers(UserRole.MANAGER))

        self.assertEqual(response.status_code, 403)


if __name__ == "__main__":
    unittest.main()
