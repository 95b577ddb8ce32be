from __future__ import annotations

import math
import unittest
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from geopunch.db import Base, get_db
from geopunch.main import app
from geopunch.models import AuditLog, Employee, Geofence
from geopunch.services.location import EARTH_RADIUS_M
from geopunch.settings import Settings

TEST_SETTINGS = Settings(
    jwt_secret="test-secret",
    jwt_algorithm="HS256",
    jwt_issuer="geopunch-auth",
    jwt_audience="geopunch",
)
OUTSIDE_LAT = 40.0 + math.degrees(250 / EARTH_RADIUS_M)


def _token(subject: int | str, *, role: str = "employee", secret: str = "test-secret", **claims) -> str:  # type: ignore[no-untyped-def]
    payload = {
        "sub": str(subject),
        "role": role,
        "iss": "geopunch-auth",
        "aud": "geopunch",
        "typ": "access",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def _auth(subject: int | str, **kwargs) -> dict[str, str]:  # type: ignore[no-untyped-def]
    return {"Authorization": f"Bearer {_token(subject, **kwargs)}"}


def _override_get_db(factory: sessionmaker):
    def _override() -> Generator[Session, None, None]:
        db = factory()
        try:
            yield db
        finally:
            db.close()

    return _override


class _ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(engine)
        self.factory = sessionmaker(bind=engine, autoflush=False)

        with self.factory() as db:
            geofence = Geofence(name="Main Office", latitude=40.0, longitude=-74.0, radius_meters=100)
            db.add(geofence)
            db.flush()
            employee = Employee(full_name="Ada Field", geofence_id=geofence.id)
            db.add(employee)
            db.commit()
            self.geofence_id = geofence.id
            self.employee_id = employee.id

        settings_patch = patch("geopunch.security.get_settings", return_value=TEST_SETTINGS)
        settings_patch.start()
        self.addCleanup(settings_patch.stop)

        app.dependency_overrides[get_db] = _override_get_db(self.factory)
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()


class PunchEndpointTests(_ApiTestCase):
    def test_punch_in_returns_created_session(self) -> None:
        response = self.client.post(
            "/api/punches/in",
            json={"latitude": 40.0, "longitude": -74.0, "notes": "  morning  "},
            headers=_auth(self.employee_id),
        )

        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.headers.get("X-Request-Id"))
        body = response.json()
        self.assertEqual(body["message"], "Punched in successfully")
        self.assertEqual(body["previous_state"], "CLOCKED_OUT")
        self.assertEqual(body["state"], "CLOCKED_IN")
        self.assertEqual(body["session"]["employee_id"], self.employee_id)
        self.assertEqual(body["session"]["notes"], "morning")
        self.assertEqual(body["location_validation"]["is_valid"], True)
        self.assertEqual(body["location_validation"]["distance_m"], 0)
        self.assertEqual(body["location_validation"]["allowed_radius_m"], 100)

        with self.factory() as db:
            audit = db.scalars(select(AuditLog)).one()
        self.assertEqual(audit.action, "PUNCH_IN")
        self.assertTrue(audit.success)

    def test_second_punch_in_returns_conflict_envelope(self) -> None:
        first = self.client.post(
            "/api/punches/in",
            json={"latitude": 40.0, "longitude": -74.0},
            headers=_auth(self.employee_id),
        )
        session_id = first.json()["session"]["id"]

        response = self.client.post(
            "/api/punches/in",
            json={"latitude": 40.0, "longitude": -74.0},
            headers={**_auth(self.employee_id), "X-Request-Id": "req-409"},
        )

        self.assertEqual(response.status_code, 409)
        error = response.json()["error"]
        self.assertEqual(error["code"], "CONFLICTING_STATE")
        self.assertEqual(error["request_id"], "req-409")
        self.assertIn("already punched in", error["message"])
        self.assertEqual(error["details"]["current_state"], "CLOCKED_IN")
        self.assertEqual(error["details"]["attempted"], "punch_in")
        self.assertEqual(error["details"]["open_session_id"], session_id)
        self.assertIsNotNone(error["details"]["open_session_started_at"])

        with self.factory() as db:
            failures = db.scalars(select(AuditLog).where(AuditLog.success.is_(False))).all()
        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0].details["code"], "CONFLICTING_STATE")

    def test_full_cycle_and_status(self) -> None:
        headers = _auth(self.employee_id)
        self.client.post("/api/punches/in", json={"latitude": 40.0, "longitude": -74.0}, headers=headers)

        started = self.client.post(
            "/api/punches/break/start", json={"latitude": 40.0, "longitude": -74.0}, headers=headers
        )
        self.assertEqual(started.status_code, 200)
        self.assertEqual(started.json()["state"], "ON_BREAK")

        status_response = self.client.get("/api/punches/status", headers=headers)
        self.assertEqual(status_response.status_code, 200)
        status_body = status_response.json()
        self.assertEqual(status_body["state"], "ON_BREAK")
        self.assertTrue(status_body["is_punched_in"])
        self.assertTrue(status_body["is_on_break"])
        self.assertIsNotNone(status_body["current_session"]["break_start_ts_utc"])

        ended = self.client.post(
            "/api/punches/break/end", json={"latitude": 40.0, "longitude": -74.0}, headers=headers
        )
        self.assertEqual(ended.json()["state"], "CLOCKED_IN")

        out = self.client.patch(
            "/api/punches/out",
            json={"latitude": OUTSIDE_LAT, "longitude": -74.0},
            headers=headers,
        )
        self.assertEqual(out.status_code, 200)
        out_body = out.json()
        self.assertEqual(out_body["state"], "CLOCKED_OUT")
        self.assertEqual(out_body["message"], "Punched out with location warning")
        self.assertFalse(out_body["location_validation"]["is_valid"])
        self.assertEqual(
            out_body["location_validation"]["message"],
            "Location is outside the geofence (150m beyond boundary)",
        )
        self.assertIsNotNone(out_body["session"]["worked_hours"])

        final_status = self.client.get("/api/punches/status", headers=headers).json()
        self.assertEqual(final_status["state"], "CLOCKED_OUT")
        self.assertFalse(final_status["is_punched_in"])
        self.assertIsNone(final_status["current_session"])
        self.assertEqual(final_status["today"]["total_sessions"], 1)

    def test_punch_out_without_session_conflicts(self) -> None:
        response = self.client.patch(
            "/api/punches/out",
            json={"latitude": 40.0, "longitude": -74.0},
            headers=_auth(self.employee_id),
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["details"]["current_state"], "CLOCKED_OUT")

    def test_out_of_range_latitude_is_a_validation_error(self) -> None:
        response = self.client.post(
            "/api/punches/in",
            json={"latitude": 95.0, "longitude": -74.0},
            headers=_auth(self.employee_id),
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_unknown_employee_is_not_found(self) -> None:
        response = self.client.post(
            "/api/punches/in",
            json={"latitude": 40.0, "longitude": -74.0},
            headers=_auth(4040),
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "EMPLOYEE_NOT_FOUND")


class AuthenticationTests(_ApiTestCase):
    def test_missing_token_is_rejected(self) -> None:
        response = self.client.get("/api/punches/status")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_token_signed_with_other_secret_is_rejected(self) -> None:
        response = self.client.get("/api/punches/status", headers=_auth(self.employee_id, secret="other"))
        self.assertEqual(response.status_code, 401)

    def test_expired_token_is_rejected(self) -> None:
        expired = datetime.now(timezone.utc) - timedelta(minutes=1)
        response = self.client.get("/api/punches/status", headers=_auth(self.employee_id, exp=expired))
        self.assertEqual(response.status_code, 401)

    def test_refresh_token_is_rejected(self) -> None:
        response = self.client.get("/api/punches/status", headers=_auth(self.employee_id, typ="refresh"))
        self.assertEqual(response.status_code, 401)

    def test_non_numeric_subject_is_rejected(self) -> None:
        response = self.client.get("/api/punches/status", headers=_auth("ada"))
        self.assertEqual(response.status_code, 401)

    def test_unknown_role_is_forbidden(self) -> None:
        response = self.client.get("/api/punches/status", headers=_auth(self.employee_id, role="kiosk"))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["error"]["code"], "FORBIDDEN")


class GeofenceEndpointTests(_ApiTestCase):
    def test_create_requires_admin(self) -> None:
        response = self.client.post(
            "/api/geofences",
            json={"name": "Dock", "latitude": 41.0, "longitude": -74.0, "radius_meters": 100},
            headers=_auth(self.employee_id),
        )
        self.assertEqual(response.status_code, 403)

    def test_admin_create_reports_overlaps(self) -> None:
        response = self.client.post(
            "/api/geofences",
            json={"name": "Loading Dock", "latitude": 40.0, "longitude": -74.0, "radius_meters": 50},
            headers=_auth(1, role="admin"),
        )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["geofence"]["name"], "Loading Dock")
        self.assertEqual(
            body["overlapping_geofences"],
            [{"geofence_id": self.geofence_id, "name": "Main Office"}],
        )
        self.assertEqual(body["warnings"], ["This geofence overlaps with 1 existing geofence(s): Main Office"])

    def test_admin_create_duplicate_name_conflicts(self) -> None:
        response = self.client.post(
            "/api/geofences",
            json={"name": "Main Office", "latitude": 41.0, "longitude": -74.0, "radius_meters": 100},
            headers=_auth(1, role="admin"),
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "GEOFENCE_NAME_EXISTS")

    def test_radius_out_of_range_is_rejected(self) -> None:
        response = self.client.post(
            "/api/geofences",
            json={"name": "Tiny", "latitude": 41.0, "longitude": -74.0, "radius_meters": 5},
            headers=_auth(1, role="admin"),
        )
        self.assertEqual(response.status_code, 422)

    def test_location_check_endpoint(self) -> None:
        response = self.client.post(
            f"/api/geofences/{self.geofence_id}/test",
            json={"latitude": OUTSIDE_LAT, "longitude": -74.0},
            headers=_auth(self.employee_id),
        )
        self.assertEqual(response.status_code, 200)
        result = response.json()["result"]
        self.assertFalse(result["is_valid"])
        self.assertEqual(result["distance_m"], 250)
        self.assertEqual(result["message"], "Location is outside the geofence (150m beyond boundary)")

    def test_location_check_unknown_geofence(self) -> None:
        response = self.client.post(
            "/api/geofences/999/test",
            json={"latitude": 40.0, "longitude": -74.0},
            headers=_auth(self.employee_id),
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["error"]["code"], "GEOFENCE_NOT_FOUND")


class HealthEndpointTests(unittest.TestCase):
    def test_health(self) -> None:
        response = TestClient(app).get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")


if __name__ == "__main__":
    unittest.main()
