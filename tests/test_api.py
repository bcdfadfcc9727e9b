"""Tests for the FastAPI endpoints."""

import pytest
from fastapi.testclient import TestClient

from safewatch import config
from safewatch.core.errors import TransientStoreError
from server.config import settings
from server.dependencies import build_services, get_services
from server.main import app

HEADERS = {"X-User-Id": "u1"}


@pytest.fixture
def services(store, mailbox, engine, timers):
    services = build_services(store, send=mailbox.send, engine=engine, timer_factory=timers)
    yield services
    services.notifier.shutdown(wait=True)


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


def _report(client, headers=HEADERS, **body):
    return client.post("/api/v1/emergencies/report", json=body, headers=headers)


class TestHealth:
    """Test cases for the health check."""

    def test_health(self, client):
        """Test that the service reports it is running."""
        assert client.get("/").json() == {"status": "running"}


class TestReportEndpoint:
    """Test cases for POST /api/v1/emergencies/report."""

    def test_requires_user(self, client):
        """Test that requests without a user id are rejected."""
        assert _report(client, headers={}, manual=True).status_code == 422

    def test_sensor_report(self, client, mailbox, distress_sensor):
        """Test that a sensor report is scored, stored and notified."""
        response = _report(client, sensorData=distress_sensor)
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["score"] == pytest.approx(50.0)
        assert body["classification"]["level"] == "suspicious"
        assert body["breakdown"]["sensorScore"] == 100

        record = client.get(f"/api/v1/emergencies/{body['emergencyId']}", headers=HEADERS).json()
        assert record["userId"] == "u1"
        assert record["status"] == "active"
        assert record["notification"]["successful"] == 1
        assert mailbox.recipients == [settings.ADMIN_EMAIL]

    def test_manual_report(self, client):
        """Test that a manual report is full confidence."""
        body = _report(client, manual=True).json()
        assert body["score"] == 100
        assert body["manual"] is True
        assert body["classification"]["level"] == "emergency"

    def test_malformed_sensor_data_still_reports(self, client):
        """Test that garbage sensor fields degrade instead of failing the request."""
        response = _report(client, sensorData={"motion": {"magnitude": "very"}})
        assert response.status_code == 200
        assert response.json()["score"] == 0

    def test_contacts_are_alerted(self, client, mailbox):
        """Test that stored contacts receive the alert alongside the operator."""
        client.post(
            "/api/v1/contacts",
            json={"name": "Ana", "email": "ana@example.com", "phone": "555-0100"},
            headers=HEADERS,
        )
        mailbox.messages.clear()
        _report(client, manual=True, location={"latitude": 1.0, "longitude": 2.0})
        assert sorted(mailbox.recipients) == sorted([settings.ADMIN_EMAIL, "ana@example.com"])
        assert {m["subject"] for m in mailbox.messages} == {config.ALERT_SUBJECT}

    def test_store_outage(self, client, store):
        """Test that a transient store failure is a 503 with its kind."""
        store.fail("put", config.EMERGENCIES, TransientStoreError("store offline", config.EMERGENCIES))
        response = _report(client, manual=True)
        assert response.status_code == 503
        assert response.json()["kind"] == "transient"


class TestCancelResolve:
    """Test cases for cancelling and resolving."""

    @pytest.fixture
    def emergency_id(self, client):
        return _report(client, manual=True).json()["emergencyId"]

    def test_cancel(self, client, emergency_id):
        """Test that cancelling lowers the user's sensitivity."""
        response = client.post(
            f"/api/v1/emergencies/{emergency_id}/cancel", json={"reason": "false alarm"}, headers=HEADERS
        )
        assert response.json() == {"success": True}
        thresholds = client.get("/api/v1/thresholds", headers=HEADERS).json()
        assert thresholds["motionSensitivity"] == pytest.approx(0.95)

    def test_cancel_and_resolve_are_exclusive(self, client, emergency_id):
        """Test that a cancelled emergency cannot be resolved or cancelled again."""
        client.post(f"/api/v1/emergencies/{emergency_id}/cancel", json={}, headers=HEADERS)
        assert client.post(
            f"/api/v1/emergencies/{emergency_id}/resolve", json={"notes": "late"}, headers=HEADERS
        ).status_code == 409
        assert client.post(
            f"/api/v1/emergencies/{emergency_id}/cancel", json={}, headers=HEADERS
        ).status_code == 409

    def test_resolve(self, client, emergency_id):
        """Test that the resolver is recorded from the calling user."""
        response = client.post(
            f"/api/v1/emergencies/{emergency_id}/resolve", json={"notes": "on site"},
            headers={"X-User-Id": "operator"},
        )
        assert response.status_code == 200
        record = client.get(f"/api/v1/emergencies/{emergency_id}", headers=HEADERS).json()
        assert record["status"] == "resolved"
        assert record["resolvedBy"] == "operator"

    def test_cancel_someone_elses(self, client, emergency_id):
        """Test that only the owner may cancel."""
        response = client.post(
            f"/api/v1/emergencies/{emergency_id}/cancel", json={}, headers={"X-User-Id": "intruder"}
        )
        assert response.status_code == 403

    def test_unknown_emergency(self, client):
        """Test that unknown ids are 404."""
        assert client.get("/api/v1/emergencies/nope", headers=HEADERS).status_code == 404
        assert client.post("/api/v1/emergencies/nope/cancel", json={}, headers=HEADERS).status_code == 404

    def test_active_and_history(self, client, emergency_id):
        """Test the listing endpoints."""
        other = _report(client, headers={"X-User-Id": "u2"}, manual=True).json()["emergencyId"]
        active = {r["id"] for r in client.get("/api/v1/emergencies/active", headers=HEADERS).json()}
        history = {r["id"] for r in client.get("/api/v1/emergencies/history", headers=HEADERS).json()}
        assert active == {emergency_id, other}
        assert history == {emergency_id}


class TestContactsEndpoint:
    """Test cases for /api/v1/contacts."""

    def test_invalid_email(self, client):
        """Test that a malformed email is rejected."""
        response = client.post(
            "/api/v1/contacts", json={"name": "Ana", "email": "nope", "phone": "1"}, headers=HEADERS
        )
        assert response.status_code == 422

    def test_add_and_list(self, client):
        """Test that contacts are listed for their owner only."""
        client.post("/api/v1/contacts", json={"name": "Ana", "email": "ana@example.com", "phone": "1"}, headers=HEADERS)
        mine = client.get("/api/v1/contacts", headers=HEADERS).json()
        theirs = client.get("/api/v1/contacts", headers={"X-User-Id": "u2"}).json()
        assert [c["name"] for c in mine] == ["Ana"]
        assert mine[0]["relationship"] == "Emergency Contact"
        assert theirs == []


    def test_add_announces_contact(self, client, mailbox):
        """Test that adding a contact notifies the operator and every contact, the new one included."""
        client.post("/api/v1/contacts", json={"name": "Ana", "email": "ana@example.com", "phone": "1"}, headers=HEADERS)
        mailbox.messages.clear()

        response = client.post(
            "/api/v1/contacts",
            json={"name": "Ben", "email": "ben@example.com", "phone": "555-0101", "relationship": "Brother"},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert sorted(mailbox.recipients) == sorted([settings.ADMIN_EMAIL, "ana@example.com", "ben@example.com"])
        assert {m["subject"] for m in mailbox.messages} == {config.CONTACT_ADDED_SUBJECT}
        assert all("Brother" in m["html"] and "555-0101" in m["html"] for m in mailbox.messages)

    def test_add_survives_failed_notice(self, client, mailbox):
        """Test that a contact is saved even when its notice cannot be delivered."""
        mailbox.fail_for.update({settings.ADMIN_EMAIL, "ana@example.com"})
        response = client.post(
            "/api/v1/contacts", json={"name": "Ana", "email": "ana@example.com", "phone": "1"}, headers=HEADERS
        )
        assert response.status_code == 200
        assert [c["name"] for c in client.get("/api/v1/contacts", headers=HEADERS).json()] == ["Ana"]
        assert mailbox.messages == []


class TestStatsEndpoint:
    """Test cases for GET /api/v1/emergencies/stats."""

    def test_stats(self, client):
        """Test that the caller's own emergencies are summarised."""
        cancelled = _report(client, manual=True).json()["emergencyId"]
        resolved = _report(client, manual=True).json()["emergencyId"]
        _report(client, headers={"X-User-Id": "u2"}, manual=True)
        client.post(f"/api/v1/emergencies/{cancelled}/cancel", json={}, headers=HEADERS)
        client.post(f"/api/v1/emergencies/{resolved}/resolve", json={}, headers=HEADERS)

        response = client.get("/api/v1/emergencies/stats", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["userId"] == "u1"
        assert body["totalEmergencies"] == 2
        assert body["falsePositives"] == 1
        assert body["resolvedEmergencies"] == 1
        assert body["averageResponseTime"] >= 0
        assert body["lastEmergency"] is not None

    def test_empty_stats(self, client):
        """Test that a user without emergencies gets zeros and nulls."""
        body = client.get("/api/v1/emergencies/stats", headers=HEADERS).json()
        assert body["totalEmergencies"] == 0
        assert body["averageResponseTime"] is None
        assert body["lastEmergency"] is None


class TestLocationsEndpoint:
    """Test cases for /api/v1/locations."""

    def test_track_and_resolve(self, client):
        """Test that a resolved tracking session rejects new samples."""
        response = client.put("/api/v1/locations/sos-1", json={"latitude": 1.0, "longitude": 2.0}, headers=HEADERS)
        assert response.json()["status"] == "active"
        assert client.post("/api/v1/locations/sos-1/resolve", headers=HEADERS).json()["status"] == "resolved"
        response = client.put("/api/v1/locations/sos-1", json={"latitude": 1.0, "longitude": 2.0}, headers=HEADERS)
        assert response.status_code == 409

    def test_out_of_range(self, client):
        """Test that impossible coordinates are rejected."""
        response = client.put("/api/v1/locations/sos-1", json={"latitude": 91, "longitude": 0}, headers=HEADERS)
        assert response.status_code == 422


class TestLearningEndpoint:
    """Test cases for adaptive feedback."""

    def test_missed_emergency_feedback(self, client):
        """Test that reporting a missed emergency raises sensitivity."""
        response = client.post("/api/v1/learning/feedback", json={"outcome": "missed_emergency"}, headers=HEADERS)
        assert response.status_code == 200
        assert response.json()["motionSensitivity"] == pytest.approx(1.05)
        assert response.json()["contextWeight"] == pytest.approx(1.02)

    def test_unknown_outcome(self, client):
        """Test that an unknown outcome label is rejected."""
        response = client.post("/api/v1/learning/feedback", json={"outcome": "maybe"}, headers=HEADERS)
        assert response.status_code == 422
